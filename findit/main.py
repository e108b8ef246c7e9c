import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from findit.config import get_settings
from findit.db.db import init_db
from findit.routers import items, notifications, payments, profile
from findit.services.errors import FindItError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FindItError)
async def findit_error_handler(request: Request, exc: FindItError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.detail)

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    logger.info("Validation failed for %s %s: %s", request.method, request.url.path, details)

    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "detail": "Validation failed", "details": details},
    )


# Register routers
app.include_router(items.router, prefix="/items", tags=["Items"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(profile.router, prefix="/profile", tags=["Profile"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])


@app.get("/")
def root():
    return {"status": "ok"}
