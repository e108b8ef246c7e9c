from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from findit.config import get_settings

_engine = None


def get_engine() -> Engine:
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)

    return _engine


def init_db(engine: Engine = None):
    # register every table before create_all
    from findit.models import item, notification, payment, payout, report, user  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())


def get_session():
    with Session(get_engine()) as session:
        yield session


def conditional_update(session: Session, statement) -> int:
    """
    Run a single UPDATE ... WHERE <expected state> inside the session's
    transaction and return the number of rows it changed.

    ORM instances already loaded in the session are not synchronized; refresh
    them afterwards if their new values are needed.
    """
    result = session.connection().execute(statement)
    return result.rowcount
