"""Shared fixtures: in-memory database, fake payment gateway, API client."""
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from findit.config import Settings, get_settings
from findit.db.db import get_session, init_db
from findit.main import app
from findit.models.user import User
from findit.services.errors import GatewayTransientError
from findit.services.escrow import EscrowCoordinator
from findit.services.gateway import ChargeHandle, ChargeOutcome, StripeGateway, get_gateway
from findit.services.lifecycle import ItemLifecycle

TEST_SETTINGS = Settings(
    database_url="sqlite://",
    jwt_secret="test-secret",
    stripe_secret_key="sk_test_dummy",
    stripe_webhook_secret="whsec_test_secret",
)


class FakeGateway(StripeGateway):
    """StripeGateway with the network calls replaced; webhook verification is real."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.charges = []
        self.transfers = []
        self.refunds = []
        self.outcomes = {}
        self.charge_error = None
        self.transfer_error = None
        self.on_transfer = None
        self.lose_transfer_response = False

    def create_charge(self, amount, fee_amount, metadata, idempotency_key):
        if self.charge_error:
            raise self.charge_error

        charge_ref = f"pi_{len(self.charges) + 1}"
        self.charges.append({
            "charge_ref": charge_ref,
            "amount": amount,
            "fee_amount": fee_amount,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        self.outcomes.setdefault(charge_ref, ChargeOutcome.PENDING)

        return ChargeHandle(charge_ref=charge_ref, client_secret=f"{charge_ref}_secret")

    def retrieve_charge(self, charge_ref):
        return self.outcomes[charge_ref]

    def refund(self, charge_ref):
        self.refunds.append(charge_ref)
        return f"re_{charge_ref}"

    def transfer(self, amount, destination, metadata, idempotency_key):
        if self.on_transfer:
            hook, self.on_transfer = self.on_transfer, None
            hook()

        if self.transfer_error:
            raise self.transfer_error

        # the processor replays the original result for a repeated idempotency key
        for existing in self.transfers:
            if existing["idempotency_key"] == idempotency_key:
                return existing["transfer_ref"]

        transfer_ref = f"tr_{len(self.transfers) + 1}"
        self.transfers.append({
            "transfer_ref": transfer_ref,
            "amount": amount,
            "destination": destination,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })

        if self.lose_transfer_response:
            # money moved, but the response never arrived
            self.lose_transfer_response = False
            raise GatewayTransientError("Request timed out")

        return transfer_ref

    def create_payout_account(self, email, country):
        return "acct_new", "https://connect.stripe.test/onboarding"

    def payout_account_status(self, account_id):
        return {
            "id": account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        }


def sign_webhook(payload: bytes, secret: str = TEST_SETTINGS.stripe_webhook_secret) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_payload(event_type: str, object_id: str, **fields) -> bytes:
    return json.dumps({
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": object_id, **fields}},
    }).encode()


def auth_headers(user: User) -> dict:
    token = jwt.encode(
        {
            "sub": str(user.id),
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        TEST_SETTINGS.jwt_secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway(TEST_SETTINGS)


@pytest.fixture
def escrow(session, gateway):
    return EscrowCoordinator(session, gateway, TEST_SETTINGS)


@pytest.fixture
def lifecycle(session):
    return ItemLifecycle(session)


@pytest.fixture
def client(engine, gateway):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS

    yield TestClient(app)

    app.dependency_overrides.clear()


def _make_user(session, name, stripe_account_id=None):
    user = User(
        name=name,
        email=f"{name.lower()}@example.com",
        stripe_account_id=stripe_account_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def owner(session):
    return _make_user(session, "Owner")


@pytest.fixture
def finder(session):
    return _make_user(session, "Finder", stripe_account_id="acct_finder")


@pytest.fixture
def stranger(session):
    # no payout account
    return _make_user(session, "Stranger")


BOUNTY_FORM = {
    "item_type": "bounty",
    "title": "Lost Dog",
    "description": "Brown Labrador named Max, wearing a blue collar.",
    "category": "Pets",
    "location": "Green Park Area",
    "reward_amount": "100",
}


@pytest.fixture
def bounty_item(lifecycle, owner):
    return lifecycle.create_item(owner.id, dict(BOUNTY_FORM))


@pytest.fixture
def funded_item(escrow, gateway, session, bounty_item, owner):
    intent = escrow.initiate_payment(owner.id, bounty_item.id, Decimal("100"))
    escrow.confirm_payment(intent["payment_intent_id"], ChargeOutcome.SUCCEEDED)
    session.refresh(bounty_item)
    return bounty_item


@pytest.fixture
def found_item(escrow, session, funded_item, finder):
    escrow.record_report(finder.id, funded_item.id, "found", "Found him near the pond")
    session.refresh(funded_item)
    return funded_item
