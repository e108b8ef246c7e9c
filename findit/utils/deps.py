from fastapi import Depends
from sqlmodel import Session

from findit.config import Settings, get_settings
from findit.db.db import get_session
from findit.services.escrow import EscrowCoordinator
from findit.services.gateway import StripeGateway, get_gateway
from findit.services.lifecycle import ItemLifecycle
from findit.services.notifier import Notifier


def get_lifecycle(session: Session = Depends(get_session)) -> ItemLifecycle:
    return ItemLifecycle(session)


def get_notifier(session: Session = Depends(get_session)) -> Notifier:
    return Notifier(session)


def get_escrow(
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> EscrowCoordinator:
    return EscrowCoordinator(session, gateway, settings)
