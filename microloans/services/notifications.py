"""Fire-and-forget member and staff notifications.

Messages are dispatched only after the financial transaction that produced
them has committed. A notifier failure is logged and never re-raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microloans.models.notification import Notification
from microloans.models.user import User
from microloans.schemas.loan import UserRole

logger = logging.getLogger(__name__)


LOAN_STATUS_UPDATE = "LOAN_STATUS_UPDATE"
LOAN_APPLICATION_SUBMITTED = "LOAN_APPLICATION_SUBMITTED"
LOAN_DISBURSEMENT_READY = "LOAN_DISBURSEMENT_READY"


@dataclass(frozen=True)
class NotificationMessage:
    user_id: UUID
    title: str
    message: str
    notification_type: str


class Notifier(Protocol):
    async def notify(self, message: NotificationMessage) -> None: ...


class DatabaseNotifier:
    """Stores notifications as rows, each in its own short session."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    def _sessions(self) -> Callable[[], AsyncSession]:
        if self._session_factory is None:
            from microloans.db.session import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    async def notify(self, message: NotificationMessage) -> None:
        async with self._sessions()() as session:
            session.add(
                Notification(
                    user_id=message.user_id,
                    title=message.title,
                    message=message.message,
                    notification_type=message.notification_type,
                    is_read=False,
                )
            )
            await session.commit()


default_notifier: Notifier = DatabaseNotifier()


async def dispatch(messages: Iterable[NotificationMessage], notifier: Notifier | None = None) -> int:
    """Send every message; returns how many were delivered."""
    target = notifier or default_notifier
    delivered = 0
    for message in messages:
        try:
            await target.notify(message)
        except Exception:
            logger.exception(
                "Notification delivery failed type=%s user_id=%s",
                message.notification_type,
                message.user_id,
            )
            continue
        delivered += 1
    return delivered


async def staff_user_ids(db: AsyncSession, role: UserRole | str) -> list[UUID]:
    stmt = select(User.id).where(User.role == UserRole(role).value, User.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())
