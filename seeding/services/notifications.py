# seeding/services/notifications.py
"""
Outbound creator/brand notifications.

Rows are enqueued as PENDING inside the transition's transaction and sent
after it commits. Sending is bounded by a timeout and its outcome (SENT or
ERROR) is written back; a failed send never undoes the transition.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.models import Creator, Notification
from seeding.models.enums import NotificationChannel, NotificationStatus

logger = get_structlog_logger(__name__)


class ConsoleProvider:
    """Writes notifications to the log. Default outside production."""

    async def send(self, notification: Notification) -> tuple[bool, Optional[str]]:
        logger.info(
            "notification.console",
            channel=notification.channel,
            recipient=notification.recipient,
            template=notification.template,
            payload=notification.payload,
        )
        return (True, None)


class WebhookProvider:
    """Hands notifications to an external dispatcher over HTTP."""

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout

    async def send(self, notification: Notification) -> tuple[bool, Optional[str]]:
        body = {
            "id": str(notification.id),
            "channel": notification.channel,
            "recipient": notification.recipient,
            "template": notification.template,
            "payload": notification.payload,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=body,
                    headers={"User-Agent": "Seeding-Notify/1.0"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if 200 <= response.status < 300:
                        return (True, None)
                    error_text = await response.text()
                    return (False, f"HTTP {response.status}: {error_text[:200]}")
        except asyncio.TimeoutError:
            return (False, "Request timeout")
        except aiohttp.ClientError as e:
            return (False, f"Client error: {str(e)[:200]}")


def get_provider():
    if settings.notification_provider == "webhook" and settings.notification_webhook_url:
        return WebhookProvider(settings.notification_webhook_url, settings.notification_timeout_seconds)
    return ConsoleProvider()


async def enqueue(
    session: AsyncSession,
    *,
    channel: NotificationChannel,
    recipient: str,
    template: str,
    payload: Optional[Dict[str, Any]] = None,
    creator_id: Optional[uuid.UUID] = None,
    brand_id: Optional[uuid.UUID] = None,
) -> uuid.UUID:
    notification_id = uuid.uuid4()
    await session.execute(
        insert(Notification).values(
            id=notification_id,
            channel=channel.value,
            recipient=recipient,
            template=template,
            payload=payload or {},
            status=NotificationStatus.PENDING.value,
            creator_id=creator_id,
            brand_id=brand_id,
            created_at=utcnow(),
        )
    )
    return notification_id


async def notify_creator(
    session: AsyncSession,
    creator_id: uuid.UUID,
    template: str,
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[uuid.UUID]:
    """Enqueue on the creator's best channel: email, else SMS. None when unreachable."""
    row = (
        await session.execute(select(Creator.email, Creator.phone).where(Creator.id == creator_id))
    ).one_or_none()
    if row is None:
        return None
    if row.email:
        channel, recipient = NotificationChannel.EMAIL, row.email
    elif row.phone:
        channel, recipient = NotificationChannel.SMS, row.phone
    else:
        logger.info("notification.unreachable", creator_id=str(creator_id), template=template)
        return None
    return await enqueue(
        session,
        channel=channel,
        recipient=recipient,
        template=template,
        payload=payload,
        creator_id=creator_id,
    )


async def dispatch(session: AsyncSession, notification_ids: Iterable[uuid.UUID], provider=None) -> Dict[str, int]:
    """Send the given PENDING notifications and record each outcome.

    Failures are logged and recorded; nothing is raised to the caller.
    """
    ids: List[uuid.UUID] = [i for i in notification_ids if i is not None]
    summary = {"sent": 0, "failed": 0}
    if not ids:
        return summary

    provider = provider or get_provider()
    try:
        rows = (
            await session.execute(
                select(Notification).where(
                    Notification.id.in_(ids),
                    Notification.status == NotificationStatus.PENDING.value,
                )
            )
        ).scalars().all()

        for notification in rows:
            try:
                ok, error = await asyncio.wait_for(
                    provider.send(notification),
                    timeout=settings.notification_timeout_seconds,
                )
            except asyncio.TimeoutError:
                ok, error = False, "Request timeout"

            await session.execute(
                update(Notification)
                .where(Notification.id == notification.id)
                .values(
                    status=(NotificationStatus.SENT if ok else NotificationStatus.ERROR).value,
                    error=error,
                    sent_at=utcnow() if ok else None,
                )
            )
            if ok:
                summary["sent"] += 1
            else:
                summary["failed"] += 1
                logger.warning(
                    "notification.failed",
                    notification_id=str(notification.id),
                    template=notification.template,
                    error=error,
                )
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error("notification.dispatch_error", error=str(e), exc_info=True)

    return summary
