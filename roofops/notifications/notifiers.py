"""
roofops.notifications.notifiers — Pluggable notification channels.

Every channel implements the ``Notifier`` ABC with a single async
``send(event)`` method.  Add new channels (email, SMS …) without touching
the approval workflow.

Current implementations:
    WebhookNotifier    — JSON POST to a Slack/Discord compatible webhook
    CompositeNotifier  — Fan-out to multiple channels
    NullNotifier       — Drops everything (nothing configured)

Usage::

    notifier = build_notifier_for_tenant(db, tenant_id)
    await notifier.send(NotificationEvent.approval_requested(...))
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

import httpx

from roofops.core.utils import format_currency, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event payload
# ---------------------------------------------------------------------------

@dataclass
class NotificationEvent:
    kind: str                       # approval_requested, approval_decided, approval_escalated
    title: str
    message: str
    severity: str = "INFO"          # INFO, WARNING, CRITICAL
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def approval_requested(cls, customer: str, value: float, priority: str, requester: str) -> "NotificationEvent":
        return cls(
            kind="approval_requested",
            title=f"Approval requested: {customer}",
            message=f"{requester} requested project approval ({format_currency(value)}).",
            severity="CRITICAL" if priority == "critical" else "WARNING" if priority == "high" else "INFO",
            data={"priority": priority, "estimated_value": value},
        )

    @classmethod
    def approval_decided(cls, customer: str, approved: bool, manager: str, notes: str = "") -> "NotificationEvent":
        verdict = "approved" if approved else "rejected"
        return cls(
            kind="approval_decided",
            title=f"Approval {verdict}: {customer}",
            message=f"{manager} {verdict} the request." + (f" Notes: {notes}" if notes else ""),
            data={"approved": approved},
        )

    @classmethod
    def approval_escalated(cls, customer: str, priority: str, hours_waiting: float) -> "NotificationEvent":
        return cls(
            kind="approval_escalated",
            title=f"Approval escalated: {customer}",
            message=f"Pending for {hours_waiting:.0f}h; priority raised to {priority}.",
            severity="CRITICAL" if priority == "critical" else "WARNING",
            data={"priority": priority, "hours_waiting": round(hours_waiting, 1)},
        )


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class Notifier(ABC):
    """Abstract notification channel."""

    @abstractmethod
    async def send(self, event: NotificationEvent) -> bool:
        """Send ``event``.  Returns True on success, False on failure."""


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

class WebhookNotifier(Notifier):
    """Posts ``content`` plus an embed; accepted by both Slack and Discord."""

    _COLOUR = {
        "INFO":     0x3B82F6,
        "WARNING":  0xEAB308,
        "CRITICAL": 0xEF4444,
    }

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self._url = webhook_url
        self._timeout = timeout

    def build_payload(self, event: NotificationEvent) -> dict:
        embed: dict = {
            "title":       event.title,
            "description": event.message,
            "color":       self._COLOUR.get(event.severity, self._COLOUR["INFO"]),
            "timestamp":   event.timestamp.isoformat(),
            "footer":      {"text": "RoofOps"},
        }
        if event.data:
            embed["fields"] = [
                {"name": k, "value": str(v), "inline": True}
                for k, v in list(event.data.items())[:6]
            ]
        return {"content": f"{event.title}: {event.message}", "embeds": [embed]}

    async def send(self, event: NotificationEvent) -> bool:
        if not self._url:
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=self.build_payload(event))
                resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.error("WebhookNotifier: %s", exc)
            return False


# ---------------------------------------------------------------------------
# Composite fan-out
# ---------------------------------------------------------------------------

class CompositeNotifier(Notifier):
    """Dispatch an event to all registered channels concurrently."""

    def __init__(self, notifiers: List[Notifier]) -> None:
        self._notifiers = notifiers

    async def send(self, event: NotificationEvent) -> bool:
        results = await asyncio.gather(
            *[n.send(event) for n in self._notifiers],
            return_exceptions=True,
        )
        for r in results:
            if isinstance(r, Exception):
                logger.error("CompositeNotifier: channel failed: %s", r)
        return any(r is True for r in results)


# ---------------------------------------------------------------------------
# No-op (testing / default when nothing is configured)
# ---------------------------------------------------------------------------

class NullNotifier(Notifier):
    """Drops events.  Used when no channel is configured."""

    async def send(self, event: NotificationEvent) -> bool:
        logger.debug("NullNotifier: dropped %s (%s)", event.kind, event.title)
        return False


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_notifier_for_tenant(db, tenant_id: str) -> Notifier:
    """
    Build a notifier from the tenant's settings.

    ``notifications_enabled`` must be true and ``approval_webhook_url`` set
    (a list of URLs fans out through ``CompositeNotifier``); otherwise a
    ``NullNotifier`` is returned.
    """
    from roofops.database import get_setting

    if not get_setting(db, tenant_id, "notifications_enabled", False):
        return NullNotifier()

    urls = get_setting(db, tenant_id, "approval_webhook_url", "") or ""
    if isinstance(urls, str):
        urls = [u.strip() for u in urls.split(",")]
    urls = [str(u) for u in urls if u]
    if not urls:
        return NullNotifier()
    if len(urls) == 1:
        return WebhookNotifier(urls[0])
    return CompositeNotifier([WebhookNotifier(u) for u in urls])


async def safe_send(notifier: Notifier, event: NotificationEvent) -> bool:
    """Send and log on failure; notification problems never fail a request."""
    try:
        return await notifier.send(event)
    except Exception as exc:
        logger.error("notification %s failed: %s", event.kind, exc)
        return False
