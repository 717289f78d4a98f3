"""
events.py - Notification records and synchronous dispatch

Notifications are plain immutable records; handlers are plain functions.
EventBus delivers each notification to handlers subscribed to its type (or to
all types) in subscription order, and keeps an append-only history so
off-system consumers can catch up after the fact.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type
import logging
import threading

from .core import AssetId, Principal, TransactionId

logger = logging.getLogger(__name__)


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Notification:
    """Base class for everything published on an EventBus."""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"event": type(self).__name__}
        for f in fields(self):
            name = f.name
            value = getattr(self, name)
            if isinstance(value, bytes):
                value = "0x" + value.hex()
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[name] = value
        return data


@dataclass(frozen=True, slots=True)
class SettlementCompleted(Notification):
    sender: Principal
    recipient: Principal
    asset: AssetId
    delivered: int
    fee: int
    transaction_id: TransactionId
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class RewardsEarned(Notification):
    user: Principal
    volume_reward: int
    milestone_reward: int
    total: int


@dataclass(frozen=True, slots=True)
class RewardIssueDeferred(Notification):
    user: Principal
    amount: int
    reason: str


@dataclass(frozen=True, slots=True)
class RewardsIssued(Notification):
    issuer: Principal
    principal: Principal
    amount: int


@dataclass(frozen=True, slots=True)
class ConfigChanged(Notification):
    setting: str
    old: Any
    new: Any


@dataclass(frozen=True, slots=True)
class IssuerAuthorizationChanged(Notification):
    principal: Principal
    authorized: bool


@dataclass(frozen=True, slots=True)
class AdminChanged(Notification):
    old: Principal
    new: Principal


# Handler type: notification -> None
EventHandler = Callable[[Notification], None]


# ============================================================================
# EVENT BUS
# ============================================================================

class EventBus:
    """
    Synchronous publish/subscribe.

    A handler that raises is logged and skipped; the remaining handlers still
    receive the notification and the publisher's state change stands.
    """

    def __init__(self, keep_history: bool = True):
        self._handlers: List[tuple] = []
        self._history: List[Notification] = []
        self._keep_history = keep_history
        self._lock = threading.Lock()

    def subscribe(
        self,
        handler: EventHandler,
        event_type: Optional[Type[Notification]] = None,
    ) -> Callable[[], None]:
        """
        Register handler for event_type (None = every notification).

        Returns:
            A callable that removes this subscription.
        """
        entry = (event_type, handler)
        with self._lock:
            self._handlers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._handlers:
                    self._handlers.remove(entry)

        return unsubscribe

    def emit(self, notification: Notification) -> None:
        with self._lock:
            if self._keep_history:
                self._history.append(notification)
            handlers = [h for t, h in self._handlers if t is None or isinstance(notification, t)]
        logger.debug("dispatching %s to %d handler(s)", type(notification).__name__, len(handlers))
        for handler in handlers:
            try:
                handler(notification)
            except Exception:
                logger.exception("event handler %r failed on %s", handler, type(notification).__name__)

    def history(self, event_type: Optional[Type[Notification]] = None) -> List[Notification]:
        with self._lock:
            if event_type is None:
                return list(self._history)
            return [n for n in self._history if isinstance(n, event_type)]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
