"""In-process domain events dispatched on background threads."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

logger = logging.getLogger("accountbook.events")


@dataclass(frozen=True)
class ExpenseCreated:
    expense_uuid: str
    family_uuid: str
    user_uuid: str
    amount: Decimal
    date: datetime


@dataclass(frozen=True)
class ExpenseUpdated:
    expense_uuid: str
    family_uuid: str
    user_uuid: str
    old_amount: Decimal
    new_amount: Decimal
    date: datetime


class EventPublisher:
    """Run subscribed handlers for each published event on daemon threads.

    Callers publish only after their transaction has committed, so
    handlers always observe the committed state. A failing handler is
    logged and never propagates to the publisher.
    """

    def __init__(self):
        self._handlers: dict[type, list[Callable]] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0

    def subscribe(self, event_type: type, handler: Callable) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event) -> int:
        """Start one thread per handler subscribed to `type(event)`."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))
            self._pending += len(handlers)
        for handler in handlers:
            thread = threading.Thread(target=self._run, args=(handler, event), daemon=True)
            thread.start()
        logger.debug("published %s to %d handler(s)", type(event).__name__, len(handlers))
        return len(handlers)

    def drain(self, timeout: Optional[float] = 5.0) -> bool:
        """Block until in-flight handlers finish; False if `timeout` elapsed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _run(self, handler: Callable, event) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("event handler %s failed for %s", getattr(handler, "__name__", handler), event)
        finally:
            with self._idle:
                self._pending -= 1
                if self._pending == 0:
                    self._idle.notify_all()
