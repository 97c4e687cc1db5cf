"""Interfaces the pricing engine and workflow services depend on.

Adapters live next to the code that owns the concern: the SQL store and id
allocator in ``services/store.py``, the notifier in ``services/notifications.py``,
the PDF renderer in ``utils/pdf_utils.py`` and amount-in-words in ``utils/words.py``.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Type, TypeVar
from zoneinfo import ZoneInfo

T = TypeVar("T")


class Clock(ABC):
    """Wall clock in naive UTC plus a monotonic counter."""

    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError

    @abstractmethod
    def monotonic(self) -> float:
        raise NotImplementedError

    def today(self, tz_name: str = "Africa/Cairo") -> date:
        return self.now().replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def monotonic(self) -> float:
        return time.monotonic()


class FixedClock(Clock):
    """Deterministic clock for tests and replays; only moves when told to."""

    def __init__(self, current: datetime) -> None:
        if current.tzinfo is not None:
            current = current.astimezone(timezone.utc).replace(tzinfo=None)
        self._current = current
        self._ticks = 0.0

    def now(self) -> datetime:
        return self._current

    def monotonic(self) -> float:
        return self._ticks

    def advance(self, **delta: float) -> datetime:
        step = timedelta(**delta)
        self._current += step
        self._ticks += step.total_seconds()
        return self._current


class Notifier(ABC):
    """Fire-and-forget domain events addressed to roles and/or users."""

    @abstractmethod
    def publish(
        self,
        event: str,
        payload: dict,
        *,
        roles: Iterable[str] = (),
        user_ids: Iterable[int] = (),
    ) -> None:
        raise NotImplementedError


class IdAllocator(ABC):
    @abstractmethod
    def next_id(self, family: str) -> int:
        raise NotImplementedError


class DocRenderer(ABC):
    @abstractmethod
    def render(self, template_key: str, bindings: dict) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        return None


class AmountWords(ABC):
    @abstractmethod
    def words(self, amount: Decimal, language: str = "en", currency: str = "EGP") -> str:
        raise NotImplementedError


class SnapshotStore(ABC):
    """CRUD over workflow records with optimistic version checks.

    ``update`` only succeeds when ``expected_version`` still matches the stored
    row; otherwise it raises a CONFLICT ``DomainError``. ``approve_block`` is the
    one conditional write the unit coordinator relies on.
    """

    @abstractmethod
    def get(self, model: Type[T], entity_id: int) -> T:
        raise NotImplementedError

    @abstractmethod
    def find(self, model: Type[T], **filters: Any) -> List[T]:
        raise NotImplementedError

    @abstractmethod
    def add(self, record: T) -> T:
        raise NotImplementedError

    @abstractmethod
    def update(self, model: Type[T], entity_id: int, expected_version: int, **values: Any) -> T:
        raise NotImplementedError

    @abstractmethod
    def approve_block(self, block_id: int, expected_version: int, now: datetime, **values: Any) -> bool:
        raise NotImplementedError

    @abstractmethod
    def active_blocks(self, unit_id: int, now: datetime) -> List[Any]:
        raise NotImplementedError

    @abstractmethod
    def due_blocks(self, now: datetime) -> List[Any]:
        raise NotImplementedError

    @abstractmethod
    def append_history(self, record: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def history(self, entity: str, entity_id: int) -> Sequence[Any]:
        raise NotImplementedError

    @abstractmethod
    def last_history(self, entity: str, entity_id: int) -> Optional[Any]:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError
