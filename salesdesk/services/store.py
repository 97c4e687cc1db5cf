from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import BLOCK_ACTIVE_STATUSES
from ..core.errors import DomainError, ErrorKind, not_found
from ..core.ports import IdAllocator, SnapshotStore
from ..models.models import HistoryRecord, IdSequence, UnitBlock
from ..utils.retry import retry_upstream

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlSnapshotStore(SnapshotStore):
    """SQLAlchemy-backed store. Every write commits; transient database faults are retried."""

    def __init__(self, session: Session, *, attempts: Optional[int] = None, base_delay: Optional[float] = None) -> None:
        self.session = session
        self.attempts = attempts if attempts is not None else settings.upstream_retry_attempts
        self.base_delay = base_delay if base_delay is not None else settings.upstream_retry_base_delay

    def _retry(self, operation: Callable[[], T], description: str) -> T:
        return retry_upstream(
            operation,
            attempts=self.attempts,
            base_delay=self.base_delay,
            retry_on=(OperationalError,),
            on_retry=lambda exc: self.session.rollback(),
            description=description,
        )

    def get(self, model: Type[T], entity_id: int) -> T:
        record = self._retry(
            lambda: self.session.get(model, entity_id, populate_existing=True),
            f"load {model.__tablename__}",
        )
        if record is None:
            raise not_found(model.__name__, entity_id)
        return record

    def find(self, model: Type[T], **filters: Any) -> List[T]:
        def _query() -> List[T]:
            query = self.session.query(model)
            for name, value in filters.items():
                column = getattr(model, name)
                if isinstance(value, (list, tuple, set, frozenset)):
                    query = query.filter(column.in_(list(value)))
                else:
                    query = query.filter(column == value)
            return query.order_by(*model.__table__.primary_key.columns).all()

        return self._retry(_query, f"query {model.__tablename__}")

    def add(self, record: T) -> T:
        def _write() -> None:
            self.session.add(record)
            self.session.commit()

        self._retry(_write, f"insert {record.__tablename__}")
        return record

    def update(self, model: Type[T], entity_id: int, expected_version: int, **values: Any) -> T:
        statement = (
            update(model.__table__)
            .where(model.__table__.c.id == entity_id, model.__table__.c.version == expected_version)
            .values(version=expected_version + 1, **values)
        )

        def _write() -> int:
            result = self.session.execute(statement)
            self.session.commit()
            return result.rowcount

        if self._retry(_write, f"update {model.__tablename__}") == 0:
            current = self.get(model, entity_id)
            raise DomainError(
                ErrorKind.CONFLICT,
                f"{model.__name__} {entity_id} was modified concurrently",
                {"entity": model.__name__, "id": entity_id, "expectedVersion": expected_version, "currentVersion": current.version},
            )
        return self.get(model, entity_id)

    def approve_block(self, block_id: int, expected_version: int, now: datetime, **values: Any) -> bool:
        """Approve only while no other block holds the unit."""
        blocks = UnitBlock.__table__
        block = self.get(UnitBlock, block_id)
        other = blocks.alias("other_blocks")
        unit_held = (
            select(other.c.id)
            .where(
                other.c.unit_id == block.unit_id,
                other.c.id != block_id,
                other.c.status.in_(BLOCK_ACTIVE_STATUSES),
                other.c.expires_at > now,
            )
            .exists()
        )
        statement = (
            update(blocks)
            .where(
                blocks.c.id == block_id,
                blocks.c.version == expected_version,
                blocks.c.status == "pending",
                ~unit_held,
            )
            .values(status="approved", version=expected_version + 1, **values)
        )

        def _write() -> int:
            result = self.session.execute(statement)
            self.session.commit()
            return result.rowcount

        return self._retry(_write, "approve unit block") == 1

    def active_blocks(self, unit_id: int, now: datetime) -> List[UnitBlock]:
        return self._retry(
            lambda: self.session.query(UnitBlock)
            .populate_existing()
            .filter(
                UnitBlock.unit_id == unit_id,
                UnitBlock.status.in_(BLOCK_ACTIVE_STATUSES),
                UnitBlock.expires_at > now,
            )
            .order_by(UnitBlock.id)
            .all(),
            "query active blocks",
        )

    def due_blocks(self, now: datetime) -> List[UnitBlock]:
        return self._retry(
            lambda: self.session.query(UnitBlock)
            .populate_existing()
            .filter(UnitBlock.status.in_(BLOCK_ACTIVE_STATUSES), UnitBlock.expires_at <= now)
            .order_by(UnitBlock.expires_at, UnitBlock.id)
            .all(),
            "query due blocks",
        )

    def append_history(self, record: HistoryRecord) -> HistoryRecord:
        return self.add(record)

    def history(self, entity: str, entity_id: int) -> Sequence[HistoryRecord]:
        return self._retry(
            lambda: self.session.query(HistoryRecord)
            .filter(HistoryRecord.entity == entity, HistoryRecord.entity_id == entity_id)
            .order_by(HistoryRecord.at, HistoryRecord.id)
            .all(),
            "query history",
        )

    def last_history(self, entity: str, entity_id: int) -> Optional[HistoryRecord]:
        return self._retry(
            lambda: self.session.query(HistoryRecord)
            .filter(HistoryRecord.entity == entity, HistoryRecord.entity_id == entity_id)
            .order_by(HistoryRecord.at.desc(), HistoryRecord.id.desc())
            .first(),
            "query history",
        )

    def rollback(self) -> None:
        self.session.rollback()


class SqlIdAllocator(IdAllocator):
    """Per-family counters in ``id_sequences``; each allocation commits on its own."""

    def __init__(self, session: Session, *, attempts: Optional[int] = None, base_delay: Optional[float] = None) -> None:
        self.session = session
        self.attempts = attempts if attempts is not None else settings.upstream_retry_attempts
        self.base_delay = base_delay if base_delay is not None else settings.upstream_retry_base_delay

    def next_id(self, family: str) -> int:
        sequences = IdSequence.__table__

        def _allocate() -> int:
            result = self.session.execute(
                update(sequences)
                .where(sequences.c.family == family)
                .values(last_value=sequences.c.last_value + 1)
            )
            if result.rowcount == 0:
                self.session.execute(sequences.insert().values(family=family, last_value=1))
            value = self.session.execute(
                select(sequences.c.last_value).where(sequences.c.family == family)
            ).scalar_one()
            self.session.commit()
            return value

        return retry_upstream(
            _allocate,
            attempts=self.attempts,
            base_delay=self.base_delay,
            retry_on=(OperationalError,),
            on_retry=lambda exc: self.session.rollback(),
            description=f"allocate {family} id",
        )
