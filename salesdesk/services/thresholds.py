import logging
import threading
from typing import Any, Callable, Mapping, Optional

from ..constants import TOP_MANAGEMENT_ROLES
from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import AcceptanceThresholdsConfig
from .acceptance import AcceptanceThresholds
from .audit import THRESHOLDS, record_history
from .notifications import notify

logger = logging.getLogger(__name__)


class ThresholdsCache:
    """Process-wide immutable snapshot; loaded at most once, swapped whole on change."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot: Optional[AcceptanceThresholds] = None

    def get(self, loader: Callable[[], AcceptanceThresholds]) -> AcceptanceThresholds:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._snapshot = loader()
            return self._snapshot

    def replace(self, snapshot: AcceptanceThresholds) -> None:
        with self._lock:
            self._snapshot = snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None


thresholds_cache = ThresholdsCache()


def load_active_thresholds(store) -> AcceptanceThresholds:
    rows = store.find(AcceptanceThresholdsConfig, active=True)
    if not rows:
        return AcceptanceThresholds()
    return AcceptanceThresholds.from_mapping(rows[-1].bounds)


def current_thresholds(ctx) -> AcceptanceThresholds:
    return thresholds_cache.get(lambda: load_active_thresholds(ctx.store))


def set_thresholds(ctx, actor: Actor, values: Mapping[str, Any]) -> AcceptanceThresholdsConfig:
    if actor.role not in TOP_MANAGEMENT_ROLES:
        raise DomainError(
            ErrorKind.FORBIDDEN_ROLE,
            "Only top management can approve acceptance thresholds",
            {"role": actor.role},
        )
    snapshot = AcceptanceThresholds.from_mapping(values)
    pairs = [
        ("firstYearPercent", snapshot.first_year_percent_min, snapshot.first_year_percent_max),
        ("secondYearPercent", snapshot.second_year_percent_min, snapshot.second_year_percent_max),
        ("handoverPercent", snapshot.handover_percent_min, snapshot.handover_percent_max),
        ("dpPercent", snapshot.dp_percent_min, snapshot.dp_percent_max),
    ]
    errors = []
    for name, minimum, maximum in pairs:
        for bound in (minimum, maximum):
            if bound is not None and not 0 <= bound <= 100:
                errors.append({"field": name, "message": "bounds must be between 0 and 100"})
        if minimum is not None and maximum is not None and minimum > maximum:
            errors.append({"field": name, "message": "min must not exceed max"})
    if errors:
        raise DomainError(ErrorKind.VALIDATION, "Invalid acceptance thresholds", {"errors": errors})

    now = ctx.clock.now()
    for previous in ctx.store.find(AcceptanceThresholdsConfig, active=True):
        ctx.store.update(AcceptanceThresholdsConfig, previous.id, previous.version, active=False, updated_at=now)
    config = ctx.store.add(
        AcceptanceThresholdsConfig(
            id=ctx.ids.next_id("acceptance_thresholds"),
            bounds=snapshot.to_dict(),
            active=True,
            approved_by=actor.id,
            approved_role=actor.role,
            approved_at=now,
            created_at=now,
            updated_at=now,
        )
    )
    thresholds_cache.replace(snapshot)
    record_history(ctx, THRESHOLDS, config.id, "thresholds_updated", actor, snapshot.to_dict(), at=now)
    logger.info("Acceptance thresholds %s approved by %s", config.id, actor.id)
    notify(ctx, "thresholds.updated", {"thresholdsId": config.id}, roles=["sales_manager", "financial_manager"])
    return config
