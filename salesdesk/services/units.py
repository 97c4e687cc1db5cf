import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from ..constants import (
    ADMIN_ROLES,
    FINANCIAL_MANAGER,
    TOP_MANAGEMENT_ROLES,
    UNIT_AVAILABLE,
    UNIT_INVENTORY_DRAFT,
)
from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Unit, UnitModelPricing
from ..utils.money import to_decimal
from .audit import MODEL_PRICING, UNIT, record_history
from .standard_plan import StandardPlan, normalize_frequency, validate_standard_plan
from .state_machine import StateMachine, transition

logger = logging.getLogger(__name__)

INVENTORY_ROLES = ADMIN_ROLES | {FINANCIAL_MANAGER}

UNIT_MACHINE = StateMachine(
    UNIT,
    [transition("publish", [UNIT_INVENTORY_DRAFT], UNIT_AVAILABLE, INVENTORY_ROLES)],
)

PRICING_MACHINE = StateMachine(
    MODEL_PRICING,
    [
        transition("approve", ["pending_approval"], "approved", TOP_MANAGEMENT_ROLES),
        transition("reject", ["pending_approval"], "rejected", TOP_MANAGEMENT_ROLES),
    ],
)


def create_unit(
    ctx,
    actor: Actor,
    *,
    code: str,
    unit_type: Optional[str] = None,
    model_code: Optional[str] = None,
    area: Any = None,
    garden_area: Any = None,
    building_number: Optional[str] = None,
    block_sector: Optional[str] = None,
    zone: Optional[str] = None,
    draft: bool = False,
) -> Unit:
    if actor.role not in INVENTORY_ROLES:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only administrators can add inventory", {"role": actor.role})
    code = (code or "").strip()
    if not code:
        raise DomainError(ErrorKind.VALIDATION, "Unit code is required", {"field": "code"})
    if ctx.store.find(Unit, code=code):
        raise DomainError(ErrorKind.VALIDATION, f"Unit code {code} already exists", {"field": "code"})
    now = ctx.clock.now()
    unit = ctx.store.add(
        Unit(
            id=ctx.ids.next_id("units"),
            code=code,
            unit_type=unit_type,
            model_code=model_code,
            area=None if area is None else to_decimal(area, "area"),
            garden_area=None if garden_area is None else to_decimal(garden_area, "gardenArea"),
            building_number=building_number,
            block_sector=block_sector,
            zone=zone,
            status=UNIT_INVENTORY_DRAFT if draft else UNIT_AVAILABLE,
            available=not draft,
            created_at=now,
            updated_at=now,
        )
    )
    record_history(ctx, UNIT, unit.id, "created", actor, {"code": code, "status": unit.status}, at=now)
    return unit


def publish_unit(ctx, actor: Actor, unit_id: int) -> Unit:
    unit = ctx.store.get(Unit, unit_id)
    UNIT_MACHINE.check("publish", unit, actor)
    now = ctx.clock.now()
    unit = ctx.store.update(Unit, unit.id, unit.version, status=UNIT_AVAILABLE, available=True, updated_at=now)
    record_history(ctx, UNIT, unit.id, "publish", actor, at=now)
    return unit


def propose_model_pricing(
    ctx,
    actor: Actor,
    *,
    model_code: str,
    list_price: Any,
    annual_rate_percent: Any,
    duration_years: int,
    frequency: str,
    maintenance_price: Any = 0,
    garage_price: Any = 0,
) -> UnitModelPricing:
    if actor.role not in INVENTORY_ROLES:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only financial managers can propose pricing", {"role": actor.role})
    plan = validate_standard_plan(
        StandardPlan(
            list_price=to_decimal(list_price, "listPrice"),
            annual_rate_percent=to_decimal(annual_rate_percent, "annualRatePercent"),
            duration_years=duration_years,
            frequency=normalize_frequency(frequency),
        )
    )
    now = ctx.clock.now()
    pricing = ctx.store.add(
        UnitModelPricing(
            id=ctx.ids.next_id("unit_model_pricing"),
            model_code=model_code,
            list_price=plan.list_price,
            maintenance_price=to_decimal(maintenance_price, "maintenancePrice"),
            garage_price=to_decimal(garage_price, "garagePrice"),
            annual_rate_percent=plan.annual_rate_percent,
            duration_years=plan.duration_years,
            frequency=plan.frequency,
            status="pending_approval",
            requested_by=actor.id,
            created_at=now,
            updated_at=now,
        )
    )
    record_history(ctx, MODEL_PRICING, pricing.id, "proposed", actor, {"modelCode": model_code}, at=now)
    return pricing


def decide_model_pricing(ctx, actor: Actor, pricing_id: int, event: str) -> UnitModelPricing:
    pricing = ctx.store.get(UnitModelPricing, pricing_id)
    rule = PRICING_MACHINE.check(event, pricing, actor)
    now = ctx.clock.now()
    values: Dict[str, Any] = {"status": rule.target, "updated_at": now}
    if rule.target == "approved":
        values.update(approved_by=actor.id, approved_at=now)
        for previous in ctx.store.find(UnitModelPricing, model_code=pricing.model_code, status="approved"):
            ctx.store.update(UnitModelPricing, previous.id, previous.version, status="superseded", updated_at=now)
            record_history(ctx, MODEL_PRICING, previous.id, "superseded", actor, {"by": pricing.id}, at=now)
    pricing = ctx.store.update(UnitModelPricing, pricing.id, pricing.version, **values)
    record_history(ctx, MODEL_PRICING, pricing.id, event, actor, at=now)
    return pricing


def standard_plan_for_unit(ctx, unit_id: int) -> StandardPlan:
    """Server-locked benchmark for the unit's model; the client cannot override it."""
    unit = ctx.store.get(Unit, unit_id)
    if not unit.model_code:
        raise DomainError(ErrorKind.VALIDATION, f"Unit {unit.code} has no model assigned", {"unitId": unit_id})
    approved = ctx.store.find(UnitModelPricing, model_code=unit.model_code, status="approved")
    if not approved:
        raise DomainError(
            ErrorKind.VALIDATION,
            f"No approved pricing for model {unit.model_code}",
            {"unitId": unit_id, "modelCode": unit.model_code},
        )
    pricing = approved[-1]
    return StandardPlan(
        list_price=Decimal(pricing.list_price),
        annual_rate_percent=Decimal(pricing.annual_rate_percent),
        duration_years=pricing.duration_years,
        frequency=pricing.frequency,
    )


def unit_info(unit: Unit) -> Dict[str, Any]:
    return {
        "unit_id": unit.id,
        "unit_code": unit.code,
        "unit_type": unit.unit_type,
        "unit_area": None if unit.area is None else str(unit.area),
        "garden_area": None if unit.garden_area is None else str(unit.garden_area),
        "building_number": unit.building_number,
        "block_sector": unit.block_sector,
        "zone": unit.zone,
    }
