import sys
from collections.abc import Callable, Generator
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from salesdesk.config import Base  # noqa: E402
import salesdesk.config as app_config  # noqa: E402
import salesdesk.main as app_main  # noqa: E402
from salesdesk.constants import ADMIN, CEO, DEFAULT_ROLES, PROPERTY_CONSULTANT, SALES_MANAGER  # noqa: E402
from salesdesk.core.actors import Actor  # noqa: E402
from salesdesk.core.ports import FixedClock  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from salesdesk.models import models as _all_models  # noqa: E402,F401
from salesdesk.models.models import Deal, Unit, UnitModelPricing  # noqa: E402
from salesdesk.services import deals as deal_service  # noqa: E402
from salesdesk.services.calculation import CalculationRequest  # noqa: E402
from salesdesk.services.context import ServiceContext, build_context  # noqa: E402
from salesdesk.services.plan_builder import CustomPlanInputs, PlanMode  # noqa: E402
from salesdesk.services.thresholds import thresholds_cache  # noqa: E402
from salesdesk.services.units import create_unit as add_unit  # noqa: E402
from salesdesk.services.units import decide_model_pricing, propose_model_pricing  # noqa: E402

START = datetime(2025, 1, 15, 9, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Configure the app-wide SessionLocal/engine so TestClient uses a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.SessionLocal = SessionLocal
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _fresh_thresholds_cache():
    thresholds_cache.invalidate()
    yield
    thresholds_cache.invalidate()


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def ctx(db_session: Session, clock: FixedClock) -> ServiceContext:
    return build_context(db_session, clock=clock)


@pytest.fixture
def actors() -> Dict[str, Actor]:
    return {
        role: Actor(id=100 + index, role=role, name=role.replace("_", " ").title())
        for index, (role, _) in enumerate(DEFAULT_ROLES, start=1)
    }


@pytest.fixture
def approved_pricing(ctx: ServiceContext, actors: Dict[str, Actor]) -> Callable[..., UnitModelPricing]:
    def _create(
        model_code: str = "TWIN-A",
        list_price: str = "1000000",
        annual_rate_percent: str = "0",
        duration_years: int = 6,
        frequency: str = "quarterly",
    ) -> UnitModelPricing:
        pricing = propose_model_pricing(
            ctx,
            actors[ADMIN],
            model_code=model_code,
            list_price=list_price,
            annual_rate_percent=annual_rate_percent,
            duration_years=duration_years,
            frequency=frequency,
        )
        return decide_model_pricing(ctx, actors[CEO], pricing.id, "approve")

    return _create


@pytest.fixture
def create_unit(
    ctx: ServiceContext,
    actors: Dict[str, Actor],
    approved_pricing: Callable[..., UnitModelPricing],
) -> Callable[..., Unit]:
    counter = {"value": 0}

    def _create(model_code: str = "TWIN-A", draft: bool = False) -> Unit:
        if not ctx.store.find(UnitModelPricing, model_code=model_code, status="approved"):
            approved_pricing(model_code=model_code)
        counter["value"] += 1
        return add_unit(
            ctx,
            actors[ADMIN],
            code=f"U-{counter['value']:04d}",
            unit_type="twin house",
            model_code=model_code,
            area="215",
            building_number=str(counter["value"]),
            zone="Phase 1",
            draft=draft,
        )

    return _create


@pytest.fixture
def create_deal(
    ctx: ServiceContext,
    actors: Dict[str, Actor],
    create_unit: Callable[..., Unit],
) -> Callable[..., Deal]:
    """Custom-price deal on a 0% unit: no discount evaluates ACCEPT, any discount REJECT."""

    def _create(
        unit: Optional[Unit] = None,
        actor: Optional[Actor] = None,
        discount: str = "0",
        dp_percent: str = "20",
    ) -> Deal:
        unit = unit or create_unit()
        request = CalculationRequest(
            mode=PlanMode.EVALUATE_CUSTOM_PRICE,
            inputs=CustomPlanInputs(sales_discount_percent=Decimal(discount), dp_value=Decimal(dp_percent)),
            unit_id=unit.id,
        )
        return deal_service.create_deal(
            ctx,
            actor or actors[PROPERTY_CONSULTANT],
            request,
            title="Twin house offer",
            buyers=[{"buyer_name": "Mona Adel", "nationality": "Egyptian", "phone_primary": "01000000000"}],
        )

    return _create


@pytest.fixture
def approved_deal(
    ctx: ServiceContext,
    actors: Dict[str, Actor],
    create_deal: Callable[..., Deal],
) -> Callable[..., Deal]:
    def _create(**kwargs) -> Deal:
        deal = create_deal(**kwargs)
        deal_service.apply_deal_event(ctx, deal.id, "submit", kwargs.get("actor") or actors[PROPERTY_CONSULTANT])
        return deal_service.apply_deal_event(ctx, deal.id, "approve_sm", actors[SALES_MANAGER])

    return _create
