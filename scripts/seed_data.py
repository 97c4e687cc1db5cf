#!/usr/bin/env python
"""
Seed script to populate the database with sample inventory for local development.

Usage:
    python scripts/seed_data.py --units 10
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from salesdesk.auth.jwt import create_access_token  # noqa: E402
from salesdesk.config import Base, SessionLocal, engine  # noqa: E402
from salesdesk.constants import ADMIN, CEO, DEFAULT_ROLES  # noqa: E402
from salesdesk.core.actors import Actor  # noqa: E402
from salesdesk.models.models import Unit, UnitModelPricing  # noqa: E402
from salesdesk.services.context import build_context  # noqa: E402
from salesdesk.services.thresholds import set_thresholds  # noqa: E402
from salesdesk.services.units import create_unit, decide_model_pricing, propose_model_pricing  # noqa: E402

MODEL_CODE = "TWIN-A"
DEFAULT_THRESHOLDS = {
    "dpPercentMin": "10",
    "firstYearPercentMin": "20",
    "secondYearPercentMin": "10",
    "handoverPercentMax": "40",
}


def seed_database(units: int) -> None:
    Base.metadata.create_all(bind=engine)
    admin = Actor(id=1, role=ADMIN, name="Site Administrator")
    ceo = Actor(id=2, role=CEO, name="Chief Executive")
    with SessionLocal() as session:
        ctx = build_context(session)
        if not ctx.store.find(UnitModelPricing, model_code=MODEL_CODE, status="approved"):
            pricing = propose_model_pricing(
                ctx,
                admin,
                model_code=MODEL_CODE,
                list_price="4500000",
                annual_rate_percent="25",
                duration_years=6,
                frequency="quarterly",
                maintenance_price="350000",
            )
            decide_model_pricing(ctx, ceo, pricing.id, "approve")
            set_thresholds(ctx, ceo, DEFAULT_THRESHOLDS)

        start_index = len(ctx.store.find(Unit)) + 1
        targets = max(units, 0)
        for offset in range(targets):
            index = start_index + offset
            create_unit(
                ctx,
                admin,
                code=f"U-{index:04d}",
                unit_type="twin house",
                model_code=MODEL_CODE,
                area="215",
                building_number=str(100 + index),
                zone="Phase 1",
            )
        print(f"Seed complete. Created {targets} units for model {MODEL_CODE}.")

    for user_id, (role, _) in enumerate(DEFAULT_ROLES, start=10):
        print(f"{role}: {create_access_token(user_id, role)}")


def main():
    parser = argparse.ArgumentParser(description="Seed the sales desk database with sample units.")
    parser.add_argument("--units", type=int, default=10, help="Number of units to create")
    args = parser.parse_args()
    seed_database(args.units)


if __name__ == "__main__":
    main()
