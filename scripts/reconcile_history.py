#!/usr/bin/env python3
"""Write reconciled history rows for records changed without a matching history entry."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from salesdesk.config import SessionLocal, settings  # noqa: E402
from salesdesk.core.logging import configure_logging  # noqa: E402
from salesdesk.services.audit import reconcile_history  # noqa: E402
from salesdesk.services.context import build_context  # noqa: E402


def main() -> None:
    configure_logging(settings.log_level, settings.log_json)
    with SessionLocal() as session:
        written = reconcile_history(build_context(session))
        summary = [f"{entry.entity}:{entry.entity_id}" for entry in written]
    if summary:
        print(f"Reconciled history for: {', '.join(summary)}")
    else:
        print("History is consistent.")


if __name__ == "__main__":
    main()
