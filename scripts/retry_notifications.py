#!/usr/bin/env python3
"""Re-publish notifications that failed after their state change was saved."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from salesdesk.config import SessionLocal, settings  # noqa: E402
from salesdesk.core.logging import configure_logging  # noqa: E402
from salesdesk.services.context import build_context  # noqa: E402
from salesdesk.services.notifications import retry_outbox  # noqa: E402


def main() -> None:
    configure_logging(settings.log_level, settings.log_json)
    with SessionLocal() as session:
        delivered = retry_outbox(build_context(session))
    if delivered:
        print(f"Delivered queued notifications: {', '.join(str(item_id) for item_id in delivered)}")
    else:
        print("No queued notifications delivered.")


if __name__ == "__main__":
    main()
