#!/usr/bin/env python3
"""Expire unit blocks whose hold period has ended and release their units."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from salesdesk.config import SessionLocal, settings  # noqa: E402
from salesdesk.core.logging import configure_logging  # noqa: E402
from salesdesk.services.context import build_context  # noqa: E402
from salesdesk.services.unit_blocks import expire_due  # noqa: E402


def main() -> None:
    configure_logging(settings.log_level, settings.log_json)
    with SessionLocal() as session:
        expired = expire_due(build_context(session))
    if expired:
        print(f"Expired unit blocks: {', '.join(str(block.id) for block in expired)}")
    else:
        print("No unit blocks due for expiry.")


if __name__ == "__main__":
    main()
