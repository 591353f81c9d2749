#!/usr/bin/env python3
"""
Reset usage counters of every account whose counting period ended.

Optional: admission resets counters lazily on the next request anyway. Run
from cron (e.g. shortly after midnight UTC on the 1st) to keep dashboards
and reports current:
  python scripts/sweep_usage_periods.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv(project_root / ".env")

from app.db.session import SessionLocal
from app.services.admission import sweep_period_resets


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    db = SessionLocal()
    try:
        count = sweep_period_resets(db)
    finally:
        db.close()
    print(f"Reset {count} account(s)")


if __name__ == "__main__":
    main()
