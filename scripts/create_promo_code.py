#!/usr/bin/env python3
"""
Create a promotion code.

Run from project root with DATABASE_URL set:
  python scripts/create_promo_code.py SAVE20 20
  python scripts/create_promo_code.py LAUNCH50 50 --max-uses 100 --expires 2026-12-31
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path

# Run from project root; ensure app is importable
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv(project_root / ".env")

from app.db.session import SessionLocal
from app.services.promotion_ledger import create_promotion_code


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a PromptPal promotion code.")
    parser.add_argument("code", help="Code customers type in (stored upper-case)")
    parser.add_argument("discount_percent", type=int, help="Discount in percent, 0-100")
    parser.add_argument("--max-uses", type=int, default=0, help="Total redemptions allowed (0 = unlimited)")
    parser.add_argument("--expires", type=str, default=None, help="Expiry date/time in ISO format (UTC)")
    parser.add_argument("--description", type=str, default=None)
    args = parser.parse_args()

    expires_at = datetime.fromisoformat(args.expires) if args.expires else None

    db = SessionLocal()
    try:
        promo = create_promotion_code(
            db,
            args.code,
            args.discount_percent,
            max_uses=args.max_uses,
            expires_at=expires_at,
            description=args.description,
        )
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    finally:
        db.close()

    print(f"Created {promo.code}: {promo.discount_percent}% off, max uses {promo.max_uses or 'unlimited'}")


if __name__ == "__main__":
    main()
