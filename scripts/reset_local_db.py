"""Utility script to reset the local decision-claim database.

Usage:
    python scripts/reset_local_db.py

Environment:
    Ensure DATABASE_URL (and other required settings) are available in
    the current shell before running this script.
"""

from __future__ import annotations

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timelog_approvals import models  # noqa: E402,F401  (registers the claim table)
from timelog_approvals.db import Base, get_engine  # noqa: E402


def reset_database() -> None:
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print("Local database reset; all decision claims were dropped.")


if __name__ == "__main__":
    reset_database()
