"""
Create every table known to the composed modules (development/test helper).

Production schemas are managed by alembic (scripts/release.py); this is for a
fresh local database.

Usage:
  python scripts/init_db.py
"""

import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.modulith import create_app
from app.modulith.models import Base


def create_tables() -> list[str]:
    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return sorted(Base.metadata.tables)


def main() -> None:
    tables = create_tables()
    print("Initialized database.")
    print(f"Tables: {', '.join(tables)}")


if __name__ == "__main__":
    main()
