from __future__ import annotations

from sqlalchemy import inspect

from drawledger.db.engine import make_engine
from drawledger.models import Base


def create_tables() -> None:
    """Create any missing tables for the configured database."""
    engine = make_engine()
    Base.metadata.create_all(engine)


def print_tables() -> None:
    """Inspect the configured database and print all table names."""
    engine = make_engine()
    insp = inspect(engine)
    print("Current tables:", ", ".join(sorted(insp.get_table_names())))


def main() -> None:
    create_tables()
    print_tables()


if __name__ == "__main__":
    main()
