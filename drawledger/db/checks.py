"""Checks run against a live database before it is trusted with money."""

from __future__ import annotations

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from ..models import Base

# Single-column uniqueness the ledger relies on for idempotency:
# replayed callbacks, one bonus per referred user, one wallet per user,
# no duplicate tickets.
LEDGER_UNIQUE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("entries", "ticket_number"),
    ("transactions", "external_payment_id"),
    ("transactions", "referred_user_id"),
    ("wallets", "user_id"),
)


def missing_unique_guards(engine: Engine) -> list[str]:
    """Return ``"table.column"`` for every ledger guard absent from the database.

    A guard counts as present if the column has a one-column unique
    constraint or unique index. Missing tables report all their guards.
    """

    insp = inspect(engine)
    tables = set(insp.get_table_names())
    missing = []
    for table, column in LEDGER_UNIQUE_COLUMNS:
        if table not in tables:
            missing.append(f"{table}.{column}")
            continue
        unique_sets = [
            uc["column_names"] for uc in insp.get_unique_constraints(table)
        ] + [ix["column_names"] for ix in insp.get_indexes(table) if ix.get("unique")]
        if [column] not in unique_sets:
            missing.append(f"{table}.{column}")
    return missing


def schema_drift(engine: Engine) -> list:
    """Alembic operations needed to bring the database in line with the models."""

    with engine.connect() as connection:
        context = MigrationContext.configure(
            connection=connection,
            opts={
                "compare_type": True,
                "render_as_batch": connection.dialect.name == "sqlite",
            },
        )
        upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    if upgrade_ops is None:
        return []
    return list(upgrade_ops.ops or [])


__all__ = ["LEDGER_UNIQUE_COLUMNS", "missing_unique_guards", "schema_drift"]
