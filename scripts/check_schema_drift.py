"""Pre-deploy database check.

Fails when the configured database is missing one of the unique guards the
ledger needs to stay idempotent, or when it differs from the models. Exit
codes: 0 clean, 1 problems found, 2 the check itself could not run.
"""

from __future__ import annotations

import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from drawledger.db.checks import missing_unique_guards, schema_drift
from drawledger.db.engine import make_engine


def _print_ops(ops, indent: int = 1) -> None:
    for op in ops:
        print(f"{'  ' * indent}- {op}")
        _print_ops(getattr(op, "ops", None) or [], indent + 1)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", help="defaults to DB_URL / dev.db")
    parser.add_argument(
        "--guards-only",
        action="store_true",
        help="only check the ledger unique guards, not full model drift",
    )
    args = parser.parse_args(argv)

    engine = make_engine(args.database_url)
    url = engine.url.render_as_string(hide_password=True)
    try:
        missing = missing_unique_guards(engine)
        ops = [] if args.guards_only else schema_drift(engine)
    except SQLAlchemyError as exc:
        print(f"{url}: check failed: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    if missing:
        print(f"{url}: missing unique guards: {', '.join(missing)}")
    if ops:
        print(f"{url}: schema differs from models:")
        _print_ops(ops)
    if missing or ops:
        return 1
    print(f"{url}: ledger guards present, schema matches models.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
