"""Create or upgrade the ``game_rooms`` table.

Usage::

    python -m coopsync.server.migrate --database-url postgresql://...
    python -m coopsync.server.migrate --print-sql > schema.sql
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from coopsync.server.config import load_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def read_schema(path: Path = SCHEMA_PATH) -> str:
    return path.read_text(encoding="utf-8")


def _psycopg_connect(database_url: str) -> Any:
    import psycopg

    return psycopg.connect(database_url)


def apply_schema(
    database_url: str,
    schema_sql: str | None = None,
    connect: Callable[[str], Any] = _psycopg_connect,
) -> None:
    """Run the room schema against ``database_url`` in one transaction.

    The statements are idempotent, so re-running against an existing
    database only adds what is missing.
    """
    sql = schema_sql if schema_sql is not None else read_schema()
    with connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    logger.info("Applied room schema (%d bytes)", len(sql))


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Apply the co-op park room schema")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--schema", type=Path, default=SCHEMA_PATH)
    parser.add_argument("--print-sql", action="store_true", help="write the schema to stdout and exit")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    schema_sql = read_schema(args.schema)
    if args.print_sql:
        sys.stdout.write(schema_sql)
        return 0
    if not args.database_url:
        raise RuntimeError("COOPSYNC_DATABASE_URL or --database-url is required for migration")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    apply_schema(args.database_url, schema_sql)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
