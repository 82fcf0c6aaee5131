"""
Module: stock_kernel.db.triggers
Responsibility: Install, remove and inspect the PostgreSQL triggers that
    back the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.

The listeners only see ORM flushes.  Raw SQL, bulk statements and psql
sessions go straight to the tables, so the same rules are repeated here:

    01_inventory_movement.sql  movements: no UPDATE, no DELETE
    02_inventory_balance.sql   balances: no DELETE
    03_order_status.sql        orders never leave 'fulfilled'; their lines freeze

Every trigger raises ``IMMUTABILITY_VIOLATION: ...`` so callers can match
the message regardless of driver exception class.
"""

from pathlib import Path

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine

from stock_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

INSTALL_FILES = (
    "01_inventory_movement.sql",
    "02_inventory_balance.sql",
    "03_order_status.sql",
)
DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = (
    "trg_inventory_movement_immutability_update",
    "trg_inventory_movement_immutability_delete",
    "trg_inventory_balance_delete",
    "trg_order_status_monotonic",
    "trg_order_line_item_immutability",
)


def _run_sql_files(engine: Engine, filenames) -> None:
    with engine.connect() as conn:
        for filename in filenames:
            conn.execute(text((SQL_DIR / filename).read_text(encoding="utf-8")))
        conn.commit()


def install_immutability_triggers(engine: Engine) -> None:
    """Create or replace every trigger.  Tables must already exist."""
    _run_sql_files(engine, INSTALL_FILES)
    logger.info(
        "immutability_triggers_installed",
        extra={"trigger_count": len(ALL_TRIGGER_NAMES)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Drop every trigger and its function.  For drop_tables() and migrations."""
    _run_sql_files(engine, (DROP_FILE,))
    logger.info("immutability_triggers_removed")


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names from ALL_TRIGGER_NAMES currently present in pg_trigger, sorted."""
    stmt = text(
        "SELECT tgname FROM pg_trigger WHERE tgname IN :names ORDER BY tgname"
    ).bindparams(bindparam("names", expanding=True))

    with engine.connect() as conn:
        return list(conn.execute(stmt, {"names": list(ALL_TRIGGER_NAMES)}).scalars())


def triggers_installed(engine: Engine) -> bool:
    return set(get_installed_triggers(engine)) == set(ALL_TRIGGER_NAMES)
