"""
Module: fulfillment_kernel.db.triggers
Responsibility: Loading, installing, and verifying PostgreSQL immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (via 8 PostgreSQL triggers across 4 SQL files):
    audit_append_only -- inventory_transactions: no UPDATE, no DELETE.
    audit_append_only -- order_state_changes: no UPDATE, no DELETE.
    terminal_frozen   -- orders: no DELETE; no UPDATE once SHIPPED/CANCELLED.
                         order_items: no DELETE.
    audit_append_only -- order_exceptions: no DELETE.

    The triggers only guard data; they never write audit rows.  Every
    OrderStateChange and InventoryTransaction is inserted in-process by
    the service that performs the mutation.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on any violation (surfaced by SQLAlchemy
      as InternalError / DatabaseError).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

SQL_DIR = Path(__file__).parent / "sql"

# Installation order
TRIGGER_FILES = [
    "01_inventory_transaction.sql",
    "02_order_state_change.sql",
    "03_order.sql",
    "04_order_exception.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_inventory_transaction_immutability_update",
    "trg_inventory_transaction_immutability_delete",
    "trg_order_state_change_immutability_update",
    "trg_order_state_change_immutability_delete",
    "trg_order_terminal_immutability_update",
    "trg_order_immutability_delete",
    "trg_order_item_immutability_delete",
    "trg_order_exception_immutability_delete",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: tables exist (call after create_all); engine is PostgreSQL.
    Postconditions: every trigger in ALL_TRIGGER_NAMES is installed.
        Functions use CREATE OR REPLACE, so the call is idempotent.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers and their functions.

    WARNING: only for test teardown or data-repair migrations.  Re-install
    immediately afterwards.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """List the immutability triggers currently present in pg_trigger."""
    with engine.connect() as conn:
        result = conn.execute(
            text(
                "SELECT tgname FROM pg_trigger "
                "WHERE tgname = ANY(:names) ORDER BY tgname"
            ),
            {"names": ALL_TRIGGER_NAMES},
        )
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)


def get_missing_triggers(engine: Engine) -> list[str]:
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)
