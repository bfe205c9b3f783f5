from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
import logging

from amm_indexer.storage.base import Base
# register every table on Base.metadata
from amm_indexer.storage.models import amm_event, amm_pair, amm_transaction, pair_snapshot, sync_run  # noqa: F401

log = logging.getLogger(__name__)


def upsert_insert(session: Session, table):
    """``INSERT`` construct with ``on_conflict_*`` support for the bound dialect.

    PostgreSQL in deployment, SQLite for local runs and tests; both expose the
    same ``on_conflict_do_update`` / ``on_conflict_do_nothing`` API.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    log.info(f"Ensured tables: {', '.join(sorted(Base.metadata.tables))}")
