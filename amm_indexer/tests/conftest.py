from dotenv import load_dotenv
import pathlib

# Automatically load .env from project root
load_dotenv(dotenv_path=pathlib.Path(__file__).parent.parent.parent / ".env")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from amm_indexer.storage.db import make_session_factory
from amm_indexer.storage.db_utils import create_tables
from amm_indexer.tests.chain_fakes import LogFactory


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def logs():
    return LogFactory()
