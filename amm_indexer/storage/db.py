from functools import lru_cache
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./amm_indexer.db")


def make_engine(url: str = DATABASE_URL, worker: bool = False) -> Engine:
    """API processes get a pooled engine; Celery workers get NullPool."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    if worker:
        return create_engine(url, pool_pre_ping=True, poolclass=NullPool)
    return create_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=20)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@lru_cache(maxsize=None)
def get_engine(url: str = DATABASE_URL, worker: bool = False) -> Engine:
    return make_engine(url, worker=worker)


@lru_cache(maxsize=None)
def get_session_factory(url: str = DATABASE_URL, worker: bool = False) -> sessionmaker:
    """Process-scoped session factory, built on first use."""
    return make_session_factory(get_engine(url, worker=worker))


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
