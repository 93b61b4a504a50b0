import asyncio
import os
import re
import tempfile
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_URL = "sqlite:///./admarket.db"


def resolve_database_url() -> str:
    """
    Effective database URL. Under pytest this is TEST_DATABASE_URL or a temp
    sqlite file named after the running test, never DATABASE_URL.
    """
    running_test = os.getenv("PYTEST_CURRENT_TEST")
    if running_test:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", running_test.split(" ")[0])
        return os.getenv("TEST_DATABASE_URL", f"sqlite:///{tempfile.gettempdir()}/admarket_test_{safe}.db")
    return os.getenv("DATABASE_URL", DEFAULT_DB_URL)


def is_test_database(url: str) -> bool:
    return "test" in url.rsplit("/", 1)[-1]


_engines: Dict[str, Engine] = {}
_factories: Dict[str, sessionmaker] = {}


def get_engine(url: str | None = None) -> Engine:
    url = url or resolve_database_url()
    engine = _engines.get(url)
    if engine is None:
        # Sessions hop between worker threads via to_thread.
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = _engines[url] = create_engine(url, connect_args=connect_args, future=True)
    return engine


def _factory_for(url: str) -> sessionmaker:
    if url not in _factories:
        _factories[url] = sessionmaker(bind=get_engine(url), class_=Session, expire_on_commit=False)
    return _factories[url]


def _offload(name: str):
    async def call(self, *args, **kwargs):
        return await asyncio.to_thread(getattr(self._session, name), *args, **kwargs)

    call.__name__ = name
    return call


class AsyncSessionProxy:
    """Awaitable facade over a sync Session; blocking calls run in the default executor."""

    execute = _offload("execute")
    scalars = _offload("scalars")
    scalar = _offload("scalar")
    get = _offload("get")
    flush = _offload("flush")
    refresh = _offload("refresh")
    delete = _offload("delete")
    commit = _offload("commit")
    rollback = _offload("rollback")
    close = _offload("close")

    def __init__(self, session: Session):
        self._session = session

    def add(self, instance) -> None:
        self._session.add(instance)


# Services annotate against this name; the proxy is what get_session hands out.
AsyncSession = AsyncSessionProxy


def ensure_default_executor() -> None:
    """Seed a default ThreadPoolExecutor where the loop did not create one lazily."""
    loop = asyncio.get_running_loop()
    if getattr(loop, "_default_executor", None) is None:
        loop.set_default_executor(ThreadPoolExecutor())


@asynccontextmanager
async def get_session():
    ensure_default_executor()
    session = AsyncSessionProxy(_factory_for(resolve_database_url())())
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def db_session():
    async with get_session() as session:
        yield session
