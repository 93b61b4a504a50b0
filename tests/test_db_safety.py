import asyncio

import pytest
from sqlalchemy import select

from admarket import main
from admarket.db import models
from admarket.db import session as db_session


def test_resolve_database_url_forces_test_db_when_pytest_env(monkeypatch):
    monkeypatch.setenv("PYTEST_CURRENT_TEST", "safety/test")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./admarket.db")
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)

    resolved = db_session.resolve_database_url()

    assert "admarket_test" in resolved
    assert db_session.is_test_database(resolved)


def test_init_models_refuses_non_test_db(monkeypatch):
    monkeypatch.setenv("PYTEST_CURRENT_TEST", "safety/test")
    monkeypatch.setenv("TEST_DATABASE_URL", "sqlite:///./admarket.db")

    with pytest.raises(RuntimeError):
        asyncio.run(main.init_models())


def test_is_test_database_checks_file_name():
    assert db_session.is_test_database("sqlite:////tmp/pytest-1/test.db")
    assert not db_session.is_test_database("sqlite:////srv/test-data/admarket.db")


async def test_session_rolls_back_on_error():
    with pytest.raises(ValueError):
        async with db_session.get_session() as session:
            session.add(models.User(nostr_pubkey="pk_test_rollback"))
            await session.flush()
            raise ValueError("boom")

    async with db_session.get_session() as session:
        assert await session.scalar(select(models.User).where(models.User.nostr_pubkey == "pk_test_rollback")) is None
