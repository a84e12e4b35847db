"""Tests for StateRepository."""

import pytest

from src.core.exceptions import StorageError
from src.persistence.repositories.state_repo import StateRepository


@pytest.mark.asyncio
async def test_load_missing_key(state_repo):
    assert await state_repo.load("research-ai-state") is None


@pytest.mark.asyncio
async def test_save_and_load(state_repo):
    record = {"currentState": "FORM_PREVIEW", "sessions": [{"id": "session_1"}]}
    await state_repo.save("research-ai-state", 1, record)

    assert await state_repo.load("research-ai-state") == (1, record)


@pytest.mark.asyncio
async def test_save_replaces_record(state_repo):
    await state_repo.save("research-ai-state", 1, {"n": 1})
    await state_repo.save("research-ai-state", 2, {"n": 2})

    assert await state_repo.load("research-ai-state") == (2, {"n": 2})


@pytest.mark.asyncio
async def test_keys_are_independent(state_repo):
    await state_repo.save("a", 1, {"n": 1})
    await state_repo.save("b", 1, {"n": 2})
    assert await state_repo.load("a") == (1, {"n": 1})


@pytest.mark.asyncio
async def test_delete(state_repo):
    await state_repo.save("research-ai-state", 1, {})
    assert await state_repo.delete("research-ai-state")
    assert not await state_repo.delete("research-ai-state")
    assert await state_repo.load("research-ai-state") is None


@pytest.mark.asyncio
async def test_corrupt_payload_raises_storage_error(test_db, state_repo):
    import aiosqlite

    async with aiosqlite.connect(test_db) as db:
        await db.execute(
            "INSERT INTO app_state (key, version, payload) VALUES (?, ?, ?)",
            ("research-ai-state", 1, "{not json"),
        )
        await db.commit()

    with pytest.raises(StorageError):
        await state_repo.load("research-ai-state")


@pytest.mark.asyncio
async def test_missing_table_raises_storage_error(tmp_path):
    repo = StateRepository(str(tmp_path / "blank.db"))
    with pytest.raises(StorageError):
        await repo.load("research-ai-state")
    with pytest.raises(StorageError):
        await repo.save("research-ai-state", 1, {})
