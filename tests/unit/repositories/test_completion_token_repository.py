from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.domain.care_plan import CompletionTokenRecord
from app.domain.exceptions import ConflictError, TokenAlreadyUsedError

NOW = datetime(2025, 6, 2, 8, 0, tzinfo=timezone.utc)


def _record(token_hash="hash_a", *, day_index=0, expires_in=timedelta(days=7)) -> CompletionTokenRecord:
    return CompletionTokenRecord(
        plant_id="plant_1",
        user_id="user_1",
        day_index=day_index,
        action_id="act_water",
        token_hash=token_hash,
        expires_at=NOW + expires_in,
        created_at=NOW,
    )


def test_create_assigns_id_and_find_by_hash(token_repo):
    created = token_repo.create(_record())
    assert created.id is not None

    found = token_repo.find_by_hash("hash_a")
    assert found.plant_id == "plant_1"
    assert found.expires_at == NOW + timedelta(days=7)
    assert not found.used
    assert token_repo.find_by_hash("unknown") is None


def test_duplicate_hash_conflicts(token_repo):
    token_repo.create(_record())
    with pytest.raises(ConflictError):
        token_repo.create(_record())


def test_day_index_is_checked(token_repo):
    with pytest.raises(ConflictError):
        token_repo.create(_record(day_index=7))


def test_mark_used_only_once(token_repo):
    record = token_repo.create(_record())
    token_repo.mark_used(record.id, NOW)

    found = token_repo.find_by_hash("hash_a")
    assert found.used
    assert found.used_at == NOW

    with pytest.raises(TokenAlreadyUsedError):
        token_repo.mark_used(record.id, NOW)


def test_purge_expired(token_repo):
    token_repo.create(_record("old", expires_in=timedelta(hours=-1)))
    token_repo.create(_record("edge", expires_in=timedelta(0)))
    token_repo.create(_record("live"))

    assert token_repo.purge_expired(NOW) == 2
    assert token_repo.find_by_hash("live") is not None
    assert token_repo.find_by_hash("old") is None
