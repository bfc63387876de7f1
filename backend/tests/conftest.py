"""Shared test helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from hackvote.domain import Event, Principal, Team, User
from hackvote.store import InMemoryStore

FIXED_NOW = datetime(2026, 3, 14, 10, 0, tzinfo=timezone.utc)


def make_team(team_id: str, participant: int = 0, judge: int = 0, hidden: bool = False) -> Team:
    return Team(
        id=team_id,
        name=team_id.upper(),
        participant_vote_count=participant,
        judge_vote_count=judge,
        is_hidden=hidden,
    )


def make_store(
    status: str = "waiting",
    teams: list[Team] | None = None,
    users: list[User] | None = None,
    **event_fields,
) -> InMemoryStore:
    store = InMemoryStore.create("test-event")
    store.put_event(
        Event(id="test-event", title="Test", status=status, created_at=FIXED_NOW, **event_fields)
    )
    for team in teams or []:
        store.put_team(team)
    for user in users or []:
        store.put_user(user)
    return store


def principal_of(user: User) -> Principal:
    return Principal(uid=user.unique_code, role=user.role, team_id=user.team_id)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
