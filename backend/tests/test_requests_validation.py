from __future__ import annotations

import pytest
from pydantic import ValidationError

from hackvote.domain import (
    CreateTeamRequest,
    CreateUserRequest,
    EventConfigUpdate,
    FinalResolveRequest,
    VoteRequest,
)


def test_vote_request_drops_blanks_and_duplicates():
    """投票リクエストは空白を除き、重複したチームを1つにまとめる。"""

    req = VoteRequest.model_validate({"selectedTeams": [" a ", "b", "", "a", "  "]})
    assert req.selected_teams == ["a", "b"]


def test_create_team_request_rejects_blank_name():
    """チーム名が空白のみの場合は弾く。"""

    with pytest.raises(ValidationError):
        CreateTeamRequest(name="   ")


def test_create_user_request_normalizes_code():
    """アクセスコードは前後の空白を除いて大文字にそろえる。"""

    req = CreateUserRequest(unique_code=" abc1 ", name=" Pat ", role="participant")
    assert req.unique_code == "ABC1"
    assert req.name == "Pat"

    with pytest.raises(ValidationError):
        CreateUserRequest(unique_code="x", name="p", role="guest")


def test_event_config_limits_must_be_positive():
    """投票上限は1以上。"""

    with pytest.raises(ValidationError):
        EventConfigUpdate(max_votes_p1=0)
    assert EventConfigUpdate(max_votes_p2=2).max_votes_p2 == 2


def test_final_resolve_request_accepts_camel_case():
    """最終順位の上書きは rankedTeamIds で受け付ける。"""

    req = FinalResolveRequest.model_validate({"rankedTeamIds": ["a", "b", "c"]})
    assert req.ranked_team_ids == ["a", "b", "c"]
