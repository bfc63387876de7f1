from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FIXED_NOW

from hackvote.domain import Event, Phase
from hackvote.errors import InvalidTransitionError, PhaseClosedError, RoleMismatchError
from hackvote.phases import STATUS_ORDER, auto_advance_target, validate_transition, voting_rule


def _event(status: str = "waiting", **fields) -> Event:
    return Event(id="e", title="t", status=status, created_at=FIXED_NOW, **fields)


def test_forward_transitions_one_step_at_a_time():
    """ステータスは1段階ずつ前に進められる。"""

    event = _event(phase1_selected_team_ids=["a"])
    for current, new in zip(STATUS_ORDER, STATUS_ORDER[1:]):
        validate_transition(current, new, event)


@pytest.mark.parametrize(
    "current,new",
    [
        ("voting_p1", "waiting"),
        ("closed_p2", "voting_p2"),
        ("voting_p1", "voting_p1"),
        ("waiting", "closed_p1"),
        ("voting_p1", "revealed_final"),
    ],
)
def test_backward_repeat_and_skip_transitions_are_rejected(current, new):
    """後戻り・同じステータスへの遷移・段階の飛ばしは拒否する。"""

    with pytest.raises(InvalidTransitionError):
        validate_transition(current, new, _event(current, phase1_selected_team_ids=["a"]))


def test_phase2_requires_finalized_selection():
    """Phase 1 の選出が確定していなければ voting_p2 へ進めない。"""

    with pytest.raises(InvalidTransitionError):
        validate_transition("revealed_p1", "voting_p2", _event("revealed_p1"))


@pytest.mark.parametrize(
    "status,role,allowed",
    [
        ("voting_p1", "participant", True),
        ("voting_p1", "judge", False),
        ("voting_p1", "admin", False),
        ("voting_p2", "judge", True),
        ("voting_p2", "participant", False),
        ("voting_p2", "admin", False),
    ],
)
def test_voting_rule_matches_role_to_phase(status, role, allowed):
    """投票できるのは voting_p1 の参加者と voting_p2 の審査員だけ。"""

    event = _event(status, phase1_selected_team_ids=["a"])
    if allowed:
        rule = voting_rule(event, role)
        assert rule.phase is (Phase.P1 if status == "voting_p1" else Phase.P2)
    else:
        with pytest.raises(RoleMismatchError):
            voting_rule(event, role)


@pytest.mark.parametrize(
    "status", ["waiting", "closed_p1", "revealed_p1", "closed_p2", "revealed_final"]
)
def test_voting_rule_outside_voting_phases(status):
    """投票フェーズ以外では誰も投票できない。"""

    for role in ("participant", "judge", "admin"):
        with pytest.raises(PhaseClosedError):
            voting_rule(_event(status), role)


def test_phase2_rule_is_restricted_to_phase1_selection():
    """Phase 2 の投票対象は Phase 1 の選出チームに限られる。"""

    p1 = voting_rule(_event("voting_p1"), "participant")
    p2 = voting_rule(_event("voting_p2", phase1_selected_team_ids=["a", "b"]), "judge")

    assert p1.team_pool is None
    assert p2.team_pool == frozenset({"a", "b"})


def test_max_votes_precedence():
    """フェーズ別の上限、旧来の共通上限、既定値の順に優先する。"""

    assert _event().max_votes(Phase.P1) == 3
    assert _event(max_votes_per_user=5).max_votes(Phase.P2) == 5
    assert _event(max_votes_per_user=5, max_votes_p2=1).max_votes(Phase.P2) == 1
    assert _event(max_votes_p1=2).max_votes(Phase.P2) == 3


def test_auto_advance_only_after_deadline_with_auto_close():
    """自動クローズが有効で期限を過ぎた場合だけ次のステータスを返す。"""

    deadline = FIXED_NOW + timedelta(minutes=5)
    event = _event("voting_p1", voting_deadline=deadline, auto_close_enabled=True)

    assert auto_advance_target(event, FIXED_NOW) is None
    assert auto_advance_target(event, deadline) == "closed_p1"
    assert auto_advance_target(event.model_copy(update={"auto_close_enabled": False}), deadline) is None
    assert auto_advance_target(event.model_copy(update={"status": "closed_p1"}), deadline) is None
    assert (
        auto_advance_target(event.model_copy(update={"status": "waiting"}), deadline) == "voting_p1"
    )
