from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .domain import Event, EventStatus, Phase, Role
from .errors import InvalidTransitionError, PhaseClosedError, RoleMismatchError

logger = logging.getLogger(__name__)

STATUS_ORDER: tuple[EventStatus, ...] = (
    "waiting",
    "voting_p1",
    "closed_p1",
    "revealed_p1",
    "voting_p2",
    "closed_p2",
    "revealed_final",
)

# 以降のステータスは Phase 1 の選出結果が必須
REQUIRES_PHASE1_SELECTION: frozenset[EventStatus] = frozenset(
    {"voting_p2", "closed_p2", "revealed_final"}
)

# statuses the voting timer applies to
TIMER_STATUSES: frozenset[EventStatus] = frozenset({"waiting", "voting_p1", "voting_p2"})

AUTO_ADVANCE: dict[EventStatus, EventStatus] = {
    "waiting": "voting_p1",
    "voting_p1": "closed_p1",
    "voting_p2": "closed_p2",
}


@dataclass(frozen=True)
class PhaseRule:
    phase: Phase
    status: EventStatus
    role: Role
    count_field: str
    voted_flag: str
    restrict_to_phase1_selection: bool


PHASE_RULES: dict[Phase, PhaseRule] = {
    Phase.P1: PhaseRule(
        phase=Phase.P1,
        status="voting_p1",
        role="participant",
        count_field="participant_vote_count",
        voted_flag="has_voted_p1",
        restrict_to_phase1_selection=False,
    ),
    Phase.P2: PhaseRule(
        phase=Phase.P2,
        status="voting_p2",
        role="judge",
        count_field="judge_vote_count",
        voted_flag="has_voted_p2",
        restrict_to_phase1_selection=True,
    ),
}

_RULE_BY_STATUS: dict[EventStatus, PhaseRule] = {r.status: r for r in PHASE_RULES.values()}


@dataclass(frozen=True)
class VotingRule:
    """What a given principal may do in the event's current phase."""

    rule: PhaseRule
    max_votes: int
    # None means every visible team is a candidate
    team_pool: frozenset[str] | None

    @property
    def phase(self) -> Phase:
        return self.rule.phase


def status_index(status: EventStatus) -> int:
    return STATUS_ORDER.index(status)


def active_phase(status: EventStatus) -> Phase | None:
    rule = _RULE_BY_STATUS.get(status)
    return rule.phase if rule else None


def voting_rule(event: Event, role: Role) -> VotingRule:
    """Derive eligibility for `role` from the event status.

    Raises PhaseClosedError outside a voting phase and RoleMismatchError when
    the phase belongs to another role.
    """

    rule = _RULE_BY_STATUS.get(event.status)
    if rule is None:
        raise PhaseClosedError(f"voting is not open (status: {event.status})")
    if role != rule.role:
        raise RoleMismatchError(f"{role} cannot vote in phase {rule.phase.value}")

    pool = frozenset(event.phase1_selected_team_ids) if rule.restrict_to_phase1_selection else None
    return VotingRule(rule=rule, max_votes=event.max_votes(rule.phase), team_pool=pool)


def validate_transition(current: EventStatus, new: EventStatus, event: Event) -> None:
    current_order = status_index(current)
    new_order = status_index(new)
    if new_order <= current_order:
        raise InvalidTransitionError(
            f'cannot move from "{current}" back to "{new}"; only a full reset returns to "waiting"'
        )
    if new_order > current_order + 1:
        raise InvalidTransitionError(f'cannot skip phases: "{current}" -> "{new}"')
    if new in REQUIRES_PHASE1_SELECTION and not event.phase1_selected_team_ids:
        raise InvalidTransitionError(
            f'cannot enter "{new}" before the phase 1 selection is finalized'
        )


def timer_expired(event: Event, now: datetime) -> bool:
    if not event.auto_close_enabled or event.voting_deadline is None:
        return False
    if event.status not in TIMER_STATUSES:
        return False
    return now >= event.voting_deadline


def auto_advance_target(event: Event, now: datetime) -> EventStatus | None:
    """Return the status an expired timer moves the event to, if any."""

    if not timer_expired(event, now):
        return None
    return AUTO_ADVANCE.get(event.status)
