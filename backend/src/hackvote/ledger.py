from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .domain import Principal, Vote, utcnow
from .errors import (
    AlreadyVotedError,
    AuthenticationError,
    DuplicateRecordError,
    EmptySelectionError,
    HiddenTeamError,
    IneligibleTeamError,
    NotFoundError,
    SelfVoteError,
    TeamNotFoundError,
    TooManyTeamsError,
)
from .phases import VotingRule, voting_rule
from .store import Store, Transaction

logger = logging.getLogger(__name__)


def dedupe(team_ids: list[str]) -> list[str]:
    return list(dict.fromkeys(team_ids))


class VoteLedger:
    """Records exactly one ballot per (voter, phase) and keeps team tallies in step.

    Validation happens before the transaction; the only check repeated inside
    it is the voter's has-voted flag, since that is the one subject to races.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def cast_vote(self, principal: Principal, selected_team_ids: list[str]) -> Vote:
        team_ids = dedupe(selected_team_ids)
        if not team_ids:
            raise EmptySelectionError("select at least one team")

        event = self.store.get_event()
        if event is None:
            raise NotFoundError("event not found")
        rule = voting_rule(event, principal.role)
        if self.store.get_user(principal.uid) is None:
            raise AuthenticationError("unknown voter")
        self._validate_selection(principal, team_ids, rule)

        vote = Vote(
            voter_id=principal.uid,
            phase=rule.phase,
            selected_teams=team_ids,
            role=principal.role,
            timestamp=self.clock(),
        )

        def _commit(tx: Transaction) -> Vote:
            if tx.read_field("user", principal.uid, rule.rule.voted_flag):
                raise AlreadyVotedError(f"already voted in phase {rule.phase.value}")
            tx.create("vote", vote.key, vote.model_dump(mode="json"))
            for team_id in team_ids:
                tx.increment("team", team_id, rule.rule.count_field)
            tx.write_fields("user", principal.uid, {rule.rule.voted_flag: True, "has_voted": True})
            return vote

        try:
            committed = self.store.run_transaction(_commit)
        except AlreadyVotedError:
            logger.warning("duplicate vote rejected: voter=%s phase=%s", principal.uid, rule.phase.value)
            raise
        except DuplicateRecordError as e:
            logger.warning("duplicate vote record rejected: %s", e)
            raise AlreadyVotedError(f"already voted in phase {rule.phase.value}") from e
        except NotFoundError as e:
            # the voter or a selected team vanished between validation and commit
            if self.store.get_user(principal.uid) is None:
                raise AuthenticationError("unknown voter") from e
            raise TeamNotFoundError(str(e)) from e

        logger.info(
            "vote recorded: voter=%s phase=%s teams=%s",
            principal.uid,
            rule.phase.value,
            ",".join(team_ids),
        )
        return committed

    def _validate_selection(self, principal: Principal, team_ids: list[str], rule: VotingRule) -> None:
        if len(team_ids) > rule.max_votes:
            raise TooManyTeamsError(f"you can vote for at most {rule.max_votes} team(s)")

        if rule.team_pool is not None:
            outside = [tid for tid in team_ids if tid not in rule.team_pool]
            if outside:
                raise IneligibleTeamError(
                    f"team is not in the phase 1 selection: {', '.join(outside)}"
                )

        if principal.team_id and principal.team_id in team_ids:
            raise SelfVoteError("you cannot vote for your own team")

        teams = self.store.get_teams(team_ids)
        for team_id in team_ids:
            team = teams.get(team_id)
            if team is None:
                raise TeamNotFoundError(f"team not found: {team_id}")
            if team.is_hidden:
                raise HiddenTeamError(f"team is not open for voting: {team_id}")

