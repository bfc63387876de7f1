from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .domain import PHASE1_TOP_N, PODIUM_SIZE, Event, EventStatus, utcnow
from .errors import InvalidTransitionError, NotFoundError, TieResolutionError
from .ledger import dedupe
from .ranking import calculate_final_scores, select_phase1_teams, visible_teams
from .store import Store

logger = logging.getLogger(__name__)

PHASE1_SELECTION_STATUSES: frozenset[EventStatus] = frozenset({"closed_p1", "revealed_p1"})
FINAL_RESOLUTION_STATUSES: frozenset[EventStatus] = frozenset({"closed_p2"})


class TieResolutionService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def _event(self) -> Event:
        event = self.store.get_event()
        if event is None:
            raise NotFoundError("event not found")
        return event

    def resolve_phase1_tie(self, selected_team_ids: list[str]) -> list[str]:
        """Commit the admin's completion of a phase 1 boundary tie.

        The selection must keep every team that cleared the cutoff outright and
        fill the remaining slots from the boundary-tie pool.
        """

        event = self._event()
        if event.status not in PHASE1_SELECTION_STATUSES:
            raise InvalidTransitionError(
                f'the phase 1 selection can only be set after phase 1 closes (status: "{event.status}")'
            )

        teams = self.store.list_teams()
        required = min(PHASE1_TOP_N, len(visible_teams(teams)))
        selected = dedupe(selected_team_ids)
        if len(selected) != len(selected_team_ids):
            raise TieResolutionError("selectedTeamIds must not contain duplicates")
        if len(selected) != required:
            raise TieResolutionError(f"must select exactly {required} team(s), got {len(selected)}")

        result = select_phase1_teams(teams, PHASE1_TOP_N)
        auto = set(result.selected_team_ids)
        pool = auto | {t.id for t in result.tied_teams or []}

        dropped = [tid for tid in result.selected_team_ids if tid not in selected]
        if dropped:
            raise TieResolutionError(
                f"teams above the cutoff must stay selected: {', '.join(dropped)}"
            )
        outside = [tid for tid in selected if tid not in pool]
        if outside:
            raise TieResolutionError(f"teams are not in the tied pool: {', '.join(outside)}")

        self.store.update_event(
            {"phase1_selected_team_ids": selected, "phase1_finalized_at": self.clock()}
        )
        logger.info("phase 1 tie resolved: %s", ",".join(selected))
        return selected

    def resolve_final_tie(self, ranked_team_ids: list[str]) -> list[str]:
        """Store the admin's podium order; an empty list clears a stored order."""

        event = self._event()
        if event.status not in FINAL_RESOLUTION_STATUSES:
            raise InvalidTransitionError(
                f'final ties can only be resolved after phase 2 closes (status: "{event.status}")'
            )

        if not ranked_team_ids:
            self.store.update_event({"final_ranking_overrides": []})
            logger.info("final ranking overrides cleared")
            return []

        if len(ranked_team_ids) != PODIUM_SIZE:
            raise TieResolutionError(
                f"rankedTeamIds must name exactly {PODIUM_SIZE} teams, or be empty to reset"
            )
        if len(set(ranked_team_ids)) != len(ranked_team_ids):
            raise TieResolutionError("rankedTeamIds must not contain duplicates")

        outside = [tid for tid in ranked_team_ids if tid not in event.phase1_selected_team_ids]
        if outside:
            raise TieResolutionError(
                f"teams are not in the phase 1 selection: {', '.join(outside)}"
            )
        scored = {
            s.team_id
            for s in calculate_final_scores(
                self.store.list_teams(),
                event.judge_weight,
                event.participant_weight,
                event.phase1_selected_team_ids,
            )
        }
        missing = [tid for tid in ranked_team_ids if tid not in scored]
        if missing:
            raise TieResolutionError(f"teams are not in the final ranking: {', '.join(missing)}")

        self.store.update_event({"final_ranking_overrides": list(ranked_team_ids)})
        logger.info("final ranking overrides stored: %s", ",".join(ranked_team_ids))
        return list(ranked_team_ids)
