from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from .domain import (
    PHASE1_TOP_N,
    PODIUM_SIZE,
    CreateTeamRequest,
    CreateUserRequest,
    Event,
    EventConfigUpdate,
    EventStatus,
    FinalTies,
    Phase1Result,
    ResultsResponse,
    Team,
    TeamScore,
    UpdateTeamRequest,
    User,
    new_id,
    utcnow,
)
from .errors import (
    ConfigError,
    DuplicateUserError,
    InvalidTransitionError,
    NotFoundError,
    PhaseClosedError,
    UnresolvedTieError,
)
from .phases import auto_advance_target, validate_transition
from .ranking import (
    apply_ranking_overrides,
    calculate_final_scores,
    calculate_scores,
    detect_final_ties,
    podium,
    select_phase1_teams,
    visible_teams,
)
from .store import Store
from .ties import PHASE1_SELECTION_STATUSES, TieResolutionService

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-9


class AdminControlSurface:
    """Single entry point for every mutation of the event record."""

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock
        self.ties = TieResolutionService(store, clock)

    def event(self) -> Event:
        event = self.store.get_event()
        if event is None:
            raise NotFoundError("event not found")
        return event

    def init_event(self, title: str) -> Event:
        event = self.store.get_event()
        if event is not None:
            return event
        event = Event(id=self.store.event_id, title=title, created_at=self.clock())
        self.store.put_event(event)
        logger.info("event initialised: %s", event.id)
        return event

    # --- phase transitions ---

    def update_event_status(self, status: EventStatus) -> Event:
        event = self.event()
        validate_transition(event.status, status, event)

        if status == "revealed_final":
            scores = self.final_scores(event)
            ties = detect_final_ties(scores, top_n=PODIUM_SIZE)
            if ties.tied_teams and len(event.final_ranking_overrides) != PODIUM_SIZE:
                raise UnresolvedTieError(
                    "the podium has tied teams; resolve the final ranking first",
                    payload={"tied_teams": [s.model_dump() for s in ties.tied_teams]},
                )

        self.store.update_event({"status": status})
        logger.info("event status: %s -> %s", event.status, status)
        return event.model_copy(update={"status": status})

    def tick(self, now: datetime | None = None) -> EventStatus | None:
        """Apply an expired timer, if auto-close is on. Returns the new status."""

        event = self.event()
        now = now or self.clock()
        target = auto_advance_target(event, now)
        if target is None:
            return None

        validate_transition(event.status, target, event)
        fields: dict[str, object] = {"status": target}
        if event.status == "waiting":
            # the opening deadline must not also close voting_p1
            fields.update(voting_deadline=None, timer_duration_sec=None, auto_close_enabled=False)
        self.store.update_event(fields)
        logger.info("timer expired, auto-advanced: %s -> %s", event.status, target)
        return target

    # --- configuration ---

    def update_event_config(self, update: EventConfigUpdate) -> Event:
        event = self.event()
        fields = update.model_dump(exclude_none=True)

        if "max_votes_per_user" in fields and "max_votes_p1" not in fields and "max_votes_p2" not in fields:
            fields["max_votes_p1"] = fields["max_votes_per_user"]
            fields["max_votes_p2"] = fields["max_votes_per_user"]

        judge_weight = fields.get("judge_weight", event.judge_weight)
        participant_weight = fields.get("participant_weight", event.participant_weight)
        for name, weight in (("judge_weight", judge_weight), ("participant_weight", participant_weight)):
            if not 0.0 <= weight <= 1.0:
                raise ConfigError(f"{name} must be between 0 and 1")
        if not math.isclose(judge_weight + participant_weight, 1.0, abs_tol=WEIGHT_SUM_TOLERANCE):
            raise ConfigError(
                f"judge_weight and participant_weight must sum to 1.0 "
                f"(got {judge_weight} + {participant_weight})"
            )

        if fields:
            self.store.update_event(fields)
            logger.info("event config updated: %s", ", ".join(sorted(fields)))
        return event.model_copy(update=fields)

    # --- phase 1 ---

    def finalize_phase1(self) -> Phase1Result:
        event = self.event()
        if event.status not in PHASE1_SELECTION_STATUSES:
            raise InvalidTransitionError(
                f'phase 1 can only be finalized after it closes (status: "{event.status}")'
            )

        result = select_phase1_teams(self.store.list_teams(), PHASE1_TOP_N)
        if result.tied_teams:
            logger.info(
                "phase 1 boundary tie: %d auto-selected, %d tied",
                len(result.selected_team_ids),
                len(result.tied_teams),
            )
            return result

        self.store.update_event(
            {
                "phase1_selected_team_ids": result.selected_team_ids,
                "phase1_finalized_at": self.clock(),
            }
        )
        logger.info("phase 1 finalized: %s", ",".join(result.selected_team_ids))
        return result

    def resolve_phase1_ties(self, selected_team_ids: list[str]) -> list[str]:
        return self.ties.resolve_phase1_tie(selected_team_ids)

    def resolve_final_ties(self, ranked_team_ids: list[str]) -> list[str]:
        return self.ties.resolve_final_tie(ranked_team_ids)

    # --- scoring views ---

    def final_scores(self, event: Event) -> list[TeamScore]:
        return calculate_final_scores(
            self.store.list_teams(),
            event.judge_weight,
            event.participant_weight,
            event.phase1_selected_team_ids,
        )

    def scoreboard(self) -> tuple[Event, list[TeamScore], FinalTies]:
        event = self.event()
        if event.phase1_selected_team_ids:
            scores = self.final_scores(event)
        else:
            scores = calculate_scores(
                visible_teams(self.store.list_teams()), event.judge_weight, event.participant_weight
            )
        ties = detect_final_ties(scores)
        if len(event.final_ranking_overrides) == PODIUM_SIZE:
            scores = apply_ranking_overrides(scores, event.final_ranking_overrides)
        return event, scores, ties

    def results(self) -> ResultsResponse:
        event = self.event()
        if event.status == "revealed_p1":
            teams = self.store.get_teams(event.phase1_selected_team_ids)
            selected = [teams[tid] for tid in event.phase1_selected_team_ids if tid in teams]
            return ResultsResponse(status=event.status, phase1_teams=visible_teams(selected))
        if event.status == "revealed_final":
            scores = self.final_scores(event)
            return ResultsResponse(
                status=event.status,
                podium=podium(scores, event.final_ranking_overrides, PODIUM_SIZE),
            )
        raise PhaseClosedError("results have not been revealed yet")

    # --- resets ---

    def reset_votes(self) -> None:
        self.store.reset_votes()
        self.store.update_event({"final_ranking_overrides": []})
        logger.info("all votes reset")

    def reset_phase2_votes(self) -> None:
        self.store.reset_phase2_votes()
        self.store.update_event({"final_ranking_overrides": []})
        logger.info("phase 2 votes reset")

    def reset_all(self) -> None:
        self.store.reset_all()
        logger.info("event fully reset")

    # --- voting timer ---

    def set_timer(self, duration_sec: int, auto_close_enabled: bool = False) -> datetime:
        self.event()
        deadline = self.clock() + timedelta(seconds=duration_sec)
        self.store.update_event(
            {
                "voting_deadline": deadline,
                "auto_close_enabled": auto_close_enabled,
                "timer_duration_sec": duration_sec,
            }
        )
        return deadline

    def extend_timer(self, additional_sec: int) -> datetime:
        event = self.event()
        if event.voting_deadline is None:
            raise ConfigError("no active timer to extend")
        base = max(event.voting_deadline, self.clock())
        deadline = base + timedelta(seconds=additional_sec)
        self.store.update_event({"voting_deadline": deadline})
        return deadline

    def toggle_auto_close(self, enabled: bool) -> None:
        self.event()
        self.store.update_event({"auto_close_enabled": enabled})

    def reset_timer(self) -> None:
        self.event()
        self.store.update_event(
            {"voting_deadline": None, "timer_duration_sec": None, "auto_close_enabled": False}
        )

    # --- teams ---

    def add_team(self, req: CreateTeamRequest) -> Team:
        team = Team(id=new_id("team"), name=req.name, nickname=req.nickname, description=req.description)
        self.store.put_team(team)
        logger.info("team added: %s (%s)", team.id, team.name)
        return team

    def update_team(self, team_id: str, req: UpdateTeamRequest) -> Team:
        team = self.store.get_team(team_id)
        if team is None:
            raise NotFoundError(f"team not found: {team_id}")
        fields = {
            k: v
            for k, v in req.model_dump(exclude_unset=True).items()
            if v is not None or k == "nickname"
        }
        self.store.update_team(team_id, fields)
        return team.model_copy(update=fields)

    def delete_team(self, team_id: str) -> None:
        if self.store.get_team(team_id) is None:
            raise NotFoundError(f"team not found: {team_id}")
        self.store.delete_team(team_id)
        for user in self.store.list_users():
            if user.team_id == team_id:
                self.store.update_user(user.unique_code, {"team_id": None})
        logger.info("team deleted: %s", team_id)

    # --- users ---

    def add_user(self, req: CreateUserRequest) -> User:
        if self.store.get_user(req.unique_code) is not None:
            raise DuplicateUserError(f"user already exists: {req.unique_code}")
        if req.team_id is not None and self.store.get_team(req.team_id) is None:
            raise NotFoundError(f"team not found: {req.team_id}")
        user = User(unique_code=req.unique_code, name=req.name, role=req.role, team_id=req.team_id)
        self.store.put_user(user)
        if req.team_id is not None:
            self._add_member(req.team_id, user.unique_code)
        return user

    def delete_user(self, unique_code: str) -> None:
        user = self.store.get_user(unique_code)
        if user is None:
            raise NotFoundError(f"user not found: {unique_code}")
        if user.team_id is not None:
            self._remove_member(user.team_id, unique_code)
        self.store.delete_user(unique_code)
        self.store.delete_votes_by_voter(unique_code)
        logger.info("user deleted: %s", unique_code)

    def assign_team(self, unique_code: str, team_id: str | None) -> User:
        user = self.store.get_user(unique_code)
        if user is None:
            raise NotFoundError(f"user not found: {unique_code}")
        if team_id is not None and self.store.get_team(team_id) is None:
            raise NotFoundError(f"team not found: {team_id}")

        if user.team_id is not None:
            self._remove_member(user.team_id, unique_code)
        self.store.update_user(unique_code, {"team_id": team_id})
        if team_id is not None:
            self._add_member(team_id, unique_code)
        return user.model_copy(update={"team_id": team_id})

    def _add_member(self, team_id: str, unique_code: str) -> None:
        team = self.store.get_team(team_id)
        if team is not None and unique_code not in team.member_user_ids:
            self.store.update_team(team_id, {"member_user_ids": [*team.member_user_ids, unique_code]})

    def _remove_member(self, team_id: str, unique_code: str) -> None:
        team = self.store.get_team(team_id)
        if team is not None and unique_code in team.member_user_ids:
            members = [c for c in team.member_user_ids if c != unique_code]
            self.store.update_team(team_id, {"member_user_ids": members})
