from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

EventStatus = Literal[
    "waiting",
    "voting_p1",
    "closed_p1",
    "revealed_p1",
    "voting_p2",
    "closed_p2",
    "revealed_final",
]
Role = Literal["participant", "judge", "admin"]

DEFAULT_JUDGE_WEIGHT = 0.8
DEFAULT_PARTICIPANT_WEIGHT = 0.2
DEFAULT_MAX_VOTES = 3
PHASE1_TOP_N = 10
PODIUM_SIZE = 3


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    P1 = "p1"
    P2 = "p2"


class Event(BaseModel):
    id: str
    title: str
    status: EventStatus = "waiting"
    judge_weight: float = DEFAULT_JUDGE_WEIGHT
    participant_weight: float = DEFAULT_PARTICIPANT_WEIGHT
    max_votes_p1: int | None = None
    max_votes_p2: int | None = None
    # legacy single limit, used when the phase-specific one is unset
    max_votes_per_user: int | None = None
    voting_deadline: datetime | None = None
    auto_close_enabled: bool = False
    timer_duration_sec: int | None = None
    phase1_selected_team_ids: list[str] = Field(default_factory=list)
    phase1_finalized_at: datetime | None = None
    final_ranking_overrides: list[str] = Field(default_factory=list)
    created_at: datetime

    def max_votes(self, phase: Phase) -> int:
        specific = self.max_votes_p1 if phase is Phase.P1 else self.max_votes_p2
        if specific is not None:
            return specific
        if self.max_votes_per_user is not None:
            return self.max_votes_per_user
        return DEFAULT_MAX_VOTES


class Team(BaseModel):
    id: str
    name: str
    nickname: str | None = None
    description: str = ""
    member_user_ids: list[str] = Field(default_factory=list)
    judge_vote_count: int = Field(default=0, ge=0)
    participant_vote_count: int = Field(default=0, ge=0)
    is_hidden: bool = False


class User(BaseModel):
    unique_code: str
    name: str
    role: Role
    team_id: str | None = None
    has_voted: bool = False
    has_voted_p1: bool = False
    has_voted_p2: bool = False

    def has_voted_in(self, phase: Phase) -> bool:
        return self.has_voted_p1 if phase is Phase.P1 else self.has_voted_p2


class Vote(BaseModel):
    voter_id: str
    phase: Phase
    selected_teams: list[str]
    role: Role
    timestamp: datetime

    @property
    def key(self) -> str:
        return vote_key(self.phase, self.voter_id)


def vote_key(phase: Phase, voter_id: str) -> str:
    return f"{phase.value}#{voter_id}"


class TeamScore(BaseModel):
    team_id: str
    team_name: str
    team_nickname: str | None = None
    judge_vote_count: int
    participant_vote_count: int
    judge_normalized: float
    participant_normalized: float
    final_score: float
    rank: int


class Principal(BaseModel):
    uid: str
    role: Role
    team_id: str | None = None


class TiedGroup(BaseModel):
    vote_count: int
    teams: list[Team]


class Phase1Result(BaseModel):
    selected_team_ids: list[str]
    tied_teams: list[Team] | None = None
    tied_groups: list[TiedGroup] = Field(default_factory=list)

    @property
    def has_tied_groups(self) -> bool:
        return len(self.tied_groups) > 0


class ScoreTieGroup(BaseModel):
    final_score: float
    teams: list[TeamScore]


class FinalTies(BaseModel):
    tied_teams: list[TeamScore] | None = None
    tie_groups: list[ScoreTieGroup] = Field(default_factory=list)


def _strip_required(v: object, field: str) -> str:
    if not isinstance(v, str):
        raise ValueError(f"{field} must be a string")
    s = v.strip()
    if not s:
        raise ValueError(f"{field} must not be blank")
    return s


class VoteRequest(BaseModel):
    selected_teams: list[str] = Field(alias="selectedTeams")

    model_config = {"populate_by_name": True}

    @field_validator("selected_teams", mode="before")
    @classmethod
    def _dedupe(cls, v: object) -> list[str]:
        if not isinstance(v, list):
            raise ValueError("selectedTeams must be a list")
        seen: list[str] = []
        for item in v:
            if not isinstance(item, str):
                raise ValueError("selectedTeams items must be strings")
            s = item.strip()
            if s and s not in seen:
                seen.append(s)
        return seen


class StatusUpdateRequest(BaseModel):
    status: EventStatus


class EventConfigUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=100)
    judge_weight: float | None = None
    participant_weight: float | None = None
    max_votes_p1: int | None = Field(default=None, ge=1)
    max_votes_p2: int | None = Field(default=None, ge=1)
    max_votes_per_user: int | None = Field(default=None, ge=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v: object) -> str | None:
        if v is None:
            return None
        return _strip_required(v, "title")


class Phase1ResolveRequest(BaseModel):
    selected_team_ids: list[str] = Field(alias="selectedTeamIds")

    model_config = {"populate_by_name": True}


class FinalResolveRequest(BaseModel):
    ranked_team_ids: list[str] = Field(alias="rankedTeamIds")

    model_config = {"populate_by_name": True}


class TimerRequest(BaseModel):
    duration_sec: int = Field(gt=0)
    auto_close_enabled: bool = False


class TimerExtendRequest(BaseModel):
    additional_sec: int = Field(gt=0)


class AutoCloseRequest(BaseModel):
    auto_close_enabled: bool


class CreateTeamRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    nickname: str | None = Field(default=None, max_length=50)
    description: str = Field(default="", max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _strip_required(v, "name")


class UpdateTeamRequest(BaseModel):
    name: str | None = Field(default=None, max_length=50)
    nickname: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    is_hidden: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str | None:
        if v is None:
            return None
        return _strip_required(v, "name")


class CreateUserRequest(BaseModel):
    unique_code: str = Field(min_length=1, max_length=40)
    name: str = Field(min_length=1, max_length=30)
    role: Role
    team_id: str | None = None

    @field_validator("unique_code", mode="before")
    @classmethod
    def _normalize_code(cls, v: object) -> str:
        return normalize_code(_strip_required(v, "unique_code"))

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _strip_required(v, "name")


class AssignTeamRequest(BaseModel):
    team_id: str | None = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


class Phase1FinalizeResponse(BaseModel):
    selected_team_ids: list[str]
    tied_teams: list[Team] | None = None
    tied_groups: list[TiedGroup] = Field(default_factory=list)


class EligibilityView(BaseModel):
    can_vote: bool
    phase: Phase | None = None
    max_votes: int | None = None
    eligible_team_ids: list[str] = Field(default_factory=list)
    reason: str | None = None


class MeResponse(BaseModel):
    user: User
    eligibility: EligibilityView


class ScoreboardResponse(BaseModel):
    status: EventStatus
    scores: list[TeamScore]
    ties: FinalTies
    final_ranking_overrides: list[str]


class ResultsResponse(BaseModel):
    status: EventStatus
    phase1_teams: list[Team] = Field(default_factory=list)
    podium: list[TeamScore] = Field(default_factory=list)
