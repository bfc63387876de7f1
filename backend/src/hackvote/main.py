from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from .admin import AdminControlSurface
from .auth import require_admin, resolve_principal
from .config import Settings, load_env_file
from .domain import (
    AssignTeamRequest,
    AutoCloseRequest,
    CreateTeamRequest,
    CreateUserRequest,
    EligibilityView,
    Event,
    EventConfigUpdate,
    FinalResolveRequest,
    MeResponse,
    Phase1FinalizeResponse,
    Phase1ResolveRequest,
    Principal,
    ResultsResponse,
    ScoreboardResponse,
    StatusUpdateRequest,
    Team,
    TimerExtendRequest,
    TimerRequest,
    UpdateTeamRequest,
    User,
    VoteRequest,
    normalize_code,
    utcnow,
)
from .errors import EligibilityError, HackvoteError, NotFoundError, VoteValidationError
from .ledger import VoteLedger
from .logging_config import setup_logging
from .phases import voting_rule
from .ranking import visible_teams
from .store import Store, build_store

logger = logging.getLogger(__name__)

TALLY_FIELDS = {"judge_vote_count", "participant_vote_count"}


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    if settings is None:
        repo_root = Path(__file__).resolve().parents[3]
        load_env_file(repo_root)
        settings = Settings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(title="Hackvote")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if store is None:
        store = build_store(settings.event_id, settings.store_backend, settings.tx_max_attempts)
    ledger = VoteLedger(store, clock)
    admin = AdminControlSurface(store, clock)

    if settings.admin_code and store.get_user(settings.admin_code) is None:
        store.put_user(User(unique_code=settings.admin_code, name="admin", role="admin"))
        logger.info("seeded admin user %s", settings.admin_code)

    @app.exception_handler(HackvoteError)
    async def handle_hackvote_error(request: Request, exc: HackvoteError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "kind": exc.kind, **exc.payload},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_bad_request(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        kind = VoteValidationError.__name__ if request.url.path == "/api/vote" else "RequestValidationError"
        return JSONResponse(status_code=400, content={"detail": message, "kind": kind})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500, content={"detail": "internal server error", "kind": "InternalError"}
        )

    def current_principal(authorization: str | None = Header(default=None)) -> Principal:
        return resolve_principal(store, authorization)

    def admin_principal(principal: Principal = Depends(current_principal)) -> Principal:
        return require_admin(principal)

    @app.get("/health")
    def health():
        return {"ok": True}

    # --- voters ---

    @app.get("/api/event", response_model=Event)
    def get_event():
        return admin.event()

    @app.get("/api/teams")
    def list_teams():
        return [t.model_dump(exclude=TALLY_FIELDS) for t in visible_teams(store.list_teams())]

    @app.get("/api/me", response_model=MeResponse)
    def me(principal: Principal = Depends(current_principal)):
        user = store.get_user(principal.uid)
        if user is None:
            raise NotFoundError("user not found")
        event = admin.event()
        try:
            rule = voting_rule(event, principal.role)
        except EligibilityError as e:
            return MeResponse(user=user, eligibility=EligibilityView(can_vote=False, reason=e.message))

        candidates = [
            t.id
            for t in visible_teams(store.list_teams())
            if (rule.team_pool is None or t.id in rule.team_pool) and t.id != principal.team_id
        ]
        voted = user.has_voted_in(rule.phase)
        return MeResponse(
            user=user,
            eligibility=EligibilityView(
                can_vote=not voted,
                phase=rule.phase,
                max_votes=rule.max_votes,
                eligible_team_ids=candidates,
                reason="already voted" if voted else None,
            ),
        )

    @app.post("/api/vote")
    def cast_vote(req: VoteRequest, principal: Principal = Depends(current_principal)):
        ledger.cast_vote(principal, req.selected_teams)
        return {"ok": True}

    @app.get("/api/results", response_model=ResultsResponse)
    def results():
        return admin.results()

    # --- admin: event ---

    @app.post("/api/admin/event/init", response_model=Event)
    def init_event(_: Principal = Depends(admin_principal)):
        return admin.init_event(settings.event_title)

    @app.post("/api/admin/event/status", response_model=Event)
    def update_status(req: StatusUpdateRequest, _: Principal = Depends(admin_principal)):
        return admin.update_event_status(req.status)

    @app.put("/api/admin/event/config", response_model=Event)
    def update_config(req: EventConfigUpdate, _: Principal = Depends(admin_principal)):
        return admin.update_event_config(req)

    @app.post("/api/admin/phase1/finalize", response_model=Phase1FinalizeResponse)
    def finalize_phase1(_: Principal = Depends(admin_principal)):
        result = admin.finalize_phase1()
        return Phase1FinalizeResponse(
            selected_team_ids=result.selected_team_ids,
            tied_teams=result.tied_teams,
            tied_groups=result.tied_groups,
        )

    @app.post("/api/admin/phase1/resolve")
    def resolve_phase1(req: Phase1ResolveRequest, _: Principal = Depends(admin_principal)):
        return {"ok": True, "selected_team_ids": admin.resolve_phase1_ties(req.selected_team_ids)}

    @app.post("/api/admin/final/resolve")
    def resolve_final(req: FinalResolveRequest, _: Principal = Depends(admin_principal)):
        return {"ok": True, "ranked_team_ids": admin.resolve_final_ties(req.ranked_team_ids)}

    @app.get("/api/admin/scores", response_model=ScoreboardResponse)
    def scoreboard(_: Principal = Depends(admin_principal)):
        event, scores, ties = admin.scoreboard()
        return ScoreboardResponse(
            status=event.status,
            scores=scores,
            ties=ties,
            final_ranking_overrides=event.final_ranking_overrides,
        )

    # --- admin: resets ---

    @app.post("/api/admin/reset/votes")
    def reset_votes(_: Principal = Depends(admin_principal)):
        admin.reset_votes()
        return {"ok": True}

    @app.post("/api/admin/reset/phase2")
    def reset_phase2(_: Principal = Depends(admin_principal)):
        admin.reset_phase2_votes()
        return {"ok": True}

    @app.post("/api/admin/reset/all")
    def reset_all(_: Principal = Depends(admin_principal)):
        admin.reset_all()
        return {"ok": True}

    # --- admin: timer ---

    @app.post("/api/admin/timer")
    def set_timer(req: TimerRequest, _: Principal = Depends(admin_principal)):
        deadline = admin.set_timer(req.duration_sec, req.auto_close_enabled)
        return {"ok": True, "voting_deadline": deadline.isoformat()}

    @app.post("/api/admin/timer/extend")
    def extend_timer(req: TimerExtendRequest, _: Principal = Depends(admin_principal)):
        deadline = admin.extend_timer(req.additional_sec)
        return {"ok": True, "voting_deadline": deadline.isoformat()}

    @app.post("/api/admin/timer/auto-close")
    def toggle_auto_close(req: AutoCloseRequest, _: Principal = Depends(admin_principal)):
        admin.toggle_auto_close(req.auto_close_enabled)
        return {"ok": True}

    @app.delete("/api/admin/timer")
    def reset_timer(_: Principal = Depends(admin_principal)):
        admin.reset_timer()
        return {"ok": True}

    @app.post("/api/admin/timer/tick")
    def timer_tick(_: Principal = Depends(admin_principal)):
        return {"ok": True, "status": admin.tick()}

    # --- admin: teams and users ---

    @app.post("/api/admin/teams", response_model=Team)
    def add_team(req: CreateTeamRequest, _: Principal = Depends(admin_principal)):
        return admin.add_team(req)

    @app.patch("/api/admin/teams/{team_id}", response_model=Team)
    def update_team(team_id: str, req: UpdateTeamRequest, _: Principal = Depends(admin_principal)):
        return admin.update_team(team_id, req)

    @app.delete("/api/admin/teams/{team_id}")
    def delete_team(team_id: str, _: Principal = Depends(admin_principal)):
        admin.delete_team(team_id)
        return {"ok": True}

    @app.post("/api/admin/users", response_model=User)
    def add_user(req: CreateUserRequest, _: Principal = Depends(admin_principal)):
        return admin.add_user(req)

    @app.delete("/api/admin/users/{unique_code}")
    def delete_user(unique_code: str, _: Principal = Depends(admin_principal)):
        admin.delete_user(normalize_code(unique_code))
        return {"ok": True}

    @app.put("/api/admin/users/{unique_code}/team", response_model=User)
    def assign_team(
        unique_code: str, req: AssignTeamRequest, _: Principal = Depends(admin_principal)
    ):
        return admin.assign_team(normalize_code(unique_code), req.team_id)

    return app


app = create_app()
handler = Mangum(app)
