# app.py
"""
CrashXP – HTTP Entry Point

Responsibilities:
- FastAPI HTTP server
- Request Validation (Pydantic)
- One GameSession per signed-in player (or per guest token)
- Mapping engine errors onto HTTP status codes

Integration:
- Uses session.py (engine + economy + auto-play wiring)
- Uses db.py (player and leaderboard stores)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .autoplay import AutoPlaySession
from .config import AutoPlayConfig, GameConfig
from .db import AsyncSessionLocal, SqlLeaderboardStore, SqlPlayerStore, db_engine, init_db, make_session_factory
from .errors import ConfigurationError, ExternalServiceError, StateError, ValidationError
from .models import PlayerRole
from .services import PaymentProcessor, PlayerIdentity, SimulatedPaymentProcessor, StaticIdentityProvider
from .session import GameSession
from .utils import configure_logging, generate_unique_id, normalize_wager

# =====================================================
# LOGGING & CONFIG
# =====================================================

configure_logging()
logger = logging.getLogger("crashxp.app")

# =====================================================
# DATA MODELS (Pydantic)
# =====================================================

class InitRequest(BaseModel):
    # Omit for a guest session
    user_id: Optional[str] = Field(None, min_length=1, max_length=64)
    display_name: Optional[str] = Field(None, max_length=128)
    role: PlayerRole = PlayerRole.USER

class SessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)

class WagerRequest(SessionRequest):
    amount: int = Field(..., ge=GameConfig.MIN_WAGER)

class AutoPlayRequest(SessionRequest):
    wager_amount: int = Field(AutoPlayConfig.DEFAULT_WAGER, ge=GameConfig.MIN_WAGER)
    cash_out_at: float = Field(AutoPlayConfig.DEFAULT_CASH_OUT_AT, gt=1.0)
    stop_on_win: bool = False
    stop_on_loss: bool = False
    max_rounds: int = Field(AutoPlayConfig.DEFAULT_MAX_ROUNDS, ge=1, le=1000)
    auto_cash_out: bool = True

class BoostRequest(SessionRequest):
    boost_id: str = Field(..., min_length=1)

class CosmeticRequest(SessionRequest):
    cosmetic_id: str = Field(..., min_length=1)

class SecondChanceRequest(SessionRequest):
    accept: bool

class ReferralRequest(SessionRequest):
    referrer_code: str = Field(..., min_length=1)
    new_user_id: str = Field(..., min_length=1)

class ShareRequest(SessionRequest):
    achievement_id: str = Field(..., min_length=1)


# =====================================================
# APP FACTORY
# =====================================================

def create_app(
    database_url: Optional[str] = None,
    payments: Optional[PaymentProcessor] = None,
    **session_options: Any,
) -> FastAPI:
    """
    Build the API. `session_options` are passed to every GameSession
    (clock, crash_point_fn, timers...).
    """
    if database_url:
        engine_, session_factory = make_session_factory(database_url)
    else:
        engine_, session_factory = db_engine, AsyncSessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manages startup and shutdown events.
        """
        logger.info("Startup: Initializing Database...")
        await init_db(engine_)
        yield
        logger.info("Shutdown: Closing game sessions...")
        for game in list(app.state.sessions.values()):
            await game.close()
        app.state.sessions.clear()
        await engine_.dispose()

    app = FastAPI(
        title="CrashXP API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.sessions = {}
    app.state.player_store = SqlPlayerStore(session_factory)
    app.state.leaderboard_store = SqlLeaderboardStore(session_factory)
    app.state.payments = payments or SimulatedPaymentProcessor()
    app.state.session_options = session_options

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


# =====================================================
# ERROR HANDLERS
# =====================================================

def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StateError)
    async def state_error_handler(_, exc: StateError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": "Game State Conflict", "detail": str(exc)},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid Request", "detail": str(exc)},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(_, exc: ConfigurationError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Unknown Item", "detail": str(exc)},
        )

    @app.exception_handler(ExternalServiceError)
    async def external_error_handler(_, exc: ExternalServiceError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Service Unavailable", "detail": str(exc)},
        )


def _get_game(request: Request, session_id: str) -> GameSession:
    game = request.app.state.sessions.get(session_id)
    if game is None:
        raise HTTPException(status_code=404, detail="Unknown session, call /api/init first")
    return game


# =====================================================
# ROUTES
# =====================================================

def _register_routes(app: FastAPI) -> None:

    # ---- session ----

    @app.post("/api/init")
    async def api_init(payload: InitRequest, request: Request):
        """
        Open (or resume) a session. Without user_id the session is a guest:
        rounds play, nothing is saved.
        """
        state = request.app.state
        if payload.user_id and payload.user_id in state.sessions:
            game = state.sessions[payload.user_id]
            return {"session_id": payload.user_id, "guest": False, "player": game.player.to_dict()}

        if payload.user_id:
            session_id = payload.user_id
            identity = PlayerIdentity(
                id=payload.user_id,
                display_name=payload.display_name or payload.user_id,
                role=payload.role,
            )
        else:
            session_id = f"guest_{generate_unique_id(8)}"
            identity = None

        game = GameSession(
            StaticIdentityProvider(identity),
            persistence=state.player_store,
            leaderboard=state.leaderboard_store,
            payments=state.payments,
            **state.session_options,
        )
        await game.open()
        state.sessions[session_id] = game
        logger.info(f"Session {session_id} opened (guest={game.is_guest})")
        return {"session_id": session_id, "guest": game.is_guest, "player": game.player.to_dict()}

    @app.post("/api/close")
    async def api_close(payload: SessionRequest, request: Request):
        game = _get_game(request, payload.session_id)
        await game.close()
        request.app.state.sessions.pop(payload.session_id, None)
        return {"status": "closed"}

    @app.get("/api/state")
    async def api_state(session_id: str, request: Request):
        """
        High-frequency polling endpoint for game state.
        """
        return await _get_game(request, session_id).state()

    @app.get("/api/notices")
    async def api_notices(session_id: str, request: Request):
        game = _get_game(request, session_id)
        return {"notices": [n.to_dict() for n in game.notices]}

    # ---- rounds ----

    @app.post("/api/wager")
    async def api_wager(payload: WagerRequest, request: Request):
        game = _get_game(request, payload.session_id)
        rnd = await game.place_wager(payload.amount)
        return {"status": "accepted", "round": rnd.to_dict(), "xp": game.player.xp}

    @app.get("/api/wager/step")
    async def api_wager_step(amount: str):
        """Snap a typed amount onto the wager grid for the +/- buttons."""
        return {"amount": normalize_wager(amount)}

    @app.post("/api/cashout")
    async def api_cashout(payload: SessionRequest, request: Request):
        """
        Engine is the authority on the payout multiplier.
        """
        game = _get_game(request, payload.session_id)
        outcome = await game.cash_out()
        if outcome is None:
            raise HTTPException(status_code=409, detail="No round in progress")
        if not outcome.won:
            raise HTTPException(status_code=409, detail="Too late, crashed")
        return {
            "status": "cashed_out",
            "multiplier": float(outcome.cash_out_multiplier),
            "winnings": outcome.winnings,
            "xp": game.player.xp,
        }

    # ---- auto-play ----

    @app.post("/api/autoplay/start")
    async def api_autoplay_start(payload: AutoPlayRequest, request: Request):
        game = _get_game(request, payload.session_id)
        if game.is_guest:
            raise StateError("Sign in to use auto-play!")
        settings = AutoPlaySession(
            wager_amount=payload.wager_amount,
            cash_out_at=payload.cash_out_at,
            stop_on_win=payload.stop_on_win,
            stop_on_loss=payload.stop_on_loss,
            max_rounds=payload.max_rounds,
            auto_cash_out=payload.auto_cash_out,
        )
        session = await game.start_autoplay(settings)
        return {"status": "started", "autoplay": session.to_dict()}

    @app.post("/api/autoplay/stop")
    async def api_autoplay_stop(payload: SessionRequest, request: Request):
        game = _get_game(request, payload.session_id)
        await game.stop_autoplay()
        return {"status": "stopped"}

    # ---- economy ----

    @app.post("/api/boosts/purchase")
    async def api_purchase_boost(payload: BoostRequest, request: Request):
        game = _get_game(request, payload.session_id)
        ok = await game.economy.purchase_boost(payload.boost_id)
        return {"activated": ok, "boost_multiplier": float(game.player.xp_boost_multiplier)}

    @app.post("/api/cosmetics/buy")
    async def api_buy_cosmetic(payload: CosmeticRequest, request: Request):
        game = _get_game(request, payload.session_id)
        ok = await game.economy.buy_cosmetic(payload.cosmetic_id)
        return {"purchased": ok, "xp": game.player.xp, "active_cosmetic": game.player.active_cosmetic}

    @app.post("/api/cosmetics/equip")
    async def api_equip_cosmetic(payload: CosmeticRequest, request: Request):
        game = _get_game(request, payload.session_id)
        await game.economy.equip_cosmetic(payload.cosmetic_id)
        return {"active_cosmetic": game.player.active_cosmetic}

    @app.post("/api/second-chance")
    async def api_second_chance(payload: SecondChanceRequest, request: Request):
        game = _get_game(request, payload.session_id)
        if payload.accept:
            await game.economy.accept_second_chance()
        else:
            await game.economy.decline_second_chance()
        return {"accepted": payload.accept, "xp": game.player.xp}

    @app.post("/api/referrals/track")
    async def api_track_referral(payload: ReferralRequest, request: Request):
        game = _get_game(request, payload.session_id)
        credited = await game.economy.track_referral(payload.referrer_code, payload.new_user_id)
        return {"credited": credited, "xp": game.player.xp}

    @app.post("/api/achievements/share")
    async def api_share_achievement(payload: ShareRequest, request: Request):
        game = _get_game(request, payload.session_id)
        text = await game.economy.share_achievement(payload.achievement_id)
        return {"share_text": text, "xp": game.player.xp}

    # ---- leaderboard ----

    @app.get("/api/leaderboard")
    async def api_leaderboard(session_id: str, request: Request):
        game = _get_game(request, session_id)
        ranking = await game.refresh_leaderboard()
        return {"entries": [entry.to_dict() for entry in ranking]}


app = create_app()
