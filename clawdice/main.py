import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import ledger, schemas
from .config import Settings
from .database import Base, get_db, make_engine, make_session_factory
from .delivery import PayoutSender, build_sender
from .errors import DiceError, GameNotFound
from .exposure import ExposureGuard
from .fairness import new_dev_entropy
from .payout import display_multiplier, format_percent, odds_table, win_probability
from .service import RollService, load_bankroll
from .verifier import HOW_TO_VERIFY, verify_game

logger = logging.getLogger(__name__)

NAME = "ClawDice"
VERSION = "0.1.0"
L402_PREFIX = "L402 "
LIST_LIMIT_MAX = 100


def extract_client_entropy(authorization: Optional[str], settings: Settings) -> Optional[str]:
    # "L402 <macaroon>:<preimage>"; the preimage is the player's entropy
    if authorization and authorization.startswith(L402_PREFIX):
        parts = authorization.split(":")
        if len(parts) >= 2 and parts[-1].strip():
            return parts[-1].strip()
    if settings.dev_mode:
        return new_dev_entropy()
    return None


def clamp_limit(limit: int) -> int:
    return min(max(limit, 1), LIST_LIMIT_MAX)


def create_app(settings: Settings | None = None, sender: PayoutSender | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    session_factory = make_session_factory(engine)
    db = session_factory()
    try:
        balance = load_bankroll(db, settings)
    finally:
        db.close()

    guard = ExposureGuard(settings, balance)
    service = RollService(settings, session_factory, guard, sender or build_sender(settings))

    app = FastAPI(
        title=NAME,
        description="Provably fair Lightning dice.",
        version=VERSION,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.guard = guard
    app.state.service = service

    @app.exception_handler(DiceError)
    def handle_dice_error(request: Request, exc: DiceError) -> JSONResponse:
        body = {"error": exc.code, "message": exc.message}
        if exc.hint:
            body["hint"] = exc.hint
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = {str(err["loc"][-1]) for err in exc.errors() if err.get("loc")}
        if "target" in fields:
            code, message = "invalid_target", f"Target must be between 1 and {settings.max_roll}"
        elif "bet" in fields:
            code, message = (
                "invalid_bet",
                f"Bet must be between {settings.min_bet} and {settings.max_bet} sats",
            )
        else:
            code, message = "invalid_request", "Invalid request parameters"
        return JSONResponse(status_code=400, content={"error": code, "message": message})

    @app.get("/")
    def root():
        return {
            "name": NAME,
            "version": VERSION,
            "mode": "development" if settings.dev_mode else "production",
            "endpoints": {
                "GET /roll": "Play a round (L402-gated in production)",
                "GET /odds": "Payout table for all targets",
                "GET /verify/:game_id": "Verify any past game",
                "GET /stats": "Aggregate house stats",
                "GET /leaderboard": "Top players by net profit",
                "GET /recent": "Recent game feed",
            },
            "game": {
                "roll_range": f"0–{settings.max_roll}",
                "house_edge": format_percent(settings.house_edge),
                "min_bet": settings.min_bet,
                "max_bet": settings.max_bet,
                "default_bet": settings.default_bet,
                "default_target": settings.default_target,
            },
            "bankroll": {
                "balance_sats": guard.balance_sats,
                "max_bet_sats": guard.dynamic_max_bet(),
                "paused": guard.paused,
            },
        }

    @app.get(
        "/roll",
        response_model=schemas.RollResponse,
        responses={
            code: {"model": schemas.ErrorResponse} for code in (400, 402, 500, 503)
        },
    )
    def roll(
        target: int = Query(settings.default_target),
        bet: int = Query(settings.default_bet),
        payout: str = Query("keysend"),
        pubkey: Optional[str] = Query(None),
        authorization: Optional[str] = Header(None),
        x_player_pubkey: Optional[str] = Header(None),
    ) -> schemas.RollResponse:
        game = service.roll(
            target=target,
            bet_sats=bet,
            client_entropy=extract_client_entropy(authorization, settings),
            payout_method=payout,
            player_pubkey=x_player_pubkey or pubkey,
        )
        return schemas.RollResponse(
            game_id=game.id,
            roll=game.roll,
            target=game.target,
            result=game.result,
            bet_sats=game.bet_sats,
            multiplier=display_multiplier(game.multiplier),
            win_probability=format_percent(win_probability(game.target)),
            payout_sats=game.payout_sats,
            payout_method=game.payout_method,
            payout_status=game.payout_status,
            server_seed=game.server_seed,
            server_seed_hash=game.server_seed_hash,
            client_entropy=game.client_entropy,
            verify_url=f"/verify/{game.id}",
            timestamp=game.created_at,
        )

    @app.get(
        "/verify/{game_id}",
        response_model=schemas.VerifyResponse,
        response_model_exclude_none=True,
        responses={404: {"model": schemas.ErrorResponse}},
    )
    def verify(game_id: str, db: Session = Depends(get_db)) -> schemas.VerifyResponse:
        game = ledger.get_game(db, game_id)
        if game is None:
            raise GameNotFound(f"Game {game_id} not found")
        verification = verify_game(game)
        if not verification.verified:
            logger.warning("Game %s failed verification: %s", game_id, verification.reason)
        return schemas.VerifyResponse(
            game_id=game_id,
            **verification.as_dict(),
            bet_sats=game.bet_sats,
            payout_sats=game.payout_sats,
            multiplier=display_multiplier(game.multiplier),
            created_at=game.created_at,
            how_to_verify=HOW_TO_VERIFY,
        )

    @app.get("/odds", response_model=schemas.OddsResponse)
    def odds() -> schemas.OddsResponse:
        return schemas.OddsResponse(
            house_edge=format_percent(settings.house_edge),
            roll_range=f"0–{settings.max_roll}",
            rule="You win if roll < target",
            payout_table=odds_table(settings.house_edge),
        )

    @app.get("/stats", response_model=schemas.StatsResponse)
    def stats(db: Session = Depends(get_db)) -> schemas.StatsResponse:
        return schemas.StatsResponse(name=NAME, **ledger.aggregate_stats(db))

    @app.get("/leaderboard", response_model=schemas.LeaderboardResponse)
    def leaderboard(limit: int = 20, db: Session = Depends(get_db)) -> schemas.LeaderboardResponse:
        return schemas.LeaderboardResponse(leaderboard=ledger.leaderboard(db, clamp_limit(limit)))

    @app.get("/recent", response_model=schemas.RecentResponse)
    def recent(limit: int = 20, db: Session = Depends(get_db)) -> schemas.RecentResponse:
        games = ledger.recent_games(db, clamp_limit(limit))
        return schemas.RecentResponse(
            games=[schemas.RecentGameItem.model_validate(game) for game in games]
        )

    logger.info(
        "%s ready (%s mode): house edge %s, bets %s-%s sats, bankroll %s sats",
        NAME,
        "development" if settings.dev_mode else "production",
        format_percent(settings.house_edge),
        settings.min_bet,
        settings.max_bet,
        balance,
    )
    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
