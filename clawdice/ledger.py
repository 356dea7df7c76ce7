import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import GameNotFound, PersistenceFailure

logger = logging.getLogger(__name__)


def generate_game_id() -> str:
    return "g_" + secrets.token_hex(8)


def initial_payout_status(result: str) -> str:
    return "pending" if result == "win" else "n/a"


def record_game(db: Session, fields: dict, balance_after: int, attempts: int = 3) -> models.Game:
    """Insert a resolved game with its bankroll entry in one durable commit.

    Transient database errors are retried up to ``attempts`` times. An id
    collision is never retried or overwritten.
    """
    game_id = fields["id"]
    for attempt in range(1, attempts + 1):
        game = models.Game(**fields)
        entry = models.BankrollLog(
            event="game",
            amount_sats=game.bet_sats - game.payout_sats,
            balance_sats=balance_after,
            game_id=game_id,
            created_at=game.created_at,
        )
        try:
            db.add(game)
            db.add(entry)
            db.commit()
            return game
        except IntegrityError as exc:
            _discard(db, game, entry)
            logger.error("Game id collision on %s; refusing to overwrite", game_id)
            raise PersistenceFailure(f"Game {game_id} already exists") from exc
        except SQLAlchemyError as exc:
            _discard(db, game, entry)
            logger.warning("Persisting game %s failed (attempt %s/%s): %s", game_id, attempt, attempts, exc)
            if attempt == attempts:
                raise PersistenceFailure(f"Could not persist game {game_id}") from exc
    raise PersistenceFailure(f"Could not persist game {game_id}")


def _discard(db: Session, *objects) -> None:
    db.rollback()
    for obj in objects:
        if obj in db:
            db.expunge(obj)


def get_game(db: Session, game_id: str) -> Optional[models.Game]:
    return db.query(models.Game).filter(models.Game.id == game_id).first()


def update_payout_status(db: Session, game_id: str, status: str) -> models.Game:
    game = get_game(db, game_id)
    if game is None:
        raise GameNotFound(f"Game {game_id} not found")
    if game.payout_status == status:
        return game
    game.payout_status = status
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(f"Could not update payout status of {game_id}") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(game)
    return game


def latest_bankroll(db: Session) -> Optional[int]:
    row = db.query(models.BankrollLog).order_by(models.BankrollLog.id.desc()).first()
    return row.balance_sats if row else None


def record_bankroll_event(
    db: Session, event: str, amount_sats: int, balance_sats: int, game_id: str | None = None
) -> models.BankrollLog:
    entry = models.BankrollLog(
        event=event,
        amount_sats=amount_sats,
        balance_sats=balance_sats,
        game_id=game_id,
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(f"Could not record bankroll {event}") from exc
    return entry


def aggregate_stats(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    total_games, total_wagered, total_paid_out, unique_players, biggest_win = db.query(
        func.count(models.Game.id),
        func.coalesce(func.sum(models.Game.bet_sats), 0),
        func.coalesce(func.sum(models.Game.payout_sats), 0),
        func.count(func.distinct(models.Game.player_pubkey)),
        func.coalesce(func.max(models.Game.payout_sats), 0),
    ).one()
    games_24h, volume_24h = (
        db.query(
            func.count(models.Game.id),
            func.coalesce(func.sum(models.Game.bet_sats), 0),
        )
        .filter(models.Game.created_at > now - timedelta(days=1))
        .one()
    )
    return {
        "total_games": int(total_games),
        "total_wagered_sats": int(total_wagered),
        "total_paid_out_sats": int(total_paid_out),
        "house_profit_sats": int(total_wagered) - int(total_paid_out),
        "unique_players": int(unique_players),
        "biggest_win_sats": int(biggest_win),
        "last_24h": {
            "games": int(games_24h),
            "volume_sats": int(volume_24h),
        },
    }


def leaderboard(db: Session, limit: int = 20) -> List[dict]:
    net_profit = func.sum(models.Game.payout_sats) - func.sum(models.Game.bet_sats)
    rows = (
        db.query(
            models.Game.player_pubkey,
            func.count(models.Game.id),
            func.sum(models.Game.bet_sats),
            func.sum(models.Game.payout_sats),
            net_profit.label("net_profit"),
            func.max(models.Game.payout_sats),
        )
        .filter(models.Game.player_pubkey.isnot(None))
        .group_by(models.Game.player_pubkey)
        .order_by(net_profit.desc(), models.Game.player_pubkey.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "player_pubkey": player,
            "games": int(games),
            "total_wagered": int(wagered),
            "total_won": int(won),
            "net_profit": int(profit),
            "biggest_win": int(biggest),
        }
        for player, games, wagered, won, profit, biggest in rows
    ]


def recent_games(db: Session, limit: int = 20) -> List[models.Game]:
    return (
        db.query(models.Game)
        .order_by(models.Game.created_at.desc(), models.Game.id.desc())
        .limit(limit)
        .all()
    )
