from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, event, inspect

from .database import Base
from .errors import InvalidStatusTransition

PAYOUT_STATUS_TRANSITIONS = {
    "pending": {"sent", "failed"},
}


class Game(Base):
    __tablename__ = "games"

    id = Column(String, primary_key=True)
    roll = Column(Integer, nullable=False)
    target = Column(Integer, nullable=False)
    result = Column(String, nullable=False)  # win | loss
    bet_sats = Column(Integer, nullable=False)
    multiplier = Column(Float, nullable=False)
    payout_sats = Column(Integer, nullable=False)
    payout_method = Column(String, default="keysend", nullable=False)
    payout_status = Column(String, default="pending", nullable=False)  # n/a | pending | sent | failed
    server_seed = Column(String, nullable=False)
    server_seed_hash = Column(String, nullable=False)
    client_entropy = Column(String, nullable=False)
    player_pubkey = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_games_player", "player_pubkey"),
        Index("idx_games_created", "created_at"),
    )


class BankrollLog(Base):
    __tablename__ = "bankroll_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event = Column(String, nullable=False)  # init | game | deposit
    amount_sats = Column(Integer, nullable=False)
    balance_sats = Column(Integer, nullable=False)
    game_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


@event.listens_for(Game, "before_update")
def game_before_update(mapper, connection, target: Game):
    """Games are an audit trail: only the payout status may move forward."""
    state = inspect(target)
    for attr in state.attrs:
        history = attr.history
        if not history.has_changes():
            continue
        if attr.key != "payout_status":
            raise InvalidStatusTransition(f"Game {target.id} is immutable (tried to change {attr.key})")
        before = history.deleted[0] if history.deleted else None
        after = history.added[0] if history.added else None
        if after not in PAYOUT_STATUS_TRANSITIONS.get(before, set()):
            raise InvalidStatusTransition(
                f"Game {target.id} payout status cannot move from {before} to {after}"
            )
