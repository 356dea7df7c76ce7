from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

GameResultTag = Literal["win", "loss"]
PayoutStatus = Literal["n/a", "pending", "sent", "failed"]


class ErrorResponse(BaseModel):
    error: str
    message: str
    hint: Optional[str] = None


class RollResponse(BaseModel):
    game_id: str
    roll: int
    target: int
    result: GameResultTag
    bet_sats: int
    multiplier: float
    win_probability: str
    payout_sats: int
    payout_method: str
    payout_status: PayoutStatus
    server_seed: str
    server_seed_hash: str
    client_entropy: str
    verify_url: str
    timestamp: datetime


class VerifyResponse(BaseModel):
    game_id: str
    verified: bool
    reason: Optional[str] = None
    server_seed: Optional[str] = None
    server_seed_hash: Optional[str] = None
    client_entropy: Optional[str] = None
    computed_roll: Optional[int] = None
    target: Optional[int] = None
    result: Optional[GameResultTag] = None
    bet_sats: int
    payout_sats: int
    multiplier: float
    created_at: datetime
    how_to_verify: Dict[str, str]


class OddsItem(BaseModel):
    target: int
    win_probability: str
    multiplier: float
    example_bet_100: int


class OddsResponse(BaseModel):
    house_edge: str
    roll_range: str
    rule: str
    payout_table: List[OddsItem]


class Last24h(BaseModel):
    games: int
    volume_sats: int


class StatsResponse(BaseModel):
    name: str
    total_games: int
    total_wagered_sats: int
    total_paid_out_sats: int
    house_profit_sats: int
    unique_players: int
    biggest_win_sats: int
    last_24h: Last24h


class LeaderboardItem(BaseModel):
    player_pubkey: str
    games: int
    total_wagered: int
    total_won: int
    net_profit: int
    biggest_win: int


class LeaderboardResponse(BaseModel):
    leaderboard: List[LeaderboardItem]


class RecentGameItem(BaseModel):
    id: str
    roll: int
    target: int
    result: GameResultTag
    bet_sats: int
    multiplier: float
    payout_sats: int
    player_pubkey: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("multiplier")
    @classmethod
    def round_multiplier(cls, value: float) -> float:
        return round(value, 3)


class RecentResponse(BaseModel):
    games: List[RecentGameItem]
