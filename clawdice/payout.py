import math
from dataclasses import dataclass
from typing import List

from .config import MAX_ROLL

ODDS_TARGETS = [1000, 4096, 8192, 16384, 32768, 49152, 56000, 60000, 64000]


@dataclass(frozen=True)
class Resolution:
    roll: int
    target: int
    result: str
    bet_sats: int
    multiplier: float
    payout_sats: int


def win_probability(target: int) -> float:
    return target / (MAX_ROLL + 1)


def multiplier(target: int, house_edge: float) -> float:
    fair_multiplier = 1 / win_probability(target)
    return fair_multiplier * (1 - house_edge)


def worst_case_multiplier(house_edge: float) -> float:
    # target=1 is the longest shot and pays the most
    return multiplier(1, house_edge)


def payout(bet_sats: int, applied_multiplier: float) -> int:
    return math.floor(bet_sats * applied_multiplier)


def resolve_roll(target: int, bet_sats: int, roll: int, house_edge: float) -> Resolution:
    applied = multiplier(target, house_edge)
    win = roll < target
    return Resolution(
        roll=roll,
        target=target,
        result="win" if win else "loss",
        bet_sats=bet_sats,
        multiplier=applied,
        payout_sats=payout(bet_sats, applied) if win else 0,
    )


def display_multiplier(value: float) -> float:
    return round(value, 3)


def format_percent(fraction: float) -> str:
    """0.5 -> "50%", 0.015 -> "1.5%"."""
    return f"{round(fraction * 100, 2):g}%"


def odds_table(house_edge: float, targets: List[int] = ODDS_TARGETS) -> List[dict]:
    table = []
    for target in targets:
        applied = multiplier(target, house_edge)
        table.append(
            {
                "target": target,
                "win_probability": format_percent(win_probability(target)),
                "multiplier": display_multiplier(applied),
                "example_bet_100": payout(100, applied),
            }
        )
    return table
