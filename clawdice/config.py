import os
from dataclasses import dataclass, replace
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
MAX_ROLL = 65535


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000

    # Roll range is 0..max_roll (16-bit)
    max_roll: int = MAX_ROLL
    house_edge: float = 0.015
    default_target: int = 32768
    min_bet: int = 10
    max_bet: int = 50000
    default_bet: int = 100

    # Bankroll figures in sats; actual funds live on the Lightning node
    initial_bankroll: int = 100_000_000
    pause_threshold: int = 100_000
    safety_factor: float = 3.0

    database_url: str = f"sqlite:///{(BASE_DIR / 'clawdice.db').as_posix()}"
    persist_attempts: int = 3
    dev_mode: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ.get("CLAWDICE_ENV") or os.environ.get("NODE_ENV") or "development"
        return cls(
            host=os.environ.get("HOST", cls.host),
            port=_env_int("PORT", cls.port),
            house_edge=_env_float("HOUSE_EDGE", cls.house_edge),
            min_bet=_env_int("MIN_BET", cls.min_bet),
            max_bet=_env_int("MAX_BET", cls.max_bet),
            initial_bankroll=_env_int("INITIAL_BANKROLL", cls.initial_bankroll),
            pause_threshold=_env_int("PAUSE_THRESHOLD", cls.pause_threshold),
            safety_factor=_env_float("SAFETY_FACTOR", cls.safety_factor),
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            persist_attempts=_env_int("PERSIST_ATTEMPTS", cls.persist_attempts),
            dev_mode=env != "production",
            log_level=os.environ.get("LOG_LEVEL", cls.log_level),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)
