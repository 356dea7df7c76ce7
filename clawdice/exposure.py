import logging
import math
import threading
from typing import Callable

from .config import Settings
from .errors import AdmissionRejected
from .payout import worst_case_multiplier

logger = logging.getLogger(__name__)

PersistFn = Callable[[int, int], None]


class Ticket:
    """One admitted wager's claim on bankroll headroom.

    The reservation is held until ``settle`` succeeds or the ticket is
    closed; used as a context manager it is always released.
    """

    def __init__(self, guard: "ExposureGuard", bet_sats: int, liability: int):
        self.guard = guard
        self.bet_sats = bet_sats
        self.liability = liability
        self.settled = False
        self.closed = False

    def settle(self, payout_sats: int, persist: PersistFn) -> int:
        return self.guard._settle(self, payout_sats, persist)

    def close(self) -> None:
        self.guard._release(self)

    def __enter__(self) -> "Ticket":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ExposureGuard:
    def __init__(self, settings: Settings, balance_sats: int):
        self.settings = settings
        self.balance_sats = balance_sats
        self.reserved = 0
        self.worst_multiplier = worst_case_multiplier(settings.house_edge)
        self._lock = threading.Lock()

    @property
    def paused(self) -> bool:
        return self.balance_sats <= self.settings.pause_threshold

    def _ceiling(self) -> int:
        headroom = max(self.balance_sats - self.reserved, 0)
        bankroll_limit = math.floor(headroom / self.worst_multiplier / self.settings.safety_factor)
        return min(self.settings.max_bet, bankroll_limit)

    def dynamic_max_bet(self) -> int:
        with self._lock:
            return self._ceiling()

    def admit(self, bet_sats: int) -> Ticket:
        with self._lock:
            if self.paused:
                logger.warning(
                    "Rejecting bet of %s sats: bankroll %s at or below pause threshold %s",
                    bet_sats,
                    self.balance_sats,
                    self.settings.pause_threshold,
                )
                raise AdmissionRejected(
                    "Game is paused while the bankroll is replenished",
                    code="bankroll_paused",
                    hint="Try again later",
                )
            if bet_sats < self.settings.min_bet or bet_sats > self.settings.max_bet:
                raise AdmissionRejected(
                    f"Bet must be between {self.settings.min_bet} and {self.settings.max_bet} sats",
                    code="invalid_bet",
                )
            ceiling = self._ceiling()
            if bet_sats > ceiling:
                logger.info("Rejecting bet of %s sats above exposure ceiling %s", bet_sats, ceiling)
                raise AdmissionRejected(
                    f"Bet exceeds current maximum of {ceiling} sats",
                    code="exposure_limit",
                    hint="Lower your bet or try again later",
                )
            liability = math.ceil(bet_sats * self.worst_multiplier)
            self.reserved += liability
            return Ticket(self, bet_sats, liability)

    def _settle(self, ticket: Ticket, payout_sats: int, persist: PersistFn) -> int:
        with self._lock:
            if ticket.settled or ticket.closed:
                raise RuntimeError("Ticket already settled")
            delta = ticket.bet_sats - payout_sats
            balance_after = self.balance_sats + delta
            # Nothing moves in memory unless the write went through.
            persist(delta, balance_after)
            self.balance_sats = balance_after
            self.reserved -= ticket.liability
            ticket.settled = True
            if self.paused:
                logger.warning(
                    "Bankroll %s at or below pause threshold %s; new bets paused",
                    balance_after,
                    self.settings.pause_threshold,
                )
            return balance_after

    def _release(self, ticket: Ticket) -> None:
        with self._lock:
            if ticket.closed:
                return
            if not ticket.settled:
                self.reserved -= ticket.liability
            ticket.closed = True

    def deposit(self, amount_sats: int, persist: PersistFn | None = None) -> int:
        if amount_sats <= 0:
            raise ValueError("Deposit must be positive")
        with self._lock:
            balance_after = self.balance_sats + amount_sats
            if persist is not None:
                persist(amount_sats, balance_after)
            self.balance_sats = balance_after
            return balance_after
