import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from . import ledger, models
from .config import Settings
from .delivery import PayoutSender
from .errors import InvalidWager, PayoutDeliveryFailure, PaymentRequired, PersistenceFailure
from .exposure import ExposureGuard
from .fairness import commit_seed, derive_roll, new_server_seed
from .payout import multiplier, payout, resolve_roll

logger = logging.getLogger(__name__)


def validate_target(target: int, settings: Settings) -> None:
    if target < 1 or target > settings.max_roll:
        raise InvalidWager(
            f"Target must be between 1 and {settings.max_roll}",
            code="invalid_target",
            hint="Lower target = lower win chance = higher payout",
        )


def validate_bet(bet_sats: int, target: int, settings: Settings) -> None:
    if bet_sats < settings.min_bet or bet_sats > settings.max_bet:
        raise InvalidWager(
            f"Bet must be between {settings.min_bet} and {settings.max_bet} sats",
            code="invalid_bet",
        )
    # a win must always pay at least one sat
    if payout(bet_sats, multiplier(target, settings.house_edge)) < 1:
        raise InvalidWager(
            f"Bet of {bet_sats} sats cannot pay out at target {target}",
            code="invalid_bet",
            hint="Raise the bet or lower the target",
        )


def load_bankroll(db: Session, settings: Settings) -> int:
    balance = ledger.latest_bankroll(db)
    if balance is None:
        balance = settings.initial_bankroll
        ledger.record_bankroll_event(db, "init", balance, balance)
        logger.info("Bankroll initialised at %s sats", balance)
    return balance


class RollService:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        guard: ExposureGuard,
        sender: PayoutSender,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.guard = guard
        self.sender = sender

    def roll(
        self,
        target: int,
        bet_sats: int,
        client_entropy: Optional[str],
        payout_method: str = "keysend",
        player_pubkey: Optional[str] = None,
    ) -> models.Game:
        validate_target(target, self.settings)
        validate_bet(bet_sats, target, self.settings)
        if not client_entropy:
            raise PaymentRequired(
                "No L402 authorization found. Pay the Lightning invoice to play.",
                hint="Use lnget to automatically handle L402 payments",
            )

        with self.guard.admit(bet_sats) as ticket:
            server_seed = new_server_seed()
            server_seed_hash = commit_seed(server_seed)
            resolution = resolve_roll(
                target, bet_sats, derive_roll(server_seed, client_entropy), self.settings.house_edge
            )
            fields = {
                "id": ledger.generate_game_id(),
                "roll": resolution.roll,
                "target": target,
                "result": resolution.result,
                "bet_sats": bet_sats,
                "multiplier": resolution.multiplier,
                "payout_sats": resolution.payout_sats,
                "payout_method": payout_method,
                "payout_status": ledger.initial_payout_status(resolution.result),
                "server_seed": server_seed,
                "server_seed_hash": server_seed_hash,
                "client_entropy": client_entropy,
                "player_pubkey": player_pubkey,
                "created_at": datetime.utcnow(),
            }

            db = self.session_factory()
            try:
                ticket.settle(
                    resolution.payout_sats,
                    lambda delta, balance_after: ledger.record_game(
                        db, fields, balance_after, attempts=self.settings.persist_attempts
                    ),
                )
                logger.info(
                    "Game %s: roll %s target %s -> %s (bet %s, payout %s)",
                    fields["id"],
                    resolution.roll,
                    target,
                    resolution.result,
                    bet_sats,
                    resolution.payout_sats,
                )
                if fields["payout_status"] == "pending":
                    self._deliver(db, fields["id"], player_pubkey, resolution.payout_sats)
                return ledger.get_game(db, fields["id"])
            finally:
                db.close()

    def _deliver(self, db: Session, game_id: str, pubkey: Optional[str], amount_sats: int) -> None:
        try:
            receipt = self.sender.send(pubkey, amount_sats, game_id)
            logger.info("Payout for game %s delivered: %s", game_id, receipt)
            status = "sent"
        except PayoutDeliveryFailure as exc:
            logger.error("Payout failed for game %s: %s", game_id, exc)
            status = "failed"
        try:
            ledger.update_payout_status(db, game_id, status)
        except PersistenceFailure as exc:
            # The game itself is already recorded; leave it pending for a retry.
            logger.error("Could not mark game %s payout as %s: %s", game_id, status, exc)

    def deposit(self, amount_sats: int) -> int:
        db = self.session_factory()
        try:
            return self.guard.deposit(
                amount_sats,
                lambda amount, balance_after: ledger.record_bankroll_event(
                    db, "deposit", amount, balance_after
                ),
            )
        finally:
            db.close()
