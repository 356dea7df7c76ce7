import logging

from .config import Settings
from .errors import PayoutDeliveryFailure

logger = logging.getLogger(__name__)


class PayoutSender:
    def send(self, pubkey: str | None, amount_sats: int, game_id: str) -> dict:
        raise NotImplementedError


class DevPayoutSender(PayoutSender):
    """Pretends every payout was delivered; no funds move."""

    def send(self, pubkey: str | None, amount_sats: int, game_id: str) -> dict:
        logger.info("[DEV] Payout: %s sats -> %s (game %s)", amount_sats, pubkey or "unknown", game_id)
        return {
            "status": "sent",
            "amount_sats": amount_sats,
            "pubkey": pubkey,
            "game_id": game_id,
            "dev": True,
        }


class LightningPayoutSender(PayoutSender):
    """Production sender. No Lightning transport is configured, so every
    payout is reported as failed and the game is recorded with a `failed`
    payout status for the operator to settle."""

    def send(self, pubkey: str | None, amount_sats: int, game_id: str) -> dict:
        if not pubkey:
            raise PayoutDeliveryFailure(f"No destination pubkey for game {game_id}")
        raise PayoutDeliveryFailure(
            "Production Lightning payouts are not configured; run in development mode for stub payouts"
        )


def build_sender(settings: Settings) -> PayoutSender:
    if settings.dev_mode:
        return DevPayoutSender()
    return LightningPayoutSender()
