from dataclasses import dataclass, asdict
from typing import Optional

from .fairness import commit_seed, derive_roll

SEED_HASH_MISMATCH = "seed/hash mismatch"
OUTCOME_MISMATCH = "outcome mismatch"

HOW_TO_VERIFY = {
    "step_1": "Confirm SHA256(server_seed) === server_seed_hash",
    "step_2": "Compute HMAC-SHA256(server_seed, client_entropy)",
    "step_3": "Take first 2 bytes as uint16 big-endian → roll",
    "step_4": "roll < target → win, roll >= target → loss",
}


@dataclass(frozen=True)
class Verification:
    verified: bool
    reason: Optional[str] = None
    server_seed: Optional[str] = None
    server_seed_hash: Optional[str] = None
    client_entropy: Optional[str] = None
    computed_roll: Optional[int] = None
    target: Optional[int] = None
    result: Optional[str] = None

    def as_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


def verify_game(record) -> Verification:
    """Recompute commitment and roll from a stored game's own fields.

    ``record`` is anything with ``server_seed``, ``server_seed_hash``,
    ``client_entropy``, ``roll`` and ``target`` attributes; nothing else is
    consulted, so a third party can run this against published data.
    """
    if commit_seed(record.server_seed) != record.server_seed_hash:
        return Verification(verified=False, reason=SEED_HASH_MISMATCH)

    computed_roll = derive_roll(record.server_seed, record.client_entropy)
    if computed_roll != record.roll:
        return Verification(verified=False, reason=OUTCOME_MISMATCH)

    return Verification(
        verified=True,
        server_seed=record.server_seed,
        server_seed_hash=record.server_seed_hash,
        client_entropy=record.client_entropy,
        computed_roll=computed_roll,
        target=record.target,
        result="win" if computed_roll < record.target else "loss",
    )
