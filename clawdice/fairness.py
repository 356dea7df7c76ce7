"""Commit-reveal randomness for dice rolls.

1. The server draws a random seed and commits to ``sha256(seed)`` before the
   player's entropy is known.
2. The player supplies entropy (the Lightning payment preimage, or random
   bytes in development mode).
3. ``roll = uint16_be(hmac_sha256(key=seed, msg=entropy)[:2])``, 0..65535.
4. After the game the seed is revealed so anyone can recompute 1 and 3.
"""

import hashlib
import hmac
import secrets

SEED_BYTES = 32


def new_server_seed() -> str:
    return secrets.token_hex(SEED_BYTES)


def commit_seed(server_seed: str) -> str:
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()


def derive_roll(server_seed: str, client_entropy: str) -> int:
    digest = hmac.new(
        key=server_seed.encode("utf-8"),
        msg=client_entropy.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).digest()
    return int.from_bytes(digest[:2], "big")


def new_dev_entropy() -> str:
    """Stand-in for a payment preimage when no L402 proxy is in front."""
    return secrets.token_hex(SEED_BYTES)
