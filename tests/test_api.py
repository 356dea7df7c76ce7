import logging

import pytest
from fastapi.testclient import TestClient

import clawdice.service
from clawdice import ledger
from clawdice.delivery import LightningPayoutSender, PayoutSender
from clawdice.errors import InvalidWager, PayoutDeliveryFailure, PersistenceFailure
from clawdice.fairness import commit_seed, derive_roll
from clawdice.main import create_app, extract_client_entropy
from clawdice.service import validate_bet


class FailingSender(PayoutSender):
    def send(self, pubkey, amount_sats, game_id):
        raise PayoutDeliveryFailure("node offline")


def test_info(client):
    body = client.get("/").json()
    assert body["name"] == "ClawDice"
    assert body["mode"] == "development"
    assert body["game"]["house_edge"] == "1.5%"
    assert body["bankroll"]["paused"] is False


def test_roll_with_l402_preimage(client, app):
    response = client.get(
        "/roll",
        params={"target": 32768, "bet": 100},
        headers={"Authorization": "L402 macaroonbase64:preimage123", "X-Player-Pubkey": "02abc"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["client_entropy"] == "preimage123"
    assert body["server_seed_hash"] == commit_seed(body["server_seed"])
    assert body["roll"] == derive_roll(body["server_seed"], "preimage123")
    assert body["result"] == ("win" if body["roll"] < 32768 else "loss")
    assert body["multiplier"] == 1.97
    assert body["win_probability"] == "50%"
    assert body["payout_sats"] == (197 if body["result"] == "win" else 0)
    assert body["payout_status"] == ("sent" if body["result"] == "win" else "n/a")
    assert body["verify_url"] == f"/verify/{body['game_id']}"

    balance = app.state.guard.balance_sats
    assert balance == 1_000_000_000 + 100 - body["payout_sats"]
    assert app.state.guard.reserved == 0


def test_roll_defaults_and_dev_entropy(client):
    body = client.get("/roll").json()
    assert body["target"] == 32768
    assert body["bet_sats"] == 100
    assert body["payout_method"] == "keysend"
    assert len(body["client_entropy"]) == 64


def test_invalid_target(client):
    for target in ("0", "65536", "abc"):
        response = client.get("/roll", params={"target": target})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_target"


def test_invalid_bet(client):
    for bet in ("9", "50001", "lots"):
        response = client.get("/roll", params={"bet": bet})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_bet"


def test_bet_above_bankroll_ceiling(client, app):
    ceiling = app.state.guard.dynamic_max_bet()
    response = client.get("/roll", params={"bet": ceiling + 1})
    assert response.status_code == 400
    assert response.json()["error"] == "exposure_limit"


def test_paused_bankroll(settings):
    app = create_app(settings.with_overrides(initial_bankroll=100_000))
    response = TestClient(app).get("/roll")
    assert response.status_code == 503
    assert response.json()["error"] == "bankroll_paused"
    app.state.engine.dispose()


def test_production_requires_payment(settings):
    app = create_app(settings.with_overrides(dev_mode=False))
    client = TestClient(app)
    response = client.get("/roll")
    assert response.status_code == 402
    assert response.json()["error"] == "payment_required"
    ok = client.get("/roll", headers={"Authorization": "L402 mac:pre"})
    assert ok.status_code == 200
    app.state.engine.dispose()


def test_extract_client_entropy(settings):
    prod = settings.with_overrides(dev_mode=False)
    assert extract_client_entropy("L402 a:b:c ", prod) == "c"
    assert extract_client_entropy("Bearer token", prod) is None
    assert extract_client_entropy(None, prod) is None
    assert len(extract_client_entropy(None, settings)) == 64


def test_failed_payout_is_recorded_not_raised(settings, monkeypatch):
    monkeypatch.setattr(clawdice.service, "derive_roll", lambda seed, entropy: 0)
    app = create_app(settings, sender=FailingSender())
    client = TestClient(app)
    body = client.get("/roll").json()
    assert body["result"] == "win"
    assert body["payout_sats"] == 197
    assert body["payout_status"] == "failed"
    assert client.get(f"/verify/{body['game_id']}").json()["bet_sats"] == 100
    app.state.engine.dispose()


def test_persistence_failure_does_not_move_bankroll(client, app, monkeypatch):
    def refuse(*args, **kwargs):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(clawdice.service.ledger, "record_game", refuse)
    response = client.get("/roll")
    assert response.status_code == 500
    assert response.json()["error"] == "internal"
    assert app.state.guard.balance_sats == 1_000_000_000
    assert app.state.guard.reserved == 0


def test_verify_honest_game(client):
    game = client.get("/roll", params={"target": 16384, "bet": 50}).json()
    body = client.get(f"/verify/{game['game_id']}").json()
    assert body["verified"] is True
    assert body["computed_roll"] == game["roll"]
    assert body["result"] == game["result"]
    assert body["multiplier"] == 3.94
    assert set(body["how_to_verify"]) == {"step_1", "step_2", "step_3", "step_4"}


def test_verify_detects_tampered_rows(client, app):
    game_id = client.get("/roll").json()["game_id"]
    with app.state.engine.begin() as conn:
        conn.exec_driver_sql("UPDATE games SET roll = (roll + 1) % 65536 WHERE id = ?", (game_id,))
    body = client.get(f"/verify/{game_id}").json()
    assert body["verified"] is False
    assert body["reason"] == "outcome mismatch"
    assert "computed_roll" not in body

    with app.state.engine.begin() as conn:
        conn.exec_driver_sql("UPDATE games SET server_seed = ? WHERE id = ?", ("ff" * 32, game_id))
    assert client.get(f"/verify/{game_id}").json()["reason"] == "seed/hash mismatch"


def test_rigged_roll_is_exposed_by_verification(settings, monkeypatch):
    monkeypatch.setattr(clawdice.service, "derive_roll", lambda seed, entropy: 28441)
    app = create_app(settings)
    client = TestClient(app)
    game = client.get("/roll", params={"target": 32768, "bet": 100}).json()
    assert (game["roll"], game["result"], game["multiplier"], game["payout_sats"]) == (28441, "win", 1.97, 197)
    loss = client.get("/roll", params={"target": 1000, "bet": 100}).json()
    assert (loss["result"], loss["payout_sats"]) == ("loss", 0)

    verification = client.get(f"/verify/{game['game_id']}").json()
    assert verification["verified"] is False
    assert verification["reason"] == "outcome mismatch"
    app.state.engine.dispose()


def test_verify_unknown_game(client):
    response = client.get("/verify/g_missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_odds(client):
    body = client.get("/odds").json()
    assert body["house_edge"] == "1.5%"
    assert body["roll_range"] == "0–65535"
    assert body["rule"] == "You win if roll < target"
    assert [row["target"] for row in body["payout_table"]][:2] == [1000, 4096]


def test_stats_leaderboard_and_recent(client):
    ids = []
    for player in ("alice", "bob", "alice"):
        ids.append(client.get("/roll", params={"pubkey": player}).json()["game_id"])
    client.get("/roll")

    stats = client.get("/stats").json()
    assert stats["name"] == "ClawDice"
    assert stats["total_games"] == 4
    assert stats["total_wagered_sats"] == 400
    assert stats["unique_players"] == 2
    assert stats["last_24h"]["games"] == 4

    board = client.get("/leaderboard").json()["leaderboard"]
    assert {row["player_pubkey"] for row in board} == {"alice", "bob"}
    assert board == sorted(board, key=lambda row: (-row["net_profit"], row["player_pubkey"]))

    recent = client.get("/recent", params={"limit": 2}).json()["games"]
    assert len(recent) == 2
    assert recent[1]["id"] == ids[2]


def test_list_limits_are_capped(client):
    for _ in range(3):
        client.get("/roll")
    assert len(client.get("/recent", params={"limit": 1000}).json()["games"]) == 3
    assert client.get("/leaderboard", params={"limit": 1000}).status_code == 200


def test_bankroll_survives_restart(settings):
    first = create_app(settings)
    game = TestClient(first).get("/roll").json()
    first.state.engine.dispose()

    second = create_app(settings)
    assert second.state.guard.balance_sats == 1_000_000_000 + 100 - game["payout_sats"]
    assert TestClient(second).get(f"/verify/{game['game_id']}").json()["verified"] is True
    second.state.engine.dispose()


def test_deposit_unpauses_and_is_logged(settings):
    app = create_app(settings.with_overrides(initial_bankroll=100_000))
    client = TestClient(app)
    assert client.get("/").json()["bankroll"]["paused"] is True

    assert app.state.service.deposit(999_900_000) == 1_000_000_000
    db = app.state.session_factory()
    try:
        assert ledger.latest_bankroll(db) == 1_000_000_000
    finally:
        db.close()
    assert client.get("/roll").status_code == 200
    app.state.engine.dispose()


def test_bet_that_cannot_pay_out_is_rejected(settings, monkeypatch):
    with pytest.raises(InvalidWager) as excinfo:
        validate_bet(1, 65535, settings.with_overrides(min_bet=1))
    assert excinfo.value.code == "invalid_bet"
    validate_bet(2, 65535, settings.with_overrides(min_bet=1))

    monkeypatch.setattr(clawdice.service, "derive_roll", lambda seed, entropy: 0)
    app = create_app(settings.with_overrides(min_bet=1))
    client = TestClient(app)
    response = client.get("/roll", params={"target": 65535, "bet": 1})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_bet"
    assert app.state.guard.reserved == 0

    body = client.get("/roll", params={"target": 65535, "bet": 2}).json()
    assert (body["result"], body["payout_sats"]) == ("win", 1)
    app.state.engine.dispose()


def test_dev_payout_receipt_is_logged(settings, monkeypatch, caplog):
    monkeypatch.setattr(clawdice.service, "derive_roll", lambda seed, entropy: 0)
    app = create_app(settings)
    with caplog.at_level(logging.INFO, logger="clawdice.service"):
        body = TestClient(app).get("/roll", params={"pubkey": "02abc"}).json()
    assert body["payout_status"] == "sent"
    assert f"Payout for game {body['game_id']} delivered" in caplog.text
    assert "'amount_sats': 197" in caplog.text
    app.state.engine.dispose()


def test_production_payouts_are_reported_failed(settings, monkeypatch):
    with pytest.raises(PayoutDeliveryFailure):
        LightningPayoutSender().send("02abc", 197, "g_0000000000000000")

    monkeypatch.setattr(clawdice.service, "derive_roll", lambda seed, entropy: 0)
    app = create_app(settings.with_overrides(dev_mode=False))
    body = (
        TestClient(app)
        .get("/roll", headers={"Authorization": "L402 mac:pre", "X-Player-Pubkey": "02abc"})
        .json()
    )
    assert body["result"] == "win"
    assert body["payout_status"] == "failed"
    app.state.engine.dispose()


def test_error_bodies_are_documented(client):
    paths = client.get("/openapi.json").json()["paths"]
    documented = {
        "/roll": ("400", "402", "500", "503"),
        "/verify/{game_id}": ("404",),
    }
    for path, codes in documented.items():
        responses = paths[path]["get"]["responses"]
        for code in codes:
            schema = responses[code]["content"]["application/json"]["schema"]
            assert schema["$ref"].endswith("/ErrorResponse")
