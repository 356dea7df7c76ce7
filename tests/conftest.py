import pytest
from fastapi.testclient import TestClient

from clawdice.config import Settings
from clawdice.main import create_app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{(tmp_path / 'clawdice-test.db').as_posix()}",
        initial_bankroll=1_000_000_000,
        pause_threshold=100_000,
        min_bet=10,
        max_bet=50_000,
        dev_mode=True,
        log_level="WARNING",
    )


@pytest.fixture
def app(settings):
    application = create_app(settings)
    yield application
    application.state.engine.dispose()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def db(app):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()
