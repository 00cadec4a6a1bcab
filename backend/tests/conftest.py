import os
import sys
import pytest

# Ensure the backend root (containing the `tricktally` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tricktally import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MIN_PLAYERS = 2
    LOG_LEVEL = 'DEBUG'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import tricktally.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def make_game(flask_app):
    """Create a game and return (game_id, [membership ids in join order])."""
    from tricktally.services.games.roster import start_new_match

    def _make(*names):
        game = start_new_match(list(names or ('Alice', 'Bob', 'Cara')))
        return game.id, [gp.id for gp in game.players]

    return _make


@pytest.fixture()
def settle_rounds():
    """Settle rounds 1..count with every player bidding zero."""
    def _settle(ledger, count, members, tricks_for=None):
        for n in range(1, count + 1):
            outcomes = {}
            for gp_id in members:
                tricks = tricks_for(n, gp_id) if tricks_for else 0
                outcomes[gp_id] = {'bid': 0, 'tricks_won': tricks, 'bonus': 0}
            ledger.settle_round(n, outcomes)

    return _settle
