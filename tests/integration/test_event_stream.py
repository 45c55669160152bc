"""Integration tests for the goal event WebSocket."""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.database import get_database
from app.main import app
from app.utils.auth import create_access_token
from tests.conftest import START
from tests.fakes import FakeDatabase, goal_doc


@pytest.fixture
def ws_setup():
    """Synchronous client plus a goal owned by user123."""
    db = FakeDatabase()
    doc = goal_doc(START)
    db["goals"].docs.append(doc)
    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app), str(doc["_id"])
    app.dependency_overrides.clear()


class TestGoalEventSocket:
    """Tests for /goals/{id}/events connection checks."""

    def test_missing_token(self, ws_setup):
        client, goal_id = ws_setup

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/goals/{goal_id}/events"):
                pass

        assert exc_info.value.code == 4001

    def test_invalid_token(self, ws_setup):
        client, goal_id = ws_setup

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/goals/{goal_id}/events?token=garbage"):
                pass

        assert exc_info.value.code == 4003

    def test_stranger_rejected(self, ws_setup):
        client, goal_id = ws_setup
        token = create_access_token("stranger")

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/goals/{goal_id}/events?token={token}"):
                pass

        assert exc_info.value.code == 4003
