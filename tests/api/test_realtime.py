"""Tests for the realtime WebSocket channels."""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.services.container import build_core

DAY = "2030-01-07"


def _body(user_id: str = "user-a", session_id: str = "sess-1") -> dict:
    return {
        "userId": user_id,
        "sessionId": session_id,
        "staffId": "staff-1",
        "date": DAY,
        "timeRange": "09:00-09:30",
    }


@pytest.fixture
def client(settings, clock):
    app = create_app(settings, core=build_core(settings, clock=clock))
    with TestClient(app) as test_client:
        yield test_client


def test_staff_channel_sends_snapshot_then_events(client: TestClient) -> None:
    """Snapshot on connect, then SlotLocked and SlotReleased as they happen."""
    with client.websocket_connect(f"/ws/staff/staff-1?date={DAY}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "GridSnapshot"
        assert len(snapshot["slots"]) == 16

        reserved = client.post("/api/appointments/reserve", json=_body())
        appointment_id = reserved.json()["data"]["appointmentId"]

        locked = ws.receive_json()
        assert locked["type"] == "SlotLocked"
        assert locked["appointmentId"] == appointment_id
        assert locked["slot"]["state"] == "locked"

        client.post(
            "/api/appointments/cancel-lock",
            json={"userId": "user-a", "sessionId": "sess-1", "appointmentId": appointment_id},
        )
        released = ws.receive_json()
        assert released["type"] == "SlotReleased"
        assert released["reason"] == "user"


def test_staff_channel_snapshot_on_request(client: TestClient) -> None:
    with client.websocket_connect("/ws/staff/staff-1") as ws:
        ws.send_json({"action": "snapshot", "date": DAY})
        snapshot = ws.receive_json()
        assert snapshot["type"] == "GridSnapshot"
        assert snapshot["date"] == DAY


def test_user_channel_gets_previous_slot_released(client: TestClient) -> None:
    client.post("/api/appointments/reserve", json=_body())
    with client.websocket_connect("/ws/users/user-a") as ws:
        client.post(
            "/api/appointments/release-prior-lock",
            json={"userId": "user-a", "sessionId": "sess-2"},
        )
        notice = ws.receive_json()
        assert notice["type"] == "PreviousSlotReleased"
        assert notice["sessionId"] == "sess-1"
        assert notice["reason"] == "superseded"


def test_staff_channel_rejects_malformed_date(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/staff/staff-1?date=not-a-date"):
            pass
    assert exc_info.value.code == 1008


def test_staff_channel_ignores_malformed_snapshot_request(client: TestClient) -> None:
    with client.websocket_connect("/ws/staff/staff-1") as ws:
        ws.send_json({"action": "snapshot", "date": "2030-13-45"})
        ws.send_json({"action": "snapshot", "date": 20300107})
        ws.send_json({"action": "snapshot", "date": DAY})
        snapshot = ws.receive_json()
        assert snapshot["type"] == "GridSnapshot"
        assert snapshot["date"] == DAY
