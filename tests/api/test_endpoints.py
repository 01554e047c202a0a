"""
API Endpoint Tests

Tests the FastAPI endpoints using TestClient against a live-mode
controller (no port configured) and the mock serial device.
"""

import time

import pytest
from fastapi.testclient import TestClient

from strokeplotter.api import dependencies
from strokeplotter.api.app import create_app
from strokeplotter.controller import PlotterController


@pytest.fixture
def client(config, write_gift_map):
    """Test client with a fresh controller installed."""
    write_gift_map({"5655": "a", "Heart Me": "b"})
    dependencies.set_controller(PlotterController(config))

    app = create_app()
    with TestClient(app) as client:
        yield client

    dependencies.set_controller(None)


@pytest.fixture
def connected_client(client):
    """Client connected to the mock device."""
    response = client.post("/api/plotter/connect", json={"port": "mock"})
    assert response.status_code == 200
    return client


def pending(client, row_id: str) -> int:
    return client.get("/api/status").json()["state"]["rows"][row_id]["pendingStrokes"]


class TestHealthAndStatus:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_status_initial(self, client):
        data = client.get("/api/status").json()

        assert set(data["state"]["rows"]) == {"a", "b"}
        assert data["state"]["paperRun"]["needsNewPaper"] is False
        assert data["serial_connected"] is False
        assert data["dry_run"] is False
        assert data["position"] is None

    def test_ports_lists(self, client):
        response = client.get("/api/ports")
        assert response.status_code == 200
        assert isinstance(response.json()["ports"], list)


class TestDemandEndpoints:

    def test_simulate_gift_queues_strokes(self, client):
        response = client.post("/api/simulate/gift", json={"rowId": "a", "count": 3})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "applied": True}
        assert pending(client, "a") == 3

    def test_simulate_gift_unknown_row(self, client):
        response = client.post("/api/simulate/gift", json={"rowId": "zebra", "count": 3})

        assert response.status_code == 200
        assert response.json()["applied"] is False

    @pytest.mark.parametrize("body", [
        {"rowId": "a", "count": 0},
        {"rowId": "a", "count": -1},
        {"rowId": "a"},
        {"count": 2},
    ])
    def test_simulate_gift_validation(self, client, body):
        response = client.post("/api/simulate/gift", json=body)
        assert response.status_code == 422

    def test_gift_event_by_id(self, client):
        response = client.post("/api/gifts/event", json={"giftId": 5655, "count": 2})

        assert response.json() == {"ok": True, "rowId": "a", "applied": True}
        assert pending(client, "a") == 2

    @pytest.mark.parametrize("body,expected", [
        ({"giftId": 5655, "repeatCount": 4, "repeatEnd": True}, 4),
        ({"giftId": 5655, "repeatCount": 4, "giftCount": 2, "repeatEnd": False}, 2),
        ({"giftId": 5655, "repeatCount": 6}, 6),
        ({"giftId": 5655, "repeatCount": 6, "repeatEnd": False}, 1),
        ({"giftId": 5655, "count": 3, "repeatCount": 6, "repeatEnd": True}, 3),
    ])
    def test_gift_event_count_from_counters(self, client, body, expected):
        response = client.post("/api/gifts/event", json=body)

        assert response.json()["applied"] is True
        assert pending(client, "a") == expected

    def test_gift_event_by_name_defaults_to_one(self, client):
        response = client.post("/api/gifts/event", json={"giftName": "heart me"})

        assert response.json()["rowId"] == "b"
        assert pending(client, "b") == 1

    def test_gift_event_unmapped(self, client):
        response = client.post("/api/gifts/event", json={"giftName": "Galaxy"})

        assert response.status_code == 200
        assert response.json()["applied"] is False

    def test_gift_event_needs_id_or_name(self, client):
        response = client.post("/api/gifts/event", json={"count": 2})
        assert response.status_code == 400

    def test_paper_changed(self, client):
        response = client.post("/api/paper/changed")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["state"]["rows"]["b"]["x"] == 5

    def test_mapping_reload(self, client, write_gift_map):
        write_gift_map({"1": "b"})

        response = client.post("/api/mapping/reload")

        assert response.json() == {"ok": True, "entries": 1}
        client.post("/api/gifts/event", json={"giftId": 1})
        assert pending(client, "b") == 1

    def test_mapping_reload_failure(self, client, tmp_path):
        (tmp_path / "gift-map.json").write_text("oops", encoding="utf-8")

        response = client.post("/api/mapping/reload")

        assert response.status_code == 500


class TestPlotterEndpoints:

    def test_gcode_without_connection(self, client):
        response = client.post("/api/plotter/gcode", json={"lines": ["G90"]})
        assert response.status_code == 400

    def test_gcode_rejects_empty_line(self, connected_client):
        response = connected_client.post("/api/plotter/gcode", json={"lines": ["G90", "  "]})
        assert response.status_code == 400

    def test_gcode_rejects_empty_batch(self, connected_client):
        response = connected_client.post("/api/plotter/gcode", json={"lines": []})
        assert response.status_code == 422

    def test_connect_without_port(self, client):
        response = client.post("/api/plotter/connect", json={})
        assert response.status_code == 400

    def test_connect_and_send(self, connected_client):
        assert connected_client.get("/api/status").json()["serial_connected"] is True

        response = connected_client.post(
            "/api/plotter/gcode", json={"lines": ["G90", "G0 X10 Y20 Z5"]}
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True, "lines": 2}

    def test_position_requires_connection(self, client):
        response = client.post("/api/plotter/position")
        assert response.status_code == 400

    def test_position_from_mock(self, connected_client):
        connected_client.post("/api/plotter/gcode", json={"lines": ["G0 X10 Y20 Z5"]})

        response = connected_client.post("/api/plotter/position")

        assert response.status_code == 200
        data = response.json()
        assert data["position"]["x"] == 10.0
        assert data["position"]["y"] == 20.0
        assert data["position_updated_at"] is not None

    def test_disconnect(self, connected_client):
        response = connected_client.post("/api/plotter/disconnect")

        assert response.status_code == 200
        assert connected_client.get("/api/status").json()["serial_connected"] is False

    def test_dry_run_toggle(self, connected_client):
        response = connected_client.post("/api/plotter/dry-run", json={"dryRun": True})

        assert response.json() == {"ok": True, "dryRun": True}
        status = connected_client.get("/api/status").json()
        assert status["dry_run"] is True
        assert status["serial_connected"] is False

    def test_dry_run_draws_queued_demand(self, client):
        client.post("/api/plotter/dry-run", json={"dryRun": True})
        client.post("/api/simulate/gift", json={"rowId": "a", "count": 2})

        # The kick runs on the app loop; poll until the tick lands
        for _ in range(100):
            if pending(client, "a") == 0:
                break
            time.sleep(0.01)
        assert pending(client, "a") == 0
        assert client.get("/api/status").json()["state"]["rows"]["a"]["x"] == 10
