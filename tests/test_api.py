"""
Tests for the Flask / Socket.IO read API.
"""

import pytest

from signal_engine.api import create_app


@pytest.fixture
def api(service):
    app, socketio = create_app(service)
    app.config["TESTING"] = True
    return app, socketio


@pytest.fixture
def client(api):
    app, _ = api
    return app.test_client()


class TestRoutes:

    def test_prediction(self, client):
        response = client.get("/api/prediction/ETH")
        assert response.status_code == 200
        data = response.get_json()
        assert data["asset"] == "ETH"
        assert data["volatility"]["horizon"] == 1

    def test_prediction_horizon_label(self, client):
        data = client.get("/api/prediction/ETH?horizon=LONG").get_json()
        assert data["volatility"]["horizon"] == 24

    def test_unknown_asset(self, client):
        response = client.get("/api/prediction/BTC")
        assert response.status_code == 404
        assert "error" in response.get_json()

    def test_bad_horizon(self, client):
        assert client.get("/api/prediction/ETH?horizon=-1").status_code == 400
        assert client.get("/api/prediction/ETH?horizon=WEEKLY").status_code == 400

    def test_volatilities(self, client, engine_config):
        data = client.get("/api/volatilities").get_json()
        assert set(data) == set(engine_config.data.assets)

    def test_health(self, client):
        data = client.get("/api/health").get_json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_status(self, client):
        data = client.get("/api/status").get_json()
        assert data["cycle"] == 1
        assert data["initialized"] is True


class TestSocketEvents:

    def test_update_on_connect(self, api):
        app, socketio = api
        ws = socketio.test_client(app)
        received = ws.get_received()
        assert any(event["name"] == "volatility_update" for event in received)
        ws.disconnect()

    def test_update_after_cycle(self, api, service):
        app, socketio = api
        ws = socketio.test_client(app)
        ws.get_received()

        service.run_cycle()
        received = ws.get_received()
        updates = [event for event in received if event["name"] == "volatility_update"]
        assert len(updates) == 1
        assert "ETH" in updates[0]["args"][0]
        ws.disconnect()

    def test_request_update(self, api):
        app, socketio = api
        ws = socketio.test_client(app)
        ws.get_received()
        ws.emit("request_update")
        assert ws.get_received()[0]["name"] == "volatility_update"
        ws.disconnect()
