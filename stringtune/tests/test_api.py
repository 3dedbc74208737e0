from collections import OrderedDict

import pytest
from fastapi.testclient import TestClient

from stringtune import main
from stringtune.main import app
from stringtune.tests.audio_utils import chunk, generate_sine_wave


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session_id(client):
    resp = client.post("/api/sessions", json={"preset": "acoustic", "tuning": "standard-e"})
    assert resp.status_code == 200
    return resp.json()["session_id"]


class TestApi:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_list_tunings(self, client):
        ids = [t["id"] for t in client.get("/api/tunings").json()]
        assert {"standard-e", "flat-e", "drop-d"} <= set(ids)

    def test_register_tuning(self, client):
        body = {"id": "api-open-d", "label": "Open D", "note_names": ["D2", "A2", "D3"],
                "frequencies": [73.42, 110.0, 146.83]}
        resp = client.post("/api/tunings", json=body)
        assert resp.status_code == 200
        assert "api-open-d" in [t["id"] for t in resp.json()]

    def test_register_tuning_from_names(self, client):
        resp = client.post("/api/tunings", json={"id": "api-et", "note_names": ["E2", "A2"]})
        assert resp.status_code == 200
        tuning = next(t for t in resp.json() if t["id"] == "api-et")
        assert tuning["notes"]["A2"] == pytest.approx(110.0)

    def test_register_tuning_mismatch(self, client):
        body = {"id": "api-bad", "note_names": ["E2", "A2"], "frequencies": [82.41]}
        resp = client.post("/api/tunings", json=body)
        assert resp.status_code == 400

    def test_session_detect(self, client, session_id):
        result = None
        for block in chunk(generate_sine_wave(110.0, 0.5), 4096):
            resp = client.post(f"/api/sessions/{session_id}/detect", json={"samples": block.tolist()})
            assert resp.status_code == 200
            result = resp.json()["result"] or result
        assert result is not None
        assert result["note"] == "A2"

    def test_session_with_unknown_string_filter_tuning(self, client):
        resp = client.post("/api/sessions", json={"tuning": "no-such", "string_filters": True})
        assert resp.status_code == 400

    def test_unknown_session(self, client):
        resp = client.post("/api/sessions/nope/detect", json={"samples": [0.0]})
        assert resp.status_code == 404

    def test_delete_session(self, client, session_id):
        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404


class TestSessionLimits:
    @pytest.fixture(autouse=True)
    def empty_store(self, monkeypatch):
        monkeypatch.setattr(main, "_sessions", OrderedDict())

    def _create(self, client):
        return client.post("/api/sessions", json={}).json()["session_id"]

    def _detect_status(self, client, sid):
        return client.post(f"/api/sessions/{sid}/detect", json={"samples": [0.0] * 64}).status_code

    def test_least_recently_used_evicted_at_cap(self, client, monkeypatch):
        monkeypatch.setattr(main, "MAX_SESSIONS", 2)
        first = self._create(client)
        second = self._create(client)
        assert self._detect_status(client, first) == 200
        third = self._create(client)
        assert self._detect_status(client, second) == 404
        assert self._detect_status(client, first) == 200
        assert self._detect_status(client, third) == 200
        assert client.get("/health").json()["sessions"] == 2

    def test_idle_sessions_expire(self, client, monkeypatch):
        monkeypatch.setattr(main, "SESSION_IDLE_S", -1.0)
        stale = self._create(client)
        fresh = self._create(client)
        assert self._detect_status(client, stale) == 404
        assert self._detect_status(client, fresh) == 200
