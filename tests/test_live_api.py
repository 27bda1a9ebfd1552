"""
Smoke tests against a running server. Skipped unless BASE_URL is set.

  1. Start server: uvicorn triage.main:app --host 127.0.0.1 --port 8000
  2. In another terminal: BASE_URL=http://127.0.0.1:8000 pytest tests/test_live_api.py -v

Or use the run script (starts server, runs these tests, stops server):
  python scripts/run_tests_live.py
"""

import os

import pytest

from tests.live_client import LiveClient

BASE_URL = os.environ.get("BASE_URL")

pytestmark = pytest.mark.skipif(not BASE_URL, reason="BASE_URL not set; no live server")


@pytest.fixture
def api():
    return LiveClient(BASE_URL)


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_flood_call_dispatches_and_completes(api):
    r = api.post("/calls", {"caller_phone": "+15550123"})
    assert r.status_code == 201
    sid = r.json()["session_id"]

    r = api.post(f"/calls/{sid}/utterances", {"text": "My apartment is flooding! Water is coming from the ceiling!"})
    assert r.status_code == 200
    data = r.json()
    assert data["next_action"] == "dispatch"
    assert data["classification"]["urgency"] == "EMERGENCY"

    tid = data["ticket_id"]
    if data["dispatch"]["success"]:
        # Return the technician to the pool so reruns still find someone.
        assert api.post(f"/tickets/{tid}/complete").json()["status"] == "Completed"


def test_classify(api):
    r = api.post("/classify", {"text": "no heat in the bedroom"})
    assert r.status_code == 200
    assert r.json()["urgency"] == "HIGH"


def test_unknown_call(api):
    assert api.get("/calls/call-does-not-exist").status_code == 404
