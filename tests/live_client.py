"""Tiny stdlib HTTP client for the live-server tests (no requests dependency)."""

import json
import urllib.error
import urllib.request


class LiveResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class LiveClient:
    """JSON-in, JSON-out calls against a running triage API."""

    def __init__(self, base_url):
        self.base_url = base_url.rstrip("/")

    def _call(self, method, path, body=None):
        data = json.dumps(body).encode() if body is not None else None
        req = urllib.request.Request(f"{self.base_url}{path}", data=data, method=method)
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=5) as r:
                raw = r.read().decode()
                return LiveResponse(r.getcode(), json.loads(raw) if raw else {})
        except urllib.error.HTTPError as e:
            raw = e.read().decode()
            try:
                return LiveResponse(e.code, json.loads(raw))
            except ValueError:
                return LiveResponse(e.code, {"detail": raw})

    def get(self, path):
        return self._call("GET", path)

    def post(self, path, body=None):
        return self._call("POST", path, body if body is not None else {})
