#!/usr/bin/env python3
"""
Start the triage API under uvicorn, run the live smoke tests against it, then stop the server.
Usage: python scripts/run_tests_live.py
(Run from project root with venv activated.)
"""

import os
import subprocess
import sys
import time

# Add project root for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.live_client import LiveClient

BASE_URL = "http://127.0.0.1:8765"


def wait_for_server(client, timeout=10):
    for _ in range(timeout):
        try:
            if client.get("/health").status_code == 200:
                return True
        except OSError:
            pass
        time.sleep(1)
    return False


def main():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    os.chdir(root)
    env = os.environ.copy()
    env.setdefault("ESCALATION_SWEEP_SECONDS", "0")
    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "triage.main:app", "--host", "127.0.0.1", "--port", "8765"],
        cwd=root,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        if not wait_for_server(LiveClient(BASE_URL)):
            print("Server did not start in time.")
            sys.exit(1)
        env["BASE_URL"] = BASE_URL
        result = subprocess.run(
            [sys.executable, "-m", "pytest", "tests/test_live_api.py", "-v"],
            env=env,
        )
        sys.exit(result.returncode)
    finally:
        proc.terminate()
        proc.wait(timeout=5)


if __name__ == "__main__":
    main()
