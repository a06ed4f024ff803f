# tests/conftest.py

import asyncio
import sys
import threading
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# --- Put the project root on the import path ---
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
# ---------------------------------------------

try:
    from main import app
except ImportError as e:
    raise ImportError(f"Could not import 'app' from 'main.py' in the project root "
                      f"(path added: {project_root}). Original error: {e}")

from warehouse.exceptions import QuerySubmissionError


@pytest.fixture(scope="function")
def client() -> TestClient:
    """A FastAPI TestClient for the app, one per test."""
    test_client = TestClient(app)
    yield test_client


# --- In-memory collaborators ---

class FakeWarehouse:
    """
    Serves pre-built pages. The token of page N is str(N); the last page
    comes back with no token.
    """

    name = "fake"

    def __init__(self, pages, reject_query=False, fail_on_page=None):
        self.pages = pages
        self.reject_query = reject_query
        self.fail_on_page = fail_on_page
        self.submitted = []
        self.fetch_calls = []

    def submit(self, query):
        if self.reject_query:
            raise QuerySubmissionError("Syntax error: unexpected token")
        self.submitted.append(query)
        return "job-1"

    def fetch_page(self, job, page_token, page_size):
        index = 0 if page_token is None else int(page_token)
        self.fetch_calls.append((job, page_token, page_size))
        if self.fail_on_page is not None and index == self.fail_on_page:
            raise RuntimeError("connection reset by peer")
        rows = self.pages[index] if index < len(self.pages) else []
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return [dict(r) for r in rows], next_token


class RecordingUpdater:
    """Blocking stand-in for update_record. Ids in fail_ids raise."""

    def __init__(self, fail_ids=None):
        self.fail_ids = set(fail_ids or [])
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, identifier, properties):
        with self._lock:
            self.calls.append((identifier, dict(properties)))
        if identifier in self.fail_ids:
            raise ValueError(f"Property values were not valid for {identifier}")
        return {"id": identifier}


class InFlightTracker:
    """Async updater that records how many calls overlap."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = []

    async def __call__(self, identifier, properties):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.calls.append(identifier)
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_warehouse():
    return FakeWarehouse

@pytest.fixture
def make_updater():
    return RecordingUpdater

@pytest.fixture
def make_tracker():
    return InFlightTracker

@pytest.fixture
def checkpoint_path(tmp_path):
    return str(tmp_path / "state" / "processed_ids.json")

@pytest.fixture
def audit_path(tmp_path):
    return str(tmp_path / "out" / "audit.csv")
