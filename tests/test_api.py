"""
Tests for the video job HTTP API.

The app runs with an orchestrator wired to in-process fakes, so no network
or ffmpeg is needed.

Run with: pytest tests/test_api.py -v
"""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEncoder, FakeFetcher, RecordingNotifier
from coverloop.config import Settings, get_settings
from coverloop.main import app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(make_orchestrator, notifier):
    """FastAPI test client backed by a fake pipeline."""
    app.state.orchestrator = make_orchestrator(notifier=notifier)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def payload():
    return {
        "title": "Rainy day lo-fi",
        "video_creation_id": "vc-42",
        "channel_id": "ch-7",
        "thumbnail_url": "https://cdn.example.com/cover.png",
        "songs": [
            {"title": "One", "file_url": "https://cdn.example.com/1.mp3", "length": 60},
            {"title": "Two", "file_url": "https://cdn.example.com/2.mp3", "length": 90.5},
        ],
        "target_duration_seconds": 600,
    }


def _wait_for_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/video-jobs/{job_id}").json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


# =============================================================================
# Submission
# =============================================================================


class TestCreateVideoJob:
    def test_async_submit_returns_202(self, client, payload):
        response = client.post("/api/video-jobs", json=payload)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["job_id"]

        job = _wait_for_terminal(client, data["job_id"])
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["video_url"].endswith(f"/api/videos/{data['job_id']}.mp4")

    def test_wait_returns_full_job(self, client, payload, notifier):
        response = client.post("/api/video-jobs?wait=true", json=payload)

        assert response.status_code == 200
        job = response.json()
        assert job["status"] == "completed"
        assert job["title"] == "Rainy day lo-fi"
        assert job["video_creation_id"] == "vc-42"
        assert job["target_duration_seconds"] == 600
        assert job["encode_preset"] == "fast"
        assert [s["length"] for s in job["songs"]] == [60, 90.5]
        assert len(notifier.jobs) == 1

    def test_default_target_duration(self, client, payload):
        del payload["target_duration_seconds"]

        job = client.post("/api/video-jobs?wait=true", json=payload).json()

        assert job["target_duration_seconds"] == 1800

    def test_failed_job_reports_error(self, make_orchestrator, payload):
        from coverloop.exceptions import InvalidAssetError

        app.state.orchestrator = make_orchestrator(
            fetcher=FakeFetcher(error=InvalidAssetError("Invalid image format: got text/html"))
        )
        with TestClient(app) as client:
            job = client.post("/api/video-jobs?wait=true", json=payload).json()

        assert job["status"] == "failed"
        assert job["error_code"] == "INVALID_ASSET"
        assert "text/html" in job["error_message"]
        assert job["video_url"] is None

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p.pop("thumbnail_url"),
            lambda p: p.update(songs=[]),
            lambda p: p.update(thumbnail_url="not a url"),
            lambda p: p["songs"][0].update(length=0),
            lambda p: p.update(encode_preset="lossless"),
        ],
    )
    def test_invalid_body(self, client, payload, mutate):
        mutate(payload)

        response = client.post("/api/video-jobs", json=payload)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_required_track_count(self, client, payload):
        app.dependency_overrides[get_settings] = lambda: Settings(required_track_count=10)

        response = client.post("/api/video-jobs", json=payload)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "10" in error["message"]

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p.update(target_duration_seconds=0.0001),
            lambda p: p["songs"][1].update(length=0.0004),
        ],
    )
    def test_sub_millisecond_duration_rejected_before_submit(self, client, payload, mutate):
        mutate(payload)

        response = client.post("/api/video-jobs", json=payload)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert client.get("/api/video-jobs").json()["total"] == 0


# =============================================================================
# Queries, cancellation, artifacts
# =============================================================================


class TestJobQueries:
    def test_get_unknown_job(self, client):
        response = client.get("/api/video-jobs/missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "JOB_NOT_FOUND"

    def test_list_and_stats(self, client, payload):
        first = client.post("/api/video-jobs?wait=true", json=payload).json()
        second = client.post("/api/video-jobs?wait=true", json=payload).json()

        listing = client.get("/api/video-jobs").json()
        assert listing["total"] == 2
        assert [j["id"] for j in listing["jobs"]] == [second["id"], first["id"]]

        assert client.get("/api/video-jobs/active").json()["total"] == 0

        stats = client.get("/api/stats").json()
        assert stats["completed"] == 2
        assert stats["active"] == 0
        assert stats["max_concurrent_jobs"] == 3

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["active_jobs"] == 0


class TestCancelVideoJob:
    def test_cancel_queued_job(self, make_orchestrator, payload):
        import asyncio

        gate = asyncio.Event()
        app.state.orchestrator = make_orchestrator(encoder=FakeEncoder(gate=gate), max_concurrent_jobs=1)
        with TestClient(app) as client:
            client.post("/api/video-jobs", json=payload)
            queued_id = client.post("/api/video-jobs", json=payload).json()["job_id"]

            response = client.delete(f"/api/video-jobs/{queued_id}")

            assert response.status_code == 200
            job = response.json()
            assert job["status"] == "failed"
            assert job["error_message"] == "Cancelled by user"

            again = client.delete(f"/api/video-jobs/{queued_id}")
            assert again.status_code == 409
            assert again.json()["error"]["code"] == "JOB_NOT_CANCELLABLE"

    def test_cancel_unknown_job(self, client):
        response = client.delete("/api/video-jobs/missing")
        assert response.status_code == 404


class TestGetVideo:
    def test_download_completed_video(self, client, payload):
        job = client.post("/api/video-jobs?wait=true", json=payload).json()

        response = client.get(f"/api/videos/{job['id']}.mp4")

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        assert response.content == b"video"

    @pytest.mark.parametrize("filename", ["missing.mp4", "..%2Fetc%2Fpasswd", "job.mov"])
    def test_missing_or_invalid_filename(self, client, filename):
        response = client.get(f"/api/videos/{filename}")

        assert response.status_code == 404
