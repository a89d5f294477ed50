"""Unit tests for the TapeForge web job runner."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from tapeforge.engine import RunReport, SegmentResult, SegmentState
from tapeforge.errors import ConfigError
from tapeforge.web import create_app
from tapeforge.web.routes import _jobs


@pytest.fixture
def app(tmp_path):
    app = create_app(config_file=tmp_path / "config.json")
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def script_file(tmp_path):
    path = tmp_path / "tape.tfs"
    path.write_text('original "tape.mkv"\nno_reduce_noise\nsegment "clip.mkv"\n')
    return path


def _events(resp) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in resp.get_data(as_text=True).splitlines()
        if line.startswith("data: ")
    ]


class TestSubmit:
    def test_no_script(self, client):
        resp = client.post("/api/jobs", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No script provided"

    def test_missing_script(self, client, tmp_path):
        resp = client.post("/api/jobs", json={"script": str(tmp_path / "nope.tfs")})
        assert resp.status_code == 400
        assert "not found" in resp.get_json()["error"]

    @patch("tapeforge.web.routes.Pipeline")
    def test_runs_pipeline_and_streams(self, mock_pipeline_cls, client, script_file):
        def fake_run(directives):
            display = mock_pipeline_cls.call_args.kwargs["display"]
            display.update("clip.mkv 50%")
            display.clear()
            report = RunReport()
            report.results.append(
                SegmentResult(path=script_file.parent / "clip.mkv", title="clip", stage_count=1,
                              stages=["creating video"], state=SegmentState.DONE)
            )
            return report

        mock_pipeline_cls.return_value = MagicMock(run=MagicMock(side_effect=fake_run))
        resp = client.post("/api/jobs", json={"script": str(script_file)})
        assert resp.status_code == 200
        job_id = resp.get_json()["job_id"]

        events = _events(client.get(f"/api/jobs/{job_id}/progress"))
        assert events[0] == {"status": "clip.mkv 50%"}
        assert events[1] == {"status": ""}
        assert events[-1]["status"] == "complete"
        assert events[-1]["result"]["segments"][0]["state"] == "done"

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "done"
        assert mock_pipeline_cls.call_args.kwargs["workdir"] == script_file.parent

    @patch("tapeforge.web.routes.Pipeline")
    def test_error_reported(self, mock_pipeline_cls, client, script_file):
        mock_pipeline_cls.side_effect = ConfigError("Please specify 'audio_sample_rate'")
        job_id = client.post("/api/jobs", json={"script": str(script_file)}).get_json()["job_id"]

        events = _events(client.get(f"/api/jobs/{job_id}/progress"))
        assert events[-1] == {"error": "Please specify 'audio_sample_rate'"}
        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "error"

    @patch("tapeforge.web.routes.Pipeline")
    def test_same_script_rejected_while_running(self, mock_pipeline_cls, client, script_file):
        release = threading.Event()

        def fake_run(directives):
            release.wait(timeout=5)
            return RunReport()

        mock_pipeline_cls.return_value = MagicMock(run=MagicMock(side_effect=fake_run))
        first = client.post("/api/jobs", json={"script": str(script_file)})
        assert first.status_code == 200

        second = client.post("/api/jobs", json={"script": str(script_file)})
        assert second.status_code == 409
        assert "already running" in second.get_json()["error"]

        release.set()
        _events(client.get(f"/api/jobs/{first.get_json()['job_id']}/progress"))
        third = client.post("/api/jobs", json={"script": str(script_file)})
        assert third.status_code == 200
        _events(client.get(f"/api/jobs/{third.get_json()['job_id']}/progress"))


class TestUnknownJob:
    def test_progress(self, client):
        assert client.get("/api/jobs/nope/progress").status_code == 404

    def test_status(self, client):
        resp = client.get("/api/jobs/nope/status")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Job not found"

    def test_unknown_route(self, client):
        assert client.get("/nothing").status_code == 404


def teardown_module():
    _jobs.clear()
