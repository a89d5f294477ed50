"""Web routes — run segment scripts in the background and stream progress."""

import json
import queue
import threading
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request

from tapeforge.config import load_config
from tapeforge.engine import Pipeline
from tapeforge.errors import TapeForgeError
from tapeforge.progress import CallbackStatus
from tapeforge.script import load_script

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}
_jobs_lock = threading.Lock()


def _summary(report) -> dict:
    return {
        "segments": [
            {
                "path": str(r.path),
                "state": r.state.value,
                "stages": r.stages,
                "duration_ms": r.duration_ms,
            }
            for r in report.results
        ],
        "failures": [
            {"path": str(f.path), "stage": f.stage, "error": f.error}
            for f in report.failures
        ],
        "playlists": [str(p) for p in report.playlists],
    }


@bp.route("/api/jobs", methods=["POST"])
def submit():
    body = request.get_json(silent=True) or {}
    if "script" not in body:
        return jsonify({"error": "No script provided"}), 400

    script_path = Path(body["script"]).expanduser().resolve()
    if not script_path.is_file():
        return jsonify({"error": f"Script {script_path} not found"}), 400

    job_id = uuid.uuid4().hex[:12]
    progress_queue: queue.Queue = queue.Queue()
    job = {
        "script": script_path,
        "status": "running",
        "error": None,
        "progress_queue": progress_queue,
    }
    # one job per script, since jobs share its temp/ files and outputs
    with _jobs_lock:
        if any(j["script"] == script_path and j["status"] == "running" for j in _jobs.values()):
            return jsonify({"error": f"Script {script_path} is already running"}), 409
        _jobs[job_id] = job
    config_file = current_app.config.get("TAPEFORGE_CONFIG")

    def run():
        try:
            config = load_config(config_file)
            directives = load_script(script_path)
            display = CallbackStatus(lambda text: progress_queue.put({"status": text}))
            pipeline = Pipeline(config, workdir=script_path.parent, display=display)
            report = pipeline.run(directives)
            job["result"] = _summary(report)
            job["status"] = "done" if report.ok else "failed"
        except TapeForgeError as e:
            job["status"] = "error"
            job["error"] = str(e)
        except Exception as e:
            job["status"] = "error"
            job["error"] = f"{type(e).__name__}: {e}"
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job["progress_queue"]

    def generate():
        while True:
            try:
                msg = q.get(timeout=600)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({"status": "complete", "result": job.get("result")})
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"], "script": str(job["script"])}
    if "result" in job:
        resp["result"] = job["result"]
    if job["status"] == "error":
        resp["error"] = job["error"]
    return jsonify(resp)
