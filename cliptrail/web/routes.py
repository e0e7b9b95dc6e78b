"""Job routes: start, stream progress, poll status, cancel."""

import json
import os
import queue
import threading
import uuid

from flask import Blueprint, Response, jsonify, request

from cliptrail.engine import run_job
from cliptrail.job import JobCancelledError, JobInfo
from cliptrail.manifest import manifest_from_dict
from cliptrail.workers import WorkerPool

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}

# Pools never shut down, so jobs asking for the same thread count share one
_pools: dict[int, WorkerPool] = {}
_pools_lock = threading.Lock()


def _shared_pool(threads: int) -> WorkerPool:
    threads = max(1, threads)
    with _pools_lock:
        if threads not in _pools:
            _pools[threads] = WorkerPool(threads)
        return _pools[threads]


def _result_dict(result) -> dict:
    return {
        "output_dir": str(result.output_dir),
        "clip_count": result.clip_count,
        "timeline_length": result.timeline_length,
        "frames_encoded": result.frames_encoded,
        "export_path": str(result.export_path) if result.export_path else None,
    }


@bp.route("/api/parallelism")
def parallelism():
    return jsonify({"threads": os.cpu_count() or 1})


@bp.route("/api/jobs", methods=["POST"])
def start_job():
    config = request.get_json(silent=True)
    if not isinstance(config, dict):
        return jsonify({"error": "Expected a JSON manifest"}), 400

    try:
        manifest = manifest_from_dict(config)
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid manifest: {e}"}), 400

    pool = _shared_pool(manifest.threads)
    job_id = uuid.uuid4().hex[:12]
    progress_queue: queue.Queue = queue.Queue()
    info = JobInfo(job_id, on_progress=lambda u: progress_queue.put(u.to_dict()))

    job = {
        "info": info,
        "progress_queue": progress_queue,
        "status": "processing",
        "error": None,
        "result": None,
    }
    _jobs[job_id] = job

    def run():
        try:
            result = run_job(manifest, info, pool=pool)
            job["result"] = _result_dict(result)
            job["status"] = "done"
        except JobCancelledError:
            job["status"] = "cancelled"
        except Exception as e:
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id, "status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job["progress_queue"]

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({"status": job["status"], "result": job["result"]})
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"]}
    if job["status"] == "done":
        resp["result"] = job["result"]
    if job["status"] == "error":
        resp["error"] = job["error"]
    return jsonify(resp)


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_job(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "processing":
        return jsonify({"cancelled": False, "status": job["status"]}), 409

    job["info"].cancel()
    return jsonify({"cancelled": True})
