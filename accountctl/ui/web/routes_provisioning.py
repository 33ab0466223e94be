"""
Provisioning API routes.

POST /api/provisioning/jobs              → create a job (202, queued)
GET  /api/provisioning/jobs              → list jobs (?status=&limit=)
GET  /api/provisioning/jobs/<id>         → one job with its result
POST /api/provisioning/jobs/<id>/cancel  → cancel a pending/running job
POST /api/provisioning/jobs/<id>/execute → run a scheduled job now (202)
POST /api/provisioning/validate          → per-app validation, no vendor calls
POST /api/provisioning/plan              → per-app plans, nothing applied
GET  /api/provisioning/providers         → known providers and availability
GET  /api/provisioning/catalog           → org units, licenses, groups, ...
GET  /api/provisioning/audit             → recent audit entries (?email=&job=&n=)
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from accountctl.core.errors import ValidationError
from accountctl.core.models.job import TERMINAL_STATUSES
from accountctl.core.persistence.jobs import JobNotFoundError, JobStateError
from accountctl.core.use_cases.provision import ProvisioningService

logger = logging.getLogger(__name__)

provisioning_bp = Blueprint("provisioning", __name__)

_JOB_STATUSES = {"pending", "running"} | TERMINAL_STATUSES


def _service() -> ProvisioningService:
    from accountctl.ui.web.server import SERVICE_KEY

    return current_app.extensions[SERVICE_KEY]


def _payload() -> dict | None:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ── Error mapping ───────────────────────────────────────────────


@provisioning_bp.errorhandler(ValidationError)
def _validation_error(e: ValidationError):  # type: ignore[no-untyped-def]
    return jsonify({"error": str(e), "errors": list(e.errors)}), 400


@provisioning_bp.errorhandler(JobNotFoundError)
def _not_found(e: JobNotFoundError):  # type: ignore[no-untyped-def]
    return jsonify({"error": str(e)}), 404


@provisioning_bp.errorhandler(JobStateError)
def _state_error(e: JobStateError):  # type: ignore[no-untyped-def]
    return jsonify({"error": str(e)}), 409


# ── Jobs ────────────────────────────────────────────────────────


@provisioning_bp.route("/jobs", methods=["POST"])
def create_job():  # type: ignore[no-untyped-def]
    """Queue a provisioning request, or hold it until its ``scheduleTime``.

    Malformed requests and past schedule times create no job.
    """
    payload = _payload()
    if payload is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    job = _service().create_job(payload)
    return jsonify({"jobId": job.id, "status": job.status, "scheduleTime": job.schedule_time}), 202


@provisioning_bp.route("/jobs", methods=["GET"])
def list_jobs():  # type: ignore[no-untyped-def]
    status = request.args.get("status")
    if status is not None and status not in _JOB_STATUSES:
        return jsonify({"error": f"Unknown status: {status}"}), 400
    limit = request.args.get("limit", type=int)

    found = _service().list_jobs(status=status, limit=limit)
    return jsonify({"jobs": [job.model_dump(mode="json") for job in found]})


@provisioning_bp.route("/jobs/<job_id>", methods=["GET"])
def get_job(job_id: str):  # type: ignore[no-untyped-def]
    return jsonify(_service().get_job(job_id).model_dump(mode="json"))


@provisioning_bp.route("/jobs/<job_id>/cancel", methods=["POST"])
def cancel_job(job_id: str):  # type: ignore[no-untyped-def]
    job = _service().cancel_job(job_id)
    logger.info("Job %s cancelled via API", job_id)
    return jsonify(job.model_dump(mode="json"))


@provisioning_bp.route("/jobs/<job_id>/execute", methods=["POST"])
def execute_job(job_id: str):  # type: ignore[no-untyped-def]
    """Release a scheduled job to the queue without waiting for its time."""
    job = _service().execute_job(job_id)
    logger.info("Job %s executed early via API", job_id)
    return jsonify({"jobId": job.id, "status": job.status}), 202


# ── Read-only previews ──────────────────────────────────────────


@provisioning_bp.route("/validate", methods=["POST"])
def validate_request():  # type: ignore[no-untyped-def]
    payload = _payload()
    if payload is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    return jsonify(_service().validate_request(payload))


@provisioning_bp.route("/plan", methods=["POST"])
def plan_request():  # type: ignore[no-untyped-def]
    payload = _payload()
    if payload is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    return jsonify(_service().plan_request(payload).to_dict())


@provisioning_bp.route("/providers")
def providers():  # type: ignore[no-untyped-def]
    return jsonify({"providers": _service().providers()})


@provisioning_bp.route("/catalog")
def catalog():  # type: ignore[no-untyped-def]
    return jsonify(_service().catalog.model_dump(mode="json"))


# ── Audit ───────────────────────────────────────────────────────


@provisioning_bp.route("/audit")
def audit():  # type: ignore[no-untyped-def]
    """Recent audit entries, optionally for one employee (?email=) or job (?job=)."""
    ledger = _service().audit
    entries = ledger.search(
        email=request.args.get("email"),
        job_id=request.args.get("job"),
        limit=request.args.get("n", 20, type=int),
    )
    return jsonify({
        "total": ledger.entry_count(),
        "entries": [e.model_dump(mode="json") for e in entries],
    })
