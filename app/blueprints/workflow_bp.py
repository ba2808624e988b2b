"""Case workflow plan blueprint.

REST API over the plan engine services.

Endpoint groups:
  Plan generation        POST  /api/v1/cases/<case_id>/plan/generate
  Plan view              GET   /api/v1/cases/<case_id>/plan
  Readiness recalc       POST  /api/v1/cases/<case_id>/plan/readiness/recalculate
  Readiness override     PATCH /api/v1/cases/<case_id>/plan/steps/<step_id>/readiness-override
  Task workspace         GET   /api/v1/cases/<case_id>/tasks[?include_complete=true]
  Task status update     PATCH /api/v1/cases/<case_id>/tasks/<step_id>/status
  Case timeline          GET   /api/v1/cases/<case_id>/timeline

Caller identity (X-Tenant-Id / X-User-Id) is resolved by the tenant context
middleware.  Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import caller_identity, json_body, register_error_handlers
from app.services import case_lifecycle, plan_generator, readiness_engine, workspace_ranker
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/cases")
register_error_handlers(workflow_bp)


def _optional_bool(raw: str | None) -> bool | None:
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes")


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None, None
    if isinstance(value, bool) or not isinstance(value, int):
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} must be an integer")
    return value, None


# ═════════════════════════════════════════════════════════════════════════
# Plan
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/<int:case_id>/plan/generate", methods=["POST"])
def generate_plan(case_id):
    """Generate the workflow plan once per case (Manager).  201 on success."""
    tenant_id, actor_user_id = caller_identity()
    result = plan_generator.generate_plan(case_id, tenant_id=tenant_id, actor_user_id=actor_user_id)
    return jsonify(result), 201


@workflow_bp.route("/<int:case_id>/plan", methods=["GET"])
def get_plan(case_id):
    tenant_id, actor_user_id = caller_identity()
    return jsonify(workspace_ranker.get_plan_steps(
        case_id, tenant_id=tenant_id, actor_user_id=actor_user_id,
    )), 200


@workflow_bp.route("/<int:case_id>/plan/readiness/recalculate", methods=["POST"])
def recalculate_readiness(case_id):
    tenant_id, actor_user_id = caller_identity()
    return jsonify(readiness_engine.recalculate_readiness(
        case_id, tenant_id=tenant_id, actor_user_id=actor_user_id,
    )), 200


@workflow_bp.route("/<int:case_id>/plan/steps/<step_id>/readiness-override", methods=["PATCH"])
def override_readiness(case_id, step_id):
    """Force a step to ready/blocked with a rationale (Manager).

    Body: {target_status, rationale, blocked_reason_code?, blocked_reason_detail?, expected_version?}
    """
    tenant_id, actor_user_id = caller_identity()
    data = json_body()
    if not data.get("target_status"):
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    expected_version, err = _optional_int(data, "expected_version")
    if err:
        return err

    plan = readiness_engine.override_readiness(
        case_id,
        step_id,
        data["target_status"],
        data.get("rationale"),
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        blocked_reason_code=data.get("blocked_reason_code"),
        blocked_reason_detail=data.get("blocked_reason_detail"),
        expected_version=expected_version,
    )
    return jsonify(plan), 200


# ═════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/<int:case_id>/tasks", methods=["GET"])
def get_tasks(case_id):
    tenant_id, actor_user_id = caller_identity()
    workspace = workspace_ranker.get_task_workspace(
        case_id,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        include_complete=_optional_bool(request.args.get("include_complete")),
    )
    return jsonify(workspace), 200


@workflow_bp.route("/<int:case_id>/tasks/<step_id>/status", methods=["PATCH"])
def update_task_status(case_id, step_id):
    """Advance a task (Editor).

    Body: {target_status: "started" | "completed" | "needs_review", notes?, expected_version?}
    Returns: refreshed workspace.
    """
    tenant_id, actor_user_id = caller_identity()
    data = json_body()
    if not data.get("target_status"):
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        return api_error(E.VALIDATION_REQUIRED, "notes must be a string")
    expected_version, err = _optional_int(data, "expected_version")
    if err:
        return err

    workspace = readiness_engine.update_task_status(
        case_id,
        step_id,
        data["target_status"],
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        notes=notes,
        expected_version=expected_version,
    )
    return jsonify(workspace), 200


# ═════════════════════════════════════════════════════════════════════════
# Timeline
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/<int:case_id>/timeline", methods=["GET"])
def get_timeline(case_id):
    tenant_id, actor_user_id = caller_identity()
    events = case_lifecycle.get_case_timeline(case_id, tenant_id=tenant_id, actor_user_id=actor_user_id)
    return jsonify({"case_id": case_id, "events": events, "total": len(events)}), 200
