"""Case and playbook blueprint.

Thin REST surface over the lifecycle and playbook collaborators the plan
engine relies on.

Endpoint groups:
  Cases          POST /api/v1/cases
                 GET  /api/v1/cases/<case_id>
  Intake         PUT  /api/v1/cases/<case_id>/intake
  Lifecycle      POST /api/v1/cases/<case_id>/transition
  Playbooks      POST /api/v1/playbooks
                 POST /api/v1/playbooks/<playbook_id>/activate
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify

from app.blueprints import caller_identity, json_body, register_error_handlers
from app.services import case_lifecycle, playbook_service
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

case_bp = Blueprint("cases", __name__, url_prefix="/api/v1")
register_error_handlers(case_bp)


@case_bp.route("/cases", methods=["POST"])
def create_case():
    """Body: {deceased_full_name, manager_user_id?}.  Returns the case (201)."""
    tenant_id, actor_user_id = caller_identity()
    data = json_body()
    name = data.get("deceased_full_name")
    if not isinstance(name, str) or not name.strip():
        return api_error(E.VALIDATION_REQUIRED, "deceased_full_name is required")
    manager_user_id = data.get("manager_user_id")
    if manager_user_id is not None and not isinstance(manager_user_id, int):
        return api_error(E.VALIDATION_REQUIRED, "manager_user_id must be an integer")

    case = case_lifecycle.create_case(
        tenant_id,
        actor_user_id=actor_user_id,
        deceased_full_name=name,
        manager_user_id=manager_user_id,
    )
    return jsonify(case.to_dict()), 201


@case_bp.route("/cases/<int:case_id>", methods=["GET"])
def get_case(case_id):
    tenant_id, actor_user_id = caller_identity()
    case = case_lifecycle.get_case(case_id, tenant_id=tenant_id, actor_user_id=actor_user_id)
    return jsonify(case.to_dict()), 200


@case_bp.route("/cases/<int:case_id>/intake", methods=["PUT"])
def submit_intake(case_id):
    tenant_id, actor_user_id = caller_identity()
    case = case_lifecycle.submit_intake(
        case_id, json_body(), tenant_id=tenant_id, actor_user_id=actor_user_id,
    )
    return jsonify(case.to_dict()), 200


@case_bp.route("/cases/<int:case_id>/transition", methods=["POST"])
def transition_case(case_id):
    """Body: {status}.  Manager-only lifecycle move (review, closed, archived, cancelled)."""
    tenant_id, actor_user_id = caller_identity()
    status = json_body().get("status")
    if not isinstance(status, str) or not status.strip():
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    case = case_lifecycle.transition_case(
        case_id, status.strip().lower(), tenant_id=tenant_id, actor_user_id=actor_user_id,
    )
    return jsonify(case.to_dict()), 200


@case_bp.route("/playbooks", methods=["POST"])
def create_playbook():
    """Body: {name, template?, description?, change_notes?}."""
    tenant_id, actor_user_id = caller_identity()
    data = json_body()
    if not isinstance(data.get("name"), str) or not data["name"].strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    playbook = playbook_service.create_playbook(
        tenant_id,
        actor_user_id=actor_user_id,
        name=data["name"],
        template=data.get("template"),
        description=data.get("description"),
        change_notes=data.get("change_notes"),
    )
    return jsonify(playbook.to_dict()), 201


@case_bp.route("/playbooks/<int:playbook_id>/activate", methods=["POST"])
def activate_playbook(playbook_id):
    tenant_id, actor_user_id = caller_identity()
    playbook = playbook_service.activate_playbook(
        playbook_id, tenant_id=tenant_id, actor_user_id=actor_user_id,
    )
    return jsonify(playbook.to_dict()), 200
