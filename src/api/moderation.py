"""
Moderation blueprint.

Endpoints:
- POST   /moderation/check                 Run the content filter on text
- GET    /moderation/flagged               Flagged or suspicious messages
- POST   /moderation/messages/<id>/flag    Flag a message
- DELETE /moderation/messages/<id>         Delete a message
- GET    /moderation/actions               Recent admin actions
"""

from flask import Blueprint, jsonify, request

from api.state import get_services
from api.utils import (
    error_response,
    json_body,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)
from moderation import contains_off_platform_contact

moderation_bp = Blueprint("moderation", __name__)


@moderation_bp.route("/moderation/check", methods=["POST"])
@require_api_key
def check_content():
    """
    Check text against the content filter.

    Request body:
    {
        "content": "text to check"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data, required_fields={"content": str}, max_lengths={"content": 10000}
    )
    if not is_valid:
        return error_response(error, 400)

    result = get_services().content_filter.filter_message(data["content"])
    return jsonify({
        **result.to_dict(),
        "offPlatformContact": contains_off_platform_contact(data["content"]),
    })


@moderation_bp.route("/moderation/flagged", methods=["GET"])
@require_api_key
def flagged_messages():
    messages = get_services().moderation.flagged_messages()
    return jsonify({"count": len(messages), "messages": messages})


@moderation_bp.route("/moderation/messages/<message_id>/flag", methods=["POST"])
@require_api_key
def flag_message(message_id: str):
    """
    Flag a message for review.

    Request body:
    {
        "adminId": "...",
        "reason": "..."
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"adminId": str},
        optional_fields={"reason": str},
        max_lengths={"reason": 500},
    )
    if not is_valid:
        return error_response(error, 400)

    message = get_services().moderation.flag(message_id, data.get("reason", ""), data["adminId"])
    return jsonify({"message": message})


@moderation_bp.route("/moderation/messages/<message_id>", methods=["DELETE"])
@require_api_key
def delete_message(message_id: str):
    admin_id = request.args.get("adminId") or (json_body() or {}).get("adminId")
    if not admin_id:
        return error_response("adminId is required", 400)

    removed = get_services().moderation.delete(message_id, admin_id)
    return jsonify({"deleted": True, "id": removed.get("id", message_id)})


@moderation_bp.route("/moderation/actions", methods=["GET"])
@require_api_key
def admin_actions():
    limit, _ = validate_pagination_params(request.args.get("limit", 100, type=int))
    actions = get_services().action_log.recent(limit)
    return jsonify({"count": len(actions), "actions": actions})
