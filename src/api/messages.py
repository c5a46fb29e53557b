"""
Messaging blueprint.

Endpoints:
- POST /messages/send             Deliver a message, queueing it on failure
- GET  /messages/pending          Messages awaiting delivery
- POST /messages/pending/sweep    Retry pending messages now
"""

from flask import Blueprint, jsonify, request

from api.state import get_services
from api.utils import error_response, json_body, require_api_key, validate_json_schema
from messaging import OutboundMessage

messages_bp = Blueprint("messages", __name__)

MAX_CONTENT_LENGTH = 10000


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


@messages_bp.route("/messages/send", methods=["POST"])
@require_api_key
def send_message():
    """
    Send a message to another user.

    Request body:
    {
        "fromId": "...", "fromName": "...", "fromType": "client",
        "toId": "...", "toName": "...", "toType": "talent",
        "subject": "...", "content": "...",
        "budget": "optional", "deadline": "optional"
    }

    Returns 201 when delivered and 202 when stored for a later retry.
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"fromId": str, "toId": str, "content": str},
        optional_fields={
            "fromName": str,
            "fromType": str,
            "toName": str,
            "toType": str,
            "subject": str,
            "budget": str,
            "deadline": str,
        },
        max_lengths={"content": MAX_CONTENT_LENGTH, "subject": 200},
    )
    if not is_valid:
        return error_response(error, 400)

    message = OutboundMessage(
        from_id=data["fromId"],
        from_name=data.get("fromName", ""),
        from_type=data.get("fromType") or "client",
        to_id=data["toId"],
        to_name=data.get("toName", ""),
        to_type=data.get("toType") or "talent",
        subject=data.get("subject", ""),
        content=data["content"],
        budget=data.get("budget"),
        deadline=data.get("deadline"),
    )

    outcome = get_services().messages.send(message, auth_token=_bearer_token())
    return jsonify({
        "delivered": outcome.delivered,
        "endpoint": outcome.endpoint,
        "error": outcome.error,
        "message": outcome.message,
    }), 201 if outcome.delivered else 202


@messages_bp.route("/messages/pending", methods=["GET"])
@require_api_key
def list_pending():
    queue = get_services().pending
    pending = queue.pending()
    return jsonify({
        "count": len(pending),
        "maxRetries": queue.max_retries,
        "messages": [m.to_dict() for m in pending],
    })


@messages_bp.route("/messages/pending/sweep", methods=["POST"])
@require_api_key
def sweep_pending():
    report = get_services().pending.sweep(auth_token=_bearer_token())
    return jsonify(report.to_dict())
