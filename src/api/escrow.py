"""
Escrow payments blueprint.

Endpoints:
- POST /escrow                       Create a pending escrow
- POST /escrow/<id>/capture          Capture funds (pending -> held)
- POST /escrow/<id>/release          Pay out to talent (held -> released)
- POST /escrow/<id>/dispute          Freeze a held payment
- POST /escrow/<id>/refund           Return a held payment to the client
- GET  /escrow/<id>                  Fetch one payment
- GET  /escrow?userId=&role=         Payments for a client or talent
- GET  /escrow/fees?amount=          Fee breakdown
"""

import math

from flask import Blueprint, jsonify, request

from api.state import get_services
from api.utils import error_response, json_body, require_api_key, validate_json_schema

escrow_bp = Blueprint("escrow", __name__)


def _not_found(payment_id: str):
    return error_response("Escrow payment not found", 404, id=payment_id)


def _payment_response(payment, payment_id: str, status: int = 200):
    if payment is None:
        return _not_found(payment_id)
    return jsonify({"payment": payment.to_dict()}), status


@escrow_bp.route("/escrow", methods=["POST"])
@require_api_key
def create_escrow():
    """
    Create an escrow payment.

    Request body:
    {
        "amount": 250.0,
        "currency": "USD",
        "clientId": "...",
        "talentId": "...",
        "projectId": "...",
        "description": "optional"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={
            "amount": (int, float),
            "clientId": str,
            "talentId": str,
            "projectId": str,
        },
        optional_fields={"currency": str, "description": str},
        max_lengths={"description": 2000},
    )
    if not is_valid:
        return error_response(error, 400)

    payment = get_services().escrow.create(
        amount=data["amount"],
        currency=data.get("currency") or "USD",
        client_id=data["clientId"],
        talent_id=data["talentId"],
        project_id=data["projectId"],
        description=data.get("description") or "",
    )
    return jsonify({"payment": payment.to_dict()}), 201


@escrow_bp.route("/escrow/<payment_id>/capture", methods=["POST"])
@require_api_key
def capture_escrow(payment_id: str):
    payment = get_services().escrow.capture(payment_id)
    return _payment_response(payment, payment_id)


@escrow_bp.route("/escrow/<payment_id>/release", methods=["POST"])
@require_api_key
def release_escrow(payment_id: str):
    """
    Release held funds to the talent.

    Request body:
    {
        "payeeEmail": "talent@example.com"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"payeeEmail": str})
    if not is_valid:
        return error_response(error, 400)

    payment = get_services().escrow.release(payment_id, data["payeeEmail"])
    return _payment_response(payment, payment_id)


@escrow_bp.route("/escrow/<payment_id>/dispute", methods=["POST"])
@require_api_key
def dispute_escrow(payment_id: str):
    data = json_body() or {}
    payment = get_services().escrow.dispute(payment_id, str(data.get("reason", "")))
    return _payment_response(payment, payment_id)


@escrow_bp.route("/escrow/<payment_id>/refund", methods=["POST"])
@require_api_key
def refund_escrow(payment_id: str):
    data = json_body() or {}
    payment = get_services().escrow.refund(payment_id, str(data.get("reason", "")))
    return _payment_response(payment, payment_id)


@escrow_bp.route("/escrow/fees", methods=["GET"])
def escrow_fees():
    amount = request.args.get("amount", type=float)
    if amount is None or not math.isfinite(amount) or amount <= 0:
        return error_response("Query parameter 'amount' must be a positive number", 400)
    return jsonify(get_services().escrow.calculate_fees(amount))


@escrow_bp.route("/escrow/<payment_id>", methods=["GET"])
@require_api_key
def get_escrow(payment_id: str):
    return _payment_response(get_services().escrow.get(payment_id), payment_id)


@escrow_bp.route("/escrow", methods=["GET"])
@require_api_key
def list_escrows():
    user_id = request.args.get("userId")
    role = request.args.get("role", "client")
    if not user_id:
        return error_response("Query parameter 'userId' is required", 400)
    if role not in ("client", "talent"):
        return error_response("Query parameter 'role' must be 'client' or 'talent'", 400)

    payments = get_services().escrow.query(user_id, role)
    return jsonify({
        "count": len(payments),
        "payments": [p.to_dict() for p in payments],
    })
