"""
YieldSteward - Treasury API Blueprint

REST endpoints over the running treasury:
- Status, recipients, validator and drain queries
- Audit trail of emitted events
- Permissionless triggers for distribution and validator checks

Emergency drain operations are deliberately CLI-only: they take an operator
identity that the HTTP layer has no way to vouch for.
"""

from flask import Blueprint, jsonify, request

from api import state
from api.utils import bounded_limit, error_response, not_initialized, require_api_key
from storage.base import StorageError
from treasury_exceptions import TreasuryError

treasury_bp = Blueprint("treasury", __name__)


# =============================================================================
# Queries
# =============================================================================


@treasury_bp.route("/treasury/status", methods=["GET"])
def treasury_status():
    """
    Current treasury status.

    Returns:
        Balance figures, timing and the statistics snapshot
    """
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    with state.treasury_lock:
        try:
            balance = treasury.get_staked_balance()
            return jsonify({
                "staked_balance": balance,
                "principal_locked": treasury.principal_locked,
                "available_rewards": max(0, balance - treasury.principal_locked),
                "next_transfer_amount": treasury.get_next_transfer_amount(),
                "can_execute_transfer": treasury.can_execute_transfer(),
                "blocks_until_next_transfer": treasury.blocks_until_next_transfer(),
                "statistics": treasury.get_statistics(),
            })
        except TreasuryError as e:
            return error_response(e)


@treasury_bp.route("/treasury/recipients", methods=["GET"])
def list_recipients():
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    recipients = [
        {"index": index, **recipient.to_dict()}
        for index, recipient in enumerate(treasury.get_recipients())
    ]
    return jsonify({"count": treasury.get_recipient_count(), "recipients": recipients})


@treasury_bp.route("/treasury/validator", methods=["GET"])
def validator_info():
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    with state.treasury_lock:
        try:
            identity, position, is_valid = treasury.get_current_validator_info()
        except TreasuryError as e:
            return error_response(e)
    return jsonify({"identity": identity, "position": position, "is_valid": is_valid})


@treasury_bp.route("/treasury/drain", methods=["GET"])
def drain_status():
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    with state.treasury_lock:
        try:
            pending, remaining = treasury.get_emergency_drain_status()
        except TreasuryError as e:
            return error_response(e)
        request_data = treasury.drain.request.to_dict()
    return jsonify({
        "pending": pending,
        "blocks_remaining": remaining,
        "request": request_data,
    })


@treasury_bp.route("/treasury/events", methods=["GET"])
def audit_trail():
    """
    Recent events, newest first.

    Query params:
        limit: Maximum number of events (default: 50, max: 1000)
        type: Only events of this type, e.g. "ValidatorSwitched"
    """
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    limit = bounded_limit(request.args.get("limit"))
    with state.treasury_lock:
        events = treasury.get_audit_trail(limit=limit, event_type=request.args.get("type"))
    return jsonify({"count": len(events), "events": events})


# =============================================================================
# Triggers
# =============================================================================


@treasury_bp.route("/treasury/distribute", methods=["POST"])
@require_api_key
def trigger_distribution():
    """
    Run a distribution cycle.

    Returns:
        Cycle summary, or 409 if the minimum interval has not passed
    """
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    with state.treasury_lock:
        try:
            result = treasury.distribute()
        except TreasuryError as e:
            return error_response(e)
        return _persisted(result)


@treasury_bp.route("/treasury/validator/check", methods=["POST"])
@require_api_key
def trigger_validator_check():
    treasury = state.get_treasury()
    if treasury is None:
        return not_initialized()

    with state.treasury_lock:
        try:
            result = treasury.check_and_switch()
        except TreasuryError as e:
            return error_response(e)
        return _persisted(result)


def _persisted(result: dict):
    try:
        state.save_state()
    except StorageError as e:
        return jsonify({"error": f"State not saved: {e}", "result": result}), 500
    return jsonify(result)
