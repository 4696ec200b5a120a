from __future__ import annotations

from typing import Optional

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from .auth import current_operator, login_required
from .client import PowerAuthClientError, get_client
from .converters import SignatureAuditItemConverter
from .models import ActivationOtpValidation, ActivationStatus
from .security import log_activity, sanitize_text
from .util import encode_qr, is_blank, resolve_date_range, sort_by_last_used, trim


activation_bp = Blueprint("activation", __name__, url_prefix="/activation")

signature_audit_item_converter = SignatureAuditItemConverter()

QR_SIZE = 400


@activation_bp.route("/list")
@login_required
def activation_list():
    user_id = request.args.get("userId")
    show_all_activations = _optional_bool(request.args.get("showAllActivations"))
    show_all_recovery_codes = _optional_bool(request.args.get("showAllRecoveryCodes"))

    context = {
        "user_id": user_id,
        "show_all_activations": show_all_activations,
        "show_all_recovery_codes": show_all_recovery_codes,
        "activations": [],
        "applications": [],
        "recovery_codes": [],
    }
    if user_id is not None:
        client = get_client()
        context["activations"] = sort_by_last_used(client.get_activation_list_for_user(user_id))
        context["applications"] = client.get_application_list()
        context["recovery_codes"] = client.lookup_recovery_codes(user_id)
    return render_template("activations.html", **context)


@activation_bp.route("/detail/<activation_id>")
@login_required
def activation_detail(activation_id: str):
    date_range = resolve_date_range(request.args.get("fromDate"), request.args.get("toDate"))
    client = get_client()

    activation = client.get_activation_status(activation_id)
    application = client.get_application_detail(activation.application_id)

    recovery_codes = client.lookup_recovery_codes(
        activation.user_id,
        activation.activation_id,
        activation.application_id,
    )

    audit_items = client.get_signature_audit_log(
        activation.user_id,
        application.application_id,
        date_range.start,
        date_range.end,
    )
    signatures = [
        signature_audit_item_converter.from_signature_audit_response_item(item)
        for item in audit_items
        if item.get("activationId") == activation.activation_id
    ]

    history = client.get_activation_history(activation.activation_id, date_range.start, date_range.end)

    context = {
        "from_date": date_range.from_date,
        "to_date": date_range.to_date,
        "activation_id": activation.activation_id,
        "activation_name": activation.activation_name,
        "status": activation.activation_status,
        "blocked_reason": activation.blocked_reason,
        "timestamp_created": activation.timestamp_created,
        "timestamp_last_used": activation.timestamp_last_used,
        "activation_fingerprint": activation.device_public_key_fingerprint,
        "user_id": activation.user_id,
        "version": activation.version,
        "platform": activation.platform,
        "device_info": activation.device_info,
        "show_otp_input": (
            activation.activation_status == ActivationStatus.PENDING_COMMIT
            and activation.activation_otp_validation == ActivationOtpValidation.ON_COMMIT
        ),
        "application_id": application.application_id,
        "application_name": application.application_name,
        "recovery_codes": recovery_codes,
        "signatures": trim(signatures),
        "history": trim(history),
    }

    if activation.activation_status == ActivationStatus.CREATED:
        context["activation_code"] = activation.activation_code
        context["activation_signature"] = activation.activation_signature
        context["activation_qr"] = encode_qr(
            f"{activation.activation_code}#{activation.activation_signature}",
            QR_SIZE,
        )

    return render_template("activation_detail.html", **context)


@activation_bp.route("/create", methods=["GET", "POST"])
@login_required
def activation_create():
    application_id_raw = _required_value("applicationId")
    user_id = _required_value("userId")
    otp_validation = request.values.get("activationOtpValidation", "")
    activation_otp = request.values.get("activationOtp", "")
    try:
        application_id = int(application_id_raw)
    except ValueError:
        abort(400)

    if otp_validation != ActivationOtpValidation.NONE.value and not activation_otp:
        flash("Please specify the OTP validation code.", "error")
        return redirect(url_for("activation.activation_list", userId=user_id))

    client = get_client()
    if otp_validation == ActivationOtpValidation.NONE.value:
        response = client.init_activation(user_id, application_id)
    elif otp_validation in {ActivationOtpValidation.ON_KEY_EXCHANGE.value, ActivationOtpValidation.ON_COMMIT.value}:
        response = client.init_activation(
            user_id,
            application_id,
            ActivationOtpValidation(otp_validation),
            activation_otp,
        )
    else:
        flash("Invalid OTP validation mode.", "error")
        return redirect(url_for("activation.activation_list", userId=user_id))

    log_activity(
        current_operator(),
        "activation_create",
        "success",
        f"activation={response.activation_id} user={user_id} application={application_id} otp={otp_validation}",
    )
    return redirect(url_for("activation.activation_detail", activation_id=response.activation_id))


@activation_bp.route("/create/do.submit", methods=["POST"])
@login_required
def activation_create_commit_action():
    activation_id = _required_value("activationId")
    username = current_operator()
    response = get_client().commit_activation(activation_id, username)
    log_activity(username, "activation_commit", "success", f"activation={activation_id}")
    return redirect(url_for("activation.activation_detail", activation_id=response.activation_id or activation_id))


@activation_bp.route("/block/do.submit", methods=["POST"])
@login_required
def block_activation():
    activation_id = _required_value("activationId")
    user_id = request.form.get("redirectUserId")
    reason = sanitize_text(request.form.get("blockReason", ""), max_length=255) or None
    username = current_operator()
    response = get_client().block_activation(activation_id, reason, username)
    log_activity(username, "activation_block", "success", f"activation={activation_id} reason={reason or ''}")
    return _redirect_after_change(user_id, response.activation_id or activation_id)


@activation_bp.route("/unblock/do.submit", methods=["POST"])
@login_required
def unblock_activation():
    activation_id = _required_value("activationId")
    user_id = request.form.get("redirectUserId")
    username = current_operator()
    response = get_client().unblock_activation(activation_id, username)
    log_activity(username, "activation_unblock", "success", f"activation={activation_id}")
    return _redirect_after_change(user_id, response.activation_id or activation_id)


@activation_bp.route("/commit/do.submit", methods=["POST"])
@login_required
def commit_activation():
    activation_id = _required_value("activationId")
    user_id = request.form.get("redirectUserId")
    activation_otp = request.form.get("activationOtp")
    username = current_operator()
    try:
        response = get_client().commit_activation(activation_id, username, activation_otp)
    except PowerAuthClientError as exc:
        log_activity(username, "activation_commit", "failed", f"activation={activation_id} code={exc.code}")
        flash("Activation commit failed.", "error")
        return redirect(url_for("activation.activation_detail", activation_id=activation_id))

    log_activity(username, "activation_commit", "success", f"activation={activation_id}")
    return _redirect_after_change(user_id, response.activation_id or activation_id)


@activation_bp.route("/remove/do.submit", methods=["POST"])
@login_required
def remove_activation():
    activation_id = _required_value("activationId")
    user_id = request.form.get("redirectUserId")
    username = current_operator()
    response = get_client().remove_activation(activation_id, username)
    log_activity(username, "activation_remove", "success", f"activation={activation_id}")
    return _redirect_after_change(user_id, response.activation_id or activation_id, anchor="versions")


@activation_bp.route("/recovery/revoke/do.submit", methods=["POST"])
@login_required
def revoke_recovery_code():
    try:
        recovery_code_id = int(_required_value("recoveryCodeId"))
    except ValueError:
        abort(400)
    activation_id = request.form.get("activationId")
    user_id = request.form.get("userId")

    get_client().revoke_recovery_codes([recovery_code_id])
    log_activity(current_operator(), "recovery_code_revoke", "success", f"recovery_code={recovery_code_id}")
    if activation_id is not None:
        return redirect(url_for("activation.activation_detail", activation_id=activation_id, _anchor="recovery"))
    return redirect(url_for("activation.activation_list", userId=user_id))


def _redirect_after_change(user_id: Optional[str], activation_id: str, anchor: Optional[str] = None):
    if not is_blank(user_id):
        return redirect(url_for("activation.activation_list", userId=user_id))
    return redirect(url_for("activation.activation_detail", activation_id=activation_id, _anchor=anchor))


def _required_value(name: str) -> str:
    value = request.values.get(name)
    if value is None or not value.strip():
        abort(400)
    return value.strip()


def _optional_bool(raw: Optional[str]) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}
