from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from .auth import current_operator, login_required
from .client import get_client
from .security import log_activity, sanitize_text


integration_bp = Blueprint("integration", __name__, url_prefix="/integration")


@integration_bp.route("/list")
@login_required
def integration_list():
    integrations = get_client().get_integration_list()
    return render_template(
        "integrations.html",
        restricted_access=integrations.restricted_access,
        integrations=integrations.items,
        current_integration_id=current_app.config.get("POWERAUTH_INTEGRATION_ID") or "",
    )


@integration_bp.route("/create")
@login_required
def integration_create():
    return render_template("integration_create.html")


@integration_bp.route("/create/do.submit", methods=["POST"])
@login_required
def integration_create_action():
    name = sanitize_text(request.form.get("name", ""), max_length=255)
    if not name:
        flash("Integration name must not be empty.", "error")
        return redirect(url_for("integration.integration_create"))

    integration = get_client().create_integration(name)
    log_activity(current_operator(), "integration_create", "success", f"id={integration.id} name={name}")
    flash("Integration created.", "success")
    return redirect(url_for("integration.integration_list"))


@integration_bp.route("/remove/do.submit", methods=["POST"])
@login_required
def integration_remove_action():
    integration_id = request.form.get("integrationId", "").strip()
    if not integration_id:
        flash("Integration ID is required.", "error")
        return redirect(url_for("integration.integration_list"))

    if _is_current_security_settings(integration_id):
        flash("The integration used by this console cannot be removed.", "error")
        log_activity(current_operator(), "integration_remove", "blocked", f"id={integration_id}")
        return redirect(url_for("integration.integration_list"))

    get_client().remove_integration(integration_id)
    log_activity(current_operator(), "integration_remove", "success", f"id={integration_id}")
    return redirect(url_for("integration.integration_list"))


def _is_current_security_settings(integration_id: str) -> bool:
    own_id = str(current_app.config.get("POWERAUTH_INTEGRATION_ID") or "")
    return bool(own_id) and own_id == integration_id
