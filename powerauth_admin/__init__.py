from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path

import click
from flask import Flask, jsonify, redirect, render_template, url_for

from .activation import activation_bp
from .auth import auth_bp, create_user, init_auth_storage, set_user_status
from .client import PowerAuthClientError, build_client
from .integration import integration_bp
from .monitoring import emit_event, init_monitoring_storage, uptime_seconds
from .security import initialize_security_state, setup_request_guards
from .util import enum_label, format_timestamp


__version__ = "1.0.0"


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, template_folder="templates", static_folder="static")

    data_dir = Path(os.getenv("DATA_DIR", Path(app.instance_path) / "data"))

    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", secrets.token_hex(32)),
        SESSION_TIMEOUT_MINUTES=int(os.getenv("SESSION_TIMEOUT_MINUTES", "20")),
        DATA_DIR=data_dir,
        USERS_CSV=data_dir / "users.csv",
        ACTIVITY_CSV=data_dir / "activity_log.csv",
        SIEM_LOG=data_dir / "siem.log",
        ERROR_LOG=data_dir / "error.log",
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        AUTH_ENABLED=_as_bool(os.getenv("AUTH_ENABLED", "1")),
        ENABLE_DEMO_USERS=_as_bool(os.getenv("ENABLE_DEMO_USERS", "1")),
        ADMIN_USERNAME=os.getenv("ADMIN_USERNAME", "admin"),
        ADMIN_PASSWORD=os.getenv("ADMIN_PASSWORD", "Admin@12345"),
        LOGIN_MAX_ATTEMPTS=int(os.getenv("LOGIN_MAX_ATTEMPTS", "5")),
        LOGIN_WINDOW_SECONDS=int(os.getenv("LOGIN_WINDOW_SECONDS", "600")),
        LOGIN_LOCK_SECONDS=int(os.getenv("LOGIN_LOCK_SECONDS", "900")),
        POWERAUTH_REST_URL=os.getenv("POWERAUTH_REST_URL", "http://localhost:8080/powerauth-java-server/rest"),
        POWERAUTH_REST_CLIENT_TOKEN=os.getenv("POWERAUTH_REST_CLIENT_TOKEN", ""),
        POWERAUTH_REST_CLIENT_SECRET=os.getenv("POWERAUTH_REST_CLIENT_SECRET", ""),
        POWERAUTH_REST_TIMEOUT_SECONDS=float(os.getenv("POWERAUTH_REST_TIMEOUT_SECONDS", "10")),
        POWERAUTH_INTEGRATION_ID=os.getenv("POWERAUTH_INTEGRATION_ID", ""),
        APP_STARTED_AT=time.time(),
    )

    if test_config:
        app.config.update(test_config)

    for key in ["DATA_DIR", "USERS_CSV", "ACTIVITY_CSV", "SIEM_LOG", "ERROR_LOG"]:
        value = app.config.get(key)
        if value is None:
            continue
        app.config[key] = Path(value)
        if key.endswith("_DIR"):
            Path(app.config[key]).mkdir(parents=True, exist_ok=True)
        else:
            Path(app.config[key]).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=str(app.config["LOG_LEVEL"]).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if app.config.get("POWERAUTH_CLIENT") is None:
        app.config["POWERAUTH_CLIENT"] = build_client(app.config)

    init_monitoring_storage(app)
    initialize_security_state(app)
    init_auth_storage(app)
    setup_request_guards(app)
    app.add_template_filter(enum_label, "label")
    app.add_template_filter(format_timestamp, "timestamp")

    app.register_blueprint(auth_bp)
    app.register_blueprint(integration_bp)
    app.register_blueprint(activation_bp)

    @app.route("/")
    def index():
        return redirect(url_for("activation.activation_list"))

    @app.route("/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "version": __version__,
                "time": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": uptime_seconds(),
            }
        )

    @app.errorhandler(PowerAuthClientError)
    def handle_powerauth_error(err: PowerAuthClientError):
        emit_event(
            "rpc_error",
            severity="error",
            message="PowerAuth server call failed",
            code=err.code,
            error=err.message,
        )
        return (
            render_template(
                "error.html",
                title="PowerAuth Server Error",
                message=f"The PowerAuth server rejected the request: {err.message}",
                code=502,
            ),
            502,
        )

    @app.errorhandler(400)
    def handle_bad_request(_err):
        return render_template(
            "error.html",
            title="Bad Request",
            message="Required request parameters are missing or invalid.",
            code=400,
        ), 400

    @app.errorhandler(404)
    def handle_not_found(_err):
        return render_template(
            "error.html",
            title="Not Found",
            message="The requested resource could not be found.",
            code=404,
        ), 404

    @app.errorhandler(500)
    def handle_server_error(_err):
        emit_event(
            "server_error",
            severity="critical",
            message="Unhandled server exception",
            error=str(_err),
        )
        return (
            render_template(
                "error.html",
                title="Server Error",
                message="Unexpected server failure. The incident has been logged.",
                code=500,
            ),
            500,
        )

    @app.cli.command("create-operator")
    @click.argument("username")
    @click.password_option()
    def create_operator_command(username: str, password: str):
        """Add a console operator account."""
        ok, message = create_user(username, password)
        click.echo(message)
        if not ok:
            raise SystemExit(1)

    @app.cli.command("set-operator-status")
    @click.argument("username")
    @click.argument("status", type=click.Choice(["active", "locked"]))
    def set_operator_status_command(username: str, status: str):
        """Lock or unlock a console operator account."""
        if not set_user_status(username, status):
            click.echo("Operator not found.")
            raise SystemExit(1)
        click.echo(f"Operator {username} is now {status}.")

    return app


def _as_bool(raw: str) -> bool:
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}
