from __future__ import annotations

import csv
import secrets
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Tuple

import bcrypt
from flask import abort, current_app, flash, g, has_request_context, redirect, request, session, url_for

from .monitoring import emit_event


ACTIVITY_FIELDS = ["timestamp", "username", "action", "status", "details", "ip_address"]

_activity_lock = threading.Lock()


class LoginAttemptLimiter:
    def __init__(self, max_attempts: int = 5, window_seconds: int = 600, lock_seconds: int = 900):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self._state: Dict[str, Dict[str, float | List[float]]] = {}
        self._lock = threading.Lock()

    def is_blocked(self, key: str) -> Tuple[bool, int]:
        with self._lock:
            state = self._state.get(key, {})
            locked_until = float(state.get("locked_until", 0))
            now = time.time()
            if locked_until > now:
                return True, int(locked_until - now)
            return False, 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = time.time()
            state = self._state.setdefault(key, {"attempts": [], "locked_until": 0})
            attempts = [ts for ts in state["attempts"] if now - ts <= self.window_seconds]
            attempts.append(now)
            state["attempts"] = attempts
            if len(attempts) >= self.max_attempts:
                state["locked_until"] = now + self.lock_seconds
                state["attempts"] = []

    def record_success(self, key: str) -> None:
        with self._lock:
            self._state.pop(key, None)


def initialize_security_state(app) -> None:
    activity_csv = Path(app.config["ACTIVITY_CSV"])
    if not activity_csv.exists():
        with activity_csv.open("w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=ACTIVITY_FIELDS)
            writer.writeheader()

    app.config["LOGIN_LIMITER"] = LoginAttemptLimiter(
        max_attempts=int(app.config.get("LOGIN_MAX_ATTEMPTS", 5)),
        window_seconds=int(app.config.get("LOGIN_WINDOW_SECONDS", 600)),
        lock_seconds=int(app.config.get("LOGIN_LOCK_SECONDS", 900)),
    )


def setup_request_guards(app) -> None:
    @app.before_request
    def enforce_security_guards():
        g.request_started_at = time.time()
        g.request_id = secrets.token_hex(8)
        _enforce_session_timeout()
        result = _validate_csrf_token()
        if result is not None:
            return result

    @app.after_request
    def capture_request_telemetry(response):
        started_at = float(getattr(g, "request_started_at", time.time()))
        duration_ms = max(0, int((time.time() - started_at) * 1000))
        if request.endpoint != "static":
            emit_event(
                "http_request",
                severity="info" if response.status_code < 500 else "error",
                message=f"{request.method} {request.path}",
                request_id=getattr(g, "request_id", ""),
                method=request.method,
                path=request.path,
                endpoint=request.endpoint or "",
                status_code=response.status_code,
                duration_ms=duration_ms,
                username=session.get("username", "anonymous"),
                ip_address=request.headers.get("X-Forwarded-For", request.remote_addr or "unknown"),
            )
        response.headers["X-Request-ID"] = str(getattr(g, "request_id", ""))
        # Console pages show live server state.
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0, private"
        response.headers["Pragma"] = "no-cache"
        return response

    @app.context_processor
    def inject_security_helpers():
        return {
            "csrf_token": generate_csrf_token,
            "current_username": session.get("username", ""),
            "auth_enabled": bool(current_app.config.get("AUTH_ENABLED", True)),
        }


def _enforce_session_timeout() -> None:
    if "username" not in session:
        return

    timeout_minutes = int(current_app.config["SESSION_TIMEOUT_MINUTES"])
    now_epoch = int(time.time())
    try:
        last_seen = int(session.get("last_seen", now_epoch))
    except (TypeError, ValueError):
        last_seen = now_epoch
    if now_epoch - last_seen > timeout_minutes * 60:
        session.clear()
        return
    session["last_seen"] = now_epoch


def _validate_csrf_token():
    if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return

    if request.endpoint in {"static"}:
        return

    token_in_session = session.get("_csrf_token")
    token_supplied = request.form.get("csrf_token") or request.headers.get("X-CSRF-Token")
    if not token_in_session or token_supplied != token_in_session:
        if request.is_json:
            abort(400)

        # Browser form submissions get a fresh token and go back to the form.
        session["_csrf_token"] = secrets.token_urlsafe(32)
        flash("Security token expired. Please submit the form again.", "error")

        fallback = request.referrer
        if not fallback:
            if "username" in session or not current_app.config.get("AUTH_ENABLED", True):
                fallback = url_for("activation.activation_list")
            else:
                fallback = url_for("auth.login")
        return redirect(fallback)


def generate_csrf_token() -> str:
    token = session.get("_csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["_csrf_token"] = token
    return token


def hash_password(plain_password: str) -> str:
    return bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def log_activity(username: str | None, action: str, status: str, details: str = "") -> None:
    ip_address = "system"
    request_id = ""
    if has_request_context():
        ip_address = request.headers.get("X-Forwarded-For", request.remote_addr or "unknown")
        request_id = str(getattr(g, "request_id", ""))

    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "username": username or "anonymous",
        "action": action,
        "status": status,
        "details": details,
        "ip_address": ip_address,
    }
    activity_csv = Path(current_app.config["ACTIVITY_CSV"])

    with _activity_lock:
        with activity_csv.open("a", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=ACTIVITY_FIELDS)
            writer.writerow(row)

    emit_event(
        "activity",
        severity="warning" if status in {"failed", "blocked"} else "info",
        message=f"{action}:{status}",
        username=row["username"],
        action=action,
        status=status,
        details=details[:220],
        ip_address=ip_address,
        request_id=request_id,
    )


def sanitize_text(value: str, max_length: int = 200) -> str:
    cleaned = value.replace("\n", " ").replace("\r", " ").strip()
    return cleaned[:max_length]
