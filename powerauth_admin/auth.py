from __future__ import annotations

import csv
import secrets
import threading
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Dict, List, Optional

from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for

from .security import hash_password, log_activity, sanitize_text, verify_password


auth_bp = Blueprint("auth", __name__)
_users_lock = threading.Lock()
USER_FIELDS = [
    "user_id",
    "username",
    "password_hash",
    "last_login",
    "account_status",
]


def init_auth_storage(app) -> None:
    users_csv = Path(app.config["USERS_CSV"])
    if not users_csv.exists():
        with users_csv.open("w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=USER_FIELDS)
            writer.writeheader()

    users = [_normalize_user_row(row) for row in _read_users(users_csv)]
    admin_username = str(app.config.get("ADMIN_USERNAME", "admin"))
    if app.config.get("ENABLE_DEMO_USERS", True) and not any(u["username"] == admin_username for u in users):
        users.append(
            {
                "user_id": "admin001",
                "username": admin_username,
                "password_hash": hash_password(str(app.config.get("ADMIN_PASSWORD", "Admin@12345"))),
                "last_login": "",
                "account_status": "active",
            }
        )
    _write_users(users_csv, users)


def login_required(view):
    @wraps(view)
    def wrapped_view(*args, **kwargs):
        if not current_app.config.get("AUTH_ENABLED", True):
            return view(*args, **kwargs)
        if "username" not in session:
            return redirect(url_for("auth.login", next=request.full_path.rstrip("?")))
        user = get_user_by_username(str(session["username"]))
        if user is None or user["account_status"] != "active":
            username = session.get("username")
            session.clear()
            log_activity(username, "session", "blocked", "Operator account is no longer active")
            flash("Account is not active. Contact administrator.", "error")
            return redirect(url_for("auth.login"))
        return view(*args, **kwargs)

    return wrapped_view


def current_operator() -> Optional[str]:
    """Name of the signed-in operator, or ``None`` for the anonymous principal."""
    username = session.get("username")
    if not username or username == "anonymous":
        return None
    return str(username)


def get_all_users() -> List[Dict[str, str]]:
    return [_normalize_user_row(row) for row in _read_users(Path(current_app.config["USERS_CSV"]))]


def get_user_by_username(username: str) -> Optional[Dict[str, str]]:
    lookup = username.lower().strip()
    if not lookup:
        return None
    return next((u for u in get_all_users() if u["username"].lower() == lookup), None)


def create_user(username: str, password: str) -> tuple[bool, str]:
    username = sanitize_text(username, max_length=40)
    if not username:
        return False, "Username is required."
    users = get_all_users()
    if any(u["username"].lower() == username.lower() for u in users):
        return False, "Username already exists."
    users.append(
        {
            "user_id": f"u{secrets.token_hex(4)}",
            "username": username,
            "password_hash": hash_password(password),
            "last_login": "",
            "account_status": "active",
        }
    )
    _write_users(Path(current_app.config["USERS_CSV"]), users)
    return True, "Account created."


def set_user_status(username: str, account_status: str) -> bool:
    users = get_all_users()
    changed = False
    for user in users:
        if user["username"] == username:
            user["account_status"] = account_status
            changed = True
            break
    if changed:
        _write_users(Path(current_app.config["USERS_CSV"]), users)
    return changed


def update_user_last_login(username: str) -> None:
    users = get_all_users()
    for user in users:
        if user["username"] == username:
            user["last_login"] = datetime.now(timezone.utc).isoformat()
            break
    _write_users(Path(current_app.config["USERS_CSV"]), users)


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if not current_app.config.get("AUTH_ENABLED", True):
        return redirect(url_for("activation.activation_list"))

    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        ip_address = request.headers.get("X-Forwarded-For", request.remote_addr or "unknown")
        limiter = current_app.config["LOGIN_LIMITER"]
        limit_key = f"{ip_address}:{username.lower()}"

        blocked, wait_seconds = limiter.is_blocked(limit_key)
        if blocked:
            flash(f"Too many failed attempts. Try again in {wait_seconds} seconds.", "error")
            log_activity(username, "login", "blocked", f"User {username} blocked")
            return redirect(url_for("auth.login"))

        user = get_user_by_username(username)
        if not user or not verify_password(password, user["password_hash"]):
            limiter.record_failure(limit_key)
            flash("Invalid username or password.", "error")
            log_activity(None, "login", "failed", f"Bad credentials for {username}")
            return redirect(url_for("auth.login"))

        if user["account_status"] != "active":
            flash("Account is not active. Contact administrator.", "error")
            log_activity(user["username"], "login", "failed", "Inactive account")
            return redirect(url_for("auth.login"))

        limiter.record_success(limit_key)
        _start_authenticated_session(user)
        flash("Login successful.", "success")
        return redirect(_safe_next_url(request.args.get("next", "")))

    return render_template("login.html")


@auth_bp.route("/logout")
def logout():
    username = session.get("username")
    session.clear()
    if username:
        log_activity(username, "logout", "success", "Session closed")
    return redirect(url_for("auth.login"))


def _read_users(path: Path) -> List[Dict[str, str]]:
    with _users_lock:
        if not path.exists():
            return []
        with path.open("r", newline="", encoding="utf-8") as csvfile:
            return list(csv.DictReader(csvfile))


def _write_users(path: Path, users: List[Dict[str, str]]) -> None:
    cleaned = [_normalize_user_row(user) for user in users]
    with _users_lock:
        with path.open("w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=USER_FIELDS)
            writer.writeheader()
            writer.writerows(cleaned)


def _normalize_user_row(row: Dict[str, str]) -> Dict[str, str]:
    defaults = {
        "user_id": "",
        "username": "",
        "password_hash": "",
        "last_login": "",
        "account_status": "active",
    }
    normalized = {key: str(row.get(key) or defaults[key]) for key in USER_FIELDS}
    normalized["account_status"] = "locked" if normalized["account_status"] == "locked" else "active"
    return normalized


def _start_authenticated_session(user: Dict[str, str]) -> None:
    session.clear()
    session["user_id"] = user["user_id"]
    session["username"] = user["username"]
    session["last_seen"] = int(datetime.now(timezone.utc).timestamp())
    update_user_last_login(user["username"])
    log_activity(user["username"], "login", "success", "Operator authenticated")


def _safe_next_url(candidate: str) -> str:
    # Only local paths, never protocol-relative or absolute URLs.
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return url_for("activation.activation_list")
