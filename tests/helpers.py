from __future__ import annotations

import base64
import csv
import json
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from powerauth_admin import create_app
from powerauth_admin.client import PowerAuthClientError
from powerauth_admin.models import (
    Activation,
    ActivationHistoryItem,
    ActivationOtpValidation,
    ActivationStateChange,
    ActivationStatus,
    Application,
    InitActivationResult,
    Integration,
    IntegrationList,
    RecoveryCode,
    RecoveryCodeStatus,
)


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def signature_payload(method: str, uri_id: str, nonce: str, body: str, secret: str) -> str:
    return b64(f"{method}&{b64(uri_id)}&{nonce}&{b64(body)}&{secret}")


class FakePowerAuthClient:
    """In-memory stand-in for ``PowerAuthServiceClient`` that records calls."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.restricted_access = True
        self.integrations: List[Integration] = [
            Integration(id="int-console", name="Console", client_token="tok-1", client_secret="sec-1"),
            Integration(id="int-mobile", name="Mobile API", client_token="tok-2", client_secret="sec-2"),
        ]
        self.applications: List[Application] = [
            Application(application_id=1, application_name="Mobile Banking"),
            Application(application_id=2, application_name="Token App"),
        ]
        self.activations: Dict[str, Activation] = {}
        self.audit_items: List[dict] = []
        self.history: Dict[str, List[ActivationHistoryItem]] = {}
        self.recovery_codes: List[RecoveryCode] = []
        self.commit_error: Optional[PowerAuthClientError] = None
        self.status_error: Optional[PowerAuthClientError] = None
        self._next_activation = 1

    def add_activation(self, activation_id: str, user_id: str = "alice", **fields) -> Activation:
        activation = Activation(
            activation_id=activation_id,
            user_id=user_id,
            application_id=fields.pop("application_id", 1),
            activation_name=fields.pop("activation_name", f"Device {activation_id}"),
            activation_status=fields.pop("activation_status", ActivationStatus.ACTIVE),
            timestamp_created=fields.pop("timestamp_created", datetime(2026, 9, 1, 10, 0, 0)),
            **fields,
        )
        self.activations[activation_id] = activation
        return activation

    def get_integration_list(self) -> IntegrationList:
        self.calls.append(("get_integration_list",))
        return IntegrationList(restricted_access=self.restricted_access, items=list(self.integrations))

    def create_integration(self, name: str) -> Integration:
        self.calls.append(("create_integration", name))
        integration = Integration(id=f"int-{len(self.integrations) + 1}", name=name)
        self.integrations.append(integration)
        return integration

    def remove_integration(self, integration_id: str) -> bool:
        self.calls.append(("remove_integration", integration_id))
        before = len(self.integrations)
        self.integrations = [item for item in self.integrations if item.id != integration_id]
        return len(self.integrations) != before

    def get_application_list(self) -> List[Application]:
        self.calls.append(("get_application_list",))
        return list(self.applications)

    def get_application_detail(self, application_id: int) -> Application:
        self.calls.append(("get_application_detail", application_id))
        return next(app for app in self.applications if app.application_id == application_id)

    def get_activation_list_for_user(self, user_id: str) -> List[Activation]:
        self.calls.append(("get_activation_list_for_user", user_id))
        return [a for a in self.activations.values() if a.user_id == user_id]

    def get_activation_status(self, activation_id: str) -> Activation:
        self.calls.append(("get_activation_status", activation_id))
        if self.status_error is not None:
            raise self.status_error
        return self.activations[activation_id]

    def init_activation(self, user_id, application_id, otp_validation=None, activation_otp=None):
        self.calls.append(("init_activation", user_id, application_id, otp_validation, activation_otp))
        activation_id = f"act-new-{self._next_activation}"
        self._next_activation += 1
        self.add_activation(
            activation_id,
            user_id=user_id,
            application_id=application_id,
            activation_status=ActivationStatus.CREATED,
            activation_code="ABCDE-FGHIJ-KLMNO-PQRST",
            activation_signature="c2lnbmF0dXJl",
            activation_otp_validation=otp_validation or ActivationOtpValidation.NONE,
        )
        return InitActivationResult(
            activation_id=activation_id,
            activation_code="ABCDE-FGHIJ-KLMNO-PQRST",
            activation_signature="c2lnbmF0dXJl",
            user_id=user_id,
            application_id=application_id,
        )

    def commit_activation(self, activation_id, external_user_id, activation_otp=None):
        self.calls.append(("commit_activation", activation_id, external_user_id, activation_otp))
        if self.commit_error is not None:
            raise self.commit_error
        return self._change(activation_id, ActivationStatus.ACTIVE)

    def block_activation(self, activation_id, reason, external_user_id):
        self.calls.append(("block_activation", activation_id, reason, external_user_id))
        return self._change(activation_id, ActivationStatus.BLOCKED)

    def unblock_activation(self, activation_id, external_user_id):
        self.calls.append(("unblock_activation", activation_id, external_user_id))
        return self._change(activation_id, ActivationStatus.ACTIVE)

    def remove_activation(self, activation_id, external_user_id, revoke_recovery_codes=False):
        self.calls.append(("remove_activation", activation_id, external_user_id))
        return self._change(activation_id, ActivationStatus.REMOVED)

    def get_activation_history(self, activation_id, timestamp_from, timestamp_to):
        self.calls.append(("get_activation_history", activation_id, timestamp_from, timestamp_to))
        return list(self.history.get(activation_id, []))

    def get_signature_audit_log(self, user_id, application_id, timestamp_from, timestamp_to):
        self.calls.append(("get_signature_audit_log", user_id, application_id, timestamp_from, timestamp_to))
        return [dict(item) for item in self.audit_items if item.get("userId") == user_id]

    def lookup_recovery_codes(
        self,
        user_id,
        activation_id=None,
        application_id=None,
        recovery_code_status=None,
        recovery_puk_status=None,
    ):
        self.calls.append(("lookup_recovery_codes", user_id, activation_id, application_id))
        codes = [code for code in self.recovery_codes if code.user_id == user_id]
        if activation_id is not None:
            codes = [code for code in codes if code.activation_id == activation_id]
        return codes

    def revoke_recovery_codes(self, recovery_code_ids) -> bool:
        ids = list(recovery_code_ids)
        self.calls.append(("revoke_recovery_codes", ids))
        for code in self.recovery_codes:
            if code.recovery_code_id in ids:
                code.status = RecoveryCodeStatus.REVOKED
        return True

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def _change(self, activation_id: str, status: ActivationStatus) -> ActivationStateChange:
        activation = self.activations.get(activation_id)
        if activation is not None:
            activation.activation_status = status
        return ActivationStateChange(activation_id=activation_id, activation_status=status)


class BaseConsoleTest(unittest.TestCase):
    auth_enabled = True

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        data_dir = Path(self.temp_dir.name) / "data"
        self.powerauth = FakePowerAuthClient()

        self.app = create_app(
            {
                "TESTING": True,
                "SECRET_KEY": "test-secret-key",
                "DATA_DIR": data_dir,
                "USERS_CSV": data_dir / "users.csv",
                "ACTIVITY_CSV": data_dir / "activity_log.csv",
                "SIEM_LOG": data_dir / "siem.log",
                "ERROR_LOG": data_dir / "error.log",
                "AUTH_ENABLED": self.auth_enabled,
                "ENABLE_DEMO_USERS": True,
                "ADMIN_USERNAME": "admin",
                "ADMIN_PASSWORD": "Admin@12345",
                "POWERAUTH_INTEGRATION_ID": "int-console",
                "POWERAUTH_CLIENT": self.powerauth,
            }
        )
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _csrf(self, path: str = "/login") -> str:
        self.client.get(path, follow_redirects=True)
        with self.client.session_transaction() as sess:
            return str(sess.get("_csrf_token", ""))

    def _login(self, username: str = "admin", password: str = "Admin@12345", follow_redirects: bool = True):
        csrf = self._csrf("/login")
        return self.client.post(
            "/login",
            data={"csrf_token": csrf, "username": username, "password": password},
            follow_redirects=follow_redirects,
        )

    def _post(self, path: str, data: dict, follow_redirects: bool = False):
        with self.client.session_transaction() as sess:
            csrf = sess.get("_csrf_token")
            if not csrf:
                csrf = "test-csrf-token"
                sess["_csrf_token"] = csrf
        payload = {"csrf_token": csrf}
        payload.update(data)
        return self.client.post(path, data=payload, follow_redirects=follow_redirects)


def recent(days: int = 0, hours: int = 0) -> datetime:
    return datetime.now().replace(microsecond=0) - timedelta(days=days, hours=hours)


def activity_rows(app) -> List[dict]:
    """Activity log rows, newest first."""
    with Path(app.config["ACTIVITY_CSV"]).open("r", newline="", encoding="utf-8") as csvfile:
        return list(reversed(list(csv.DictReader(csvfile))))


def logged_events(app, event_type: Optional[str] = None, log_key: str = "SIEM_LOG") -> List[dict]:
    """Events from the JSON-lines log, newest first."""
    lines = Path(app.config[log_key]).read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines if line.strip()]
    if event_type is not None:
        events = [event for event in events if event.get("event_type") == event_type]
    return list(reversed(events))
