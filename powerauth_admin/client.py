from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import requests
from flask import current_app

from .models import (
    Activation,
    ActivationHistoryItem,
    ActivationOtpValidation,
    ActivationStateChange,
    Application,
    InitActivationResult,
    Integration,
    IntegrationList,
    RecoveryCode,
    RecoveryCodeStatus,
    RecoveryPukStatus,
)


logger = logging.getLogger(__name__)


class PowerAuthClientError(Exception):
    """Fault reported by, or on the way to, the PowerAuth server."""

    def __init__(self, code: str, message: str, status_code: int | None = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


class PowerAuthServiceClient:
    """RPC client for the PowerAuth server REST interface.

    Every call is a ``POST`` to ``<base_url>/v3/<path>`` wrapping its
    parameters in ``{"requestObject": ...}``. The server answers with
    ``{"status": "OK", "responseObject": ...}`` or an ``ERROR`` envelope.
    """

    def __init__(
        self,
        base_url: str,
        client_token: str | None = None,
        client_secret: str | None = None,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
        if client_token:
            self.session.auth = (client_token, client_secret or "")

    # Integrations

    def get_integration_list(self) -> IntegrationList:
        response = self._call("integration/list", {})
        return IntegrationList(
            restricted_access=bool(response.get("restrictedAccess", False)),
            items=[Integration.from_dict(item) for item in response.get("items") or []],
        )

    def create_integration(self, name: str) -> Integration:
        return Integration.from_dict(self._call("integration/create", {"name": name}))

    def remove_integration(self, integration_id: str) -> bool:
        response = self._call("integration/remove", {"id": integration_id})
        return bool(response.get("removed", False))

    # Applications

    def get_application_list(self) -> List[Application]:
        response = self._call("application/list", {})
        return [Application.from_dict(item) for item in response.get("applications") or []]

    def get_application_detail(self, application_id: int) -> Application:
        return Application.from_dict(self._call("application/detail", {"applicationId": application_id}))

    # Activations

    def get_activation_list_for_user(self, user_id: str) -> List[Activation]:
        response = self._call("activation/list", {"userId": user_id})
        return [Activation.from_dict(item) for item in response.get("activations") or []]

    def get_activation_status(self, activation_id: str) -> Activation:
        return Activation.from_dict(self._call("activation/status", {"activationId": activation_id}))

    def init_activation(
        self,
        user_id: str,
        application_id: int,
        otp_validation: ActivationOtpValidation | None = None,
        activation_otp: str | None = None,
    ) -> InitActivationResult:
        payload: Dict[str, Any] = {"userId": user_id, "applicationId": application_id}
        if otp_validation is not None:
            payload["activationOtpValidation"] = otp_validation.value
            payload["activationOtp"] = activation_otp
        return InitActivationResult.from_dict(self._call("activation/init", payload))

    def commit_activation(
        self,
        activation_id: str,
        external_user_id: str | None,
        activation_otp: str | None = None,
    ) -> ActivationStateChange:
        payload: Dict[str, Any] = {"activationId": activation_id, "externalUserId": external_user_id}
        if activation_otp is not None:
            payload["activationOtp"] = activation_otp
        return ActivationStateChange.from_dict(self._call("activation/commit", payload))

    def block_activation(
        self,
        activation_id: str,
        reason: str | None,
        external_user_id: str | None,
    ) -> ActivationStateChange:
        payload = {"activationId": activation_id, "reason": reason, "externalUserId": external_user_id}
        return ActivationStateChange.from_dict(self._call("activation/block", payload))

    def unblock_activation(self, activation_id: str, external_user_id: str | None) -> ActivationStateChange:
        payload = {"activationId": activation_id, "externalUserId": external_user_id}
        return ActivationStateChange.from_dict(self._call("activation/unblock", payload))

    def remove_activation(
        self,
        activation_id: str,
        external_user_id: str | None,
        revoke_recovery_codes: bool = False,
    ) -> ActivationStateChange:
        payload = {
            "activationId": activation_id,
            "externalUserId": external_user_id,
            "revokeRecoveryCodes": revoke_recovery_codes,
        }
        return ActivationStateChange.from_dict(self._call("activation/remove", payload))

    def get_activation_history(
        self,
        activation_id: str,
        timestamp_from: datetime,
        timestamp_to: datetime,
    ) -> List[ActivationHistoryItem]:
        payload = {
            "activationId": activation_id,
            "timestampFrom": _format_timestamp(timestamp_from),
            "timestampTo": _format_timestamp(timestamp_to),
        }
        response = self._call("activation/history", payload)
        return [ActivationHistoryItem.from_dict(item) for item in response.get("items") or []]

    # Signature audit

    def get_signature_audit_log(
        self,
        user_id: str,
        application_id: int | None,
        timestamp_from: datetime,
        timestamp_to: datetime,
    ) -> List[Dict[str, Any]]:
        """Raw audit records; see ``SignatureAuditItemConverter``."""
        payload = {
            "userId": user_id,
            "applicationId": application_id,
            "timestampFrom": _format_timestamp(timestamp_from),
            "timestampTo": _format_timestamp(timestamp_to),
        }
        response = self._call("signature/list", payload)
        return list(response.get("items") or [])

    # Recovery codes

    def lookup_recovery_codes(
        self,
        user_id: str | None,
        activation_id: str | None = None,
        application_id: int | None = None,
        recovery_code_status: RecoveryCodeStatus | None = None,
        recovery_puk_status: RecoveryPukStatus | None = None,
    ) -> List[RecoveryCode]:
        payload = {
            "userId": user_id,
            "activationId": activation_id,
            "applicationId": application_id,
            "recoveryCodeStatus": recovery_code_status.value if recovery_code_status else None,
            "recoveryPukStatus": recovery_puk_status.value if recovery_puk_status else None,
        }
        response = self._call("recovery/lookup", payload)
        return [RecoveryCode.from_dict(item) for item in response.get("recoveryCodes") or []]

    def revoke_recovery_codes(self, recovery_code_ids: Iterable[int]) -> bool:
        response = self._call("recovery/revoke", {"recoveryCodeIds": [int(i) for i in recovery_code_ids]})
        return bool(response.get("revoked", False))

    def _call(self, path: str, request_object: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/v3/{path}"
        logger.debug("PowerAuth call %s", path)
        try:
            response = self.session.post(url, json={"requestObject": request_object}, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            logger.error("PowerAuth call %s failed: %s", path, exc)
            raise PowerAuthClientError("ERR_CONNECTION", str(exc)) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            logger.error("PowerAuth call %s returned HTTP %s without a JSON envelope", path, response.status_code)
            raise PowerAuthClientError(
                "ERR_RESPONSE",
                f"Unexpected response from PowerAuth server (HTTP {response.status_code}).",
                status_code=response.status_code,
            )

        response_object = body.get("responseObject") or {}
        if body.get("status") != "OK" or response.status_code >= 400:
            error = response_object if isinstance(response_object, dict) else {}
            code = str(error.get("code") or "ERR_GENERIC")
            message = str(error.get("message") or "PowerAuth server call failed.")
            logger.warning("PowerAuth call %s rejected: %s %s", path, code, message)
            raise PowerAuthClientError(code, message, status_code=response.status_code)

        if not isinstance(response_object, dict):
            raise PowerAuthClientError("ERR_RESPONSE", "Malformed response object.", status_code=response.status_code)
        return response_object


def build_client(config) -> PowerAuthServiceClient:
    return PowerAuthServiceClient(
        base_url=str(config["POWERAUTH_REST_URL"]),
        client_token=config.get("POWERAUTH_REST_CLIENT_TOKEN") or None,
        client_secret=config.get("POWERAUTH_REST_CLIENT_SECRET") or None,
        timeout_seconds=float(config.get("POWERAUTH_REST_TIMEOUT_SECONDS", 10)),
    )


def get_client() -> PowerAuthServiceClient:
    return current_app.config["POWERAUTH_CLIENT"]


def _format_timestamp(value: datetime) -> str:
    # Naive values are local time; the server expects an explicit offset.
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()
