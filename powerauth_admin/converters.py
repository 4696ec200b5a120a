from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

from .models import (
    ActivationStatus,
    SignatureAuditItem,
    SignatureData,
    SignatureType,
    parse_enum,
    parse_timestamp,
)


class SignatureAuditItemConverter:
    """Turns raw signature audit records into ``SignatureAuditItem`` values."""

    def from_signature_audit_response_item(self, item: Dict[str, Any]) -> SignatureAuditItem:
        data = item.get("dataBase64")
        return SignatureAuditItem(
            id=_as_int(item.get("id")),
            user_id=item.get("userId"),
            application_id=_as_int(item.get("applicationId")),
            activation_id=item.get("activationId"),
            activation_counter=_as_int(item.get("activationCounter")),
            activation_status=parse_enum(ActivationStatus, item.get("activationStatus")),
            additional_info=_key_value_map(item.get("additionalInfo")),
            data=data,
            signature_type=parse_enum(SignatureType, item.get("signatureType")),
            signature=item.get("signature"),
            note=item.get("note"),
            valid=bool(item.get("valid", False)),
            version=_as_int(item.get("version")),
            timestamp_created=parse_timestamp(item.get("timestampCreated")),
            signature_data=self.deserialize_signature_data(data),
        )

    @staticmethod
    def deserialize_signature_data(data_base64: Optional[str]) -> Optional[SignatureData]:
        # METHOD&base64(uriId)&nonce&base64(body)&applicationSecret
        if not data_base64:
            return None
        try:
            decoded = _b64_text(data_base64)
        except (binascii.Error, UnicodeDecodeError):
            return None

        parts = decoded.split("&")
        if len(parts) != 5:
            return None
        method, uri_id_b64, nonce, body_b64, application_secret = parts
        try:
            uri_id = _b64_text(uri_id_b64)
            body = _b64_text(body_b64)
        except (binascii.Error, UnicodeDecodeError):
            return None
        return SignatureData(
            request_method=method,
            request_uri_identifier=uri_id,
            nonce=nonce,
            request_body=body,
            application_secret=application_secret,
        )


def _b64_text(value: str) -> str:
    return base64.b64decode(value, validate=True).decode("utf-8")


def _key_value_map(raw: Any) -> Dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        # Either a plain map or {"entry": [{"key": .., "value": ..}]}.
        entries = raw.get("entry")
        if isinstance(entries, list):
            return {str(e.get("key")): str(e.get("value")) for e in entries if isinstance(e, dict)}
        return {str(k): str(v) for k, v in raw.items()}
    if isinstance(raw, list):
        return {str(e.get("key")): str(e.get("value")) for e in raw if isinstance(e, dict)}
    return {}


def _as_int(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
