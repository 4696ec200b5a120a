"""Data shapes returned by the PowerAuth server.

All values are transient and live for a single request. The server owns the
authoritative state, so parsing is lenient: unknown keys are ignored and
missing ones fall back to ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar


class ActivationStatus(str, Enum):
    CREATED = "CREATED"
    PENDING_COMMIT = "PENDING_COMMIT"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    REMOVED = "REMOVED"


class ActivationOtpValidation(str, Enum):
    NONE = "NONE"
    ON_KEY_EXCHANGE = "ON_KEY_EXCHANGE"
    ON_COMMIT = "ON_COMMIT"


class SignatureType(str, Enum):
    POSSESSION = "POSSESSION"
    KNOWLEDGE = "KNOWLEDGE"
    BIOMETRY = "BIOMETRY"
    POSSESSION_KNOWLEDGE = "POSSESSION_KNOWLEDGE"
    POSSESSION_BIOMETRY = "POSSESSION_BIOMETRY"
    POSSESSION_KNOWLEDGE_BIOMETRY = "POSSESSION_KNOWLEDGE_BIOMETRY"


class RecoveryCodeStatus(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    REVOKED = "REVOKED"


class RecoveryPukStatus(str, Enum):
    VALID = "VALID"
    USED = "USED"
    INVALID = "INVALID"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_type: Type[E], raw: Any) -> Optional[E]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, enum_type):
        return raw
    try:
        return enum_type(str(raw).upper())
    except ValueError:
        return None


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, (int, float)):
        # Epoch milliseconds.
        return datetime.fromtimestamp(raw / 1000)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # Naive local time, same clock the console uses for date filters.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _optional_int(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@dataclass
class Integration:
    id: str
    name: str
    client_token: Optional[str] = None
    client_secret: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Integration":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            client_token=data.get("clientToken"),
            client_secret=data.get("clientSecret"),
        )


@dataclass
class IntegrationList:
    restricted_access: bool
    items: List[Integration] = field(default_factory=list)


@dataclass
class Application:
    application_id: int
    application_name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        app_id = data.get("applicationId", data.get("id"))
        return cls(
            application_id=_optional_int(app_id) or 0,
            application_name=str(data.get("applicationName", "")),
        )


@dataclass
class Activation:
    activation_id: str
    user_id: Optional[str] = None
    application_id: Optional[int] = None
    activation_name: Optional[str] = None
    activation_status: Optional[ActivationStatus] = None
    blocked_reason: Optional[str] = None
    timestamp_created: Optional[datetime] = None
    timestamp_last_used: Optional[datetime] = None
    device_public_key_fingerprint: Optional[str] = None
    platform: Optional[str] = None
    device_info: Optional[str] = None
    version: Optional[int] = None
    activation_otp_validation: Optional[ActivationOtpValidation] = None
    activation_code: Optional[str] = None
    activation_signature: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activation":
        return cls(
            activation_id=str(data.get("activationId", "")),
            user_id=data.get("userId"),
            application_id=_optional_int(data.get("applicationId")),
            activation_name=data.get("activationName"),
            activation_status=parse_enum(ActivationStatus, data.get("activationStatus")),
            blocked_reason=data.get("blockedReason"),
            timestamp_created=parse_timestamp(data.get("timestampCreated")),
            timestamp_last_used=parse_timestamp(data.get("timestampLastUsed")),
            device_public_key_fingerprint=data.get("devicePublicKeyFingerprint"),
            platform=data.get("platform"),
            device_info=data.get("deviceInfo"),
            version=_optional_int(data.get("version")),
            activation_otp_validation=parse_enum(ActivationOtpValidation, data.get("activationOtpValidation")),
            activation_code=data.get("activationCode"),
            activation_signature=data.get("activationSignature"),
        )


@dataclass
class InitActivationResult:
    activation_id: str
    activation_code: Optional[str] = None
    activation_signature: Optional[str] = None
    user_id: Optional[str] = None
    application_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitActivationResult":
        return cls(
            activation_id=str(data.get("activationId", "")),
            activation_code=data.get("activationCode"),
            activation_signature=data.get("activationSignature"),
            user_id=data.get("userId"),
            application_id=_optional_int(data.get("applicationId")),
        )


@dataclass
class ActivationStateChange:
    """Outcome of commit, block, unblock and remove calls."""

    activation_id: str
    activation_status: Optional[ActivationStatus] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivationStateChange":
        return cls(
            activation_id=str(data.get("activationId", "")),
            activation_status=parse_enum(ActivationStatus, data.get("activationStatus")),
        )


@dataclass
class ActivationHistoryItem:
    id: Optional[int]
    activation_id: str
    activation_status: Optional[ActivationStatus] = None
    event_reason: Optional[str] = None
    external_user_id: Optional[str] = None
    timestamp_created: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivationHistoryItem":
        return cls(
            id=_optional_int(data.get("id")),
            activation_id=str(data.get("activationId", "")),
            activation_status=parse_enum(ActivationStatus, data.get("activationStatus")),
            event_reason=data.get("eventReason"),
            external_user_id=data.get("externalUserId"),
            timestamp_created=parse_timestamp(data.get("timestampCreated")),
        )


@dataclass
class SignatureData:
    request_method: str
    request_uri_identifier: str
    nonce: str
    request_body: str
    application_secret: str


@dataclass
class SignatureAuditItem:
    id: Optional[int] = None
    user_id: Optional[str] = None
    application_id: Optional[int] = None
    activation_id: Optional[str] = None
    activation_counter: Optional[int] = None
    activation_status: Optional[ActivationStatus] = None
    additional_info: Dict[str, str] = field(default_factory=dict)
    data: Optional[str] = None
    signature_type: Optional[SignatureType] = None
    signature: Optional[str] = None
    note: Optional[str] = None
    valid: bool = False
    version: Optional[int] = None
    timestamp_created: Optional[datetime] = None
    signature_data: Optional[SignatureData] = None


@dataclass
class RecoveryPuk:
    puk_index: int
    status: Optional[RecoveryPukStatus] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryPuk":
        return cls(
            puk_index=_optional_int(data.get("pukIndex")) or 0,
            status=parse_enum(RecoveryPukStatus, data.get("status")),
        )


@dataclass
class RecoveryCode:
    recovery_code_id: int
    recovery_code_masked: Optional[str] = None
    user_id: Optional[str] = None
    application_id: Optional[int] = None
    activation_id: Optional[str] = None
    status: Optional[RecoveryCodeStatus] = None
    puks: List[RecoveryPuk] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryCode":
        return cls(
            recovery_code_id=_optional_int(data.get("recoveryCodeId", data.get("id"))) or 0,
            recovery_code_masked=data.get("recoveryCodeMasked"),
            user_id=data.get("userId"),
            application_id=_optional_int(data.get("applicationId")),
            activation_id=data.get("activationId"),
            status=parse_enum(RecoveryCodeStatus, data.get("status")),
            puks=[RecoveryPuk.from_dict(item) for item in data.get("puks") or []],
        )
