"""Progress event envelope, serialization and SSE framing helpers."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from circuitforge_repair.constants import EVENT_SCHEMA_VERSION
from circuitforge_repair.domain import ids
from circuitforge_repair.domain.models import JSONValue

_MAX_STRING: Final[int] = 16384
_MAX_DEPTH: Final[int] = 16


class ProgressEventType(StrEnum):
    """Transitions of one convergence run, in the order they may occur."""

    SESSION_STARTED = "session_started"
    ATTEMPT_STARTED = "attempt_started"
    PREFLIGHT_DIAGNOSTICS = "preflight_diagnostics"
    VALIDATION_DIAGNOSTICS = "validation_diagnostics"
    REPAIR_PLAN = "repair_plan"
    REPAIR_RESULT = "repair_result"
    ITERATION_DIFF = "iteration_diff"
    ATTEMPT_RESULT = "attempt_result"
    PREVIEW_READY = "preview_ready"
    PREVIEW_FAILED = "preview_failed"
    FINAL_SUMMARY = "final_summary"

    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_EVENT_TYPES: Final[frozenset[ProgressEventType]] = frozenset(
    {
        ProgressEventType.CONVERGED,
        ProgressEventType.EXHAUSTED,
        ProgressEventType.CANCELLED,
        ProgressEventType.ERROR,
    }
)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Write-once event envelope.

    The payload is held as canonical JSON text so neither the emitter nor any
    subscriber can edit an event after it has been published.
    """

    sequence: int
    event_id: str
    event_type: ProgressEventType
    timestamp: datetime
    session_id: str
    payload_json: str = "{}"
    schema_version: int = EVENT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        sequence = self.sequence
        if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 1:
            raise ValueError("ProgressEvent.sequence: must be an integer >= 1")
        if not isinstance(self.event_id, str) or not self.event_id:
            raise ValueError("ProgressEvent.event_id: must be a non-empty string")
        event_type = _as_event_type(self.event_type, "ProgressEvent.event_type")
        object.__setattr__(self, "event_type", event_type)
        timestamp = _as_utc_datetime(self.timestamp, "ProgressEvent.timestamp")
        object.__setattr__(self, "timestamp", timestamp)
        if not isinstance(self.session_id, str) or not self.session_id.strip():
            raise ValueError("ProgressEvent.session_id: must be a non-empty string")
        parsed = json.loads(self.payload_json)
        if not isinstance(parsed, dict):
            raise ValueError("ProgressEvent.payload_json: must encode a JSON object")

    @classmethod
    def create(
        cls,
        *,
        sequence: int,
        event_type: ProgressEventType | str,
        session_id: str,
        payload: dict[str, object] | None = None,
        timestamp: datetime | None = None,
    ) -> ProgressEvent:
        return cls(
            sequence=sequence,
            event_id=ids.generate_event_id(),
            event_type=_as_event_type(event_type, "ProgressEvent.event_type"),
            timestamp=timestamp or datetime.now(tz=UTC),
            session_id=session_id,
            payload_json=canonical_payload(payload or {}),
        )

    @property
    def payload(self) -> dict[str, JSONValue]:
        """Fresh decoded copy of the payload."""

        decoded = json.loads(self.payload_json)
        assert isinstance(decoded, dict)
        return decoded

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "payload": self.payload,
            "schema_version": self.schema_version,
            "sequence": self.sequence,
            "session_id": self.session_id,
            "timestamp": _datetime_to_iso8601z(self.timestamp),
            "type": self.event_type.value,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def to_sse(self) -> str:
        """Server-sent-events frame for remote observers."""

        return f"data: {self.to_json()}\n\n"

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ProgressEvent:
        if not isinstance(data, dict):
            raise ValueError(f"ProgressEvent: expected object, got {type(data).__name__}")
        required = {"event_id", "payload", "sequence", "session_id", "timestamp", "type"}
        missing = sorted(key for key in required if key not in data)
        if missing:
            raise ValueError(f"ProgressEvent: missing required fields: {missing}")
        unknown = sorted(key for key in data if key not in required | {"schema_version"})
        if unknown:
            raise ValueError(f"ProgressEvent: unexpected fields: {unknown}")
        payload = data["payload"]
        if not isinstance(payload, dict):
            raise ValueError("ProgressEvent.payload: expected object")
        sequence = data["sequence"]
        if not isinstance(sequence, int):
            raise ValueError("ProgressEvent.sequence: expected integer")
        schema_version = data.get("schema_version", EVENT_SCHEMA_VERSION)
        if not isinstance(schema_version, int):
            raise ValueError("ProgressEvent.schema_version: expected integer")
        return cls(
            sequence=sequence,
            event_id=str(data["event_id"]),
            event_type=_as_event_type(data["type"], "ProgressEvent.type"),
            timestamp=_as_utc_datetime(data["timestamp"], "ProgressEvent.timestamp"),
            session_id=str(data["session_id"]),
            payload_json=canonical_payload(payload),
            schema_version=schema_version,
        )

    @classmethod
    def from_json(cls, raw: str) -> ProgressEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ProgressEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("ProgressEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def canonical_payload(payload: dict[str, object]) -> str:
    """Validate ``payload`` as bounded JSON and return its canonical text."""

    value = _as_json_value(payload, "payload")
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _as_event_type(value: object, path: str) -> ProgressEventType:
    if isinstance(value, ProgressEventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string event type, got {type(value).__name__}")
    try:
        return ProgressEventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in ProgressEventType)
        raise ValueError(f"{path}: unsupported event type {value!r}; allowed: {allowed}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_STRING:
            raise ValueError(f"{path}: string too long")
        return str(value)
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


__all__ = [
    "TERMINAL_EVENT_TYPES",
    "ProgressEvent",
    "ProgressEventType",
    "canonical_payload",
]
