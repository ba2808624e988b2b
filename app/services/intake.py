"""
Structured case intake record.

The intake is a typed record everywhere inside the service layer; it is
serialized to JSON only at the ``cases.intake_data`` column boundary.

Usage:
    intake = CaseIntake.from_dict(request_json)
    case.intake_data = intake.to_json()
    ...
    intake = CaseIntake.from_json(case.intake_data)
    if intake.has_will: ...
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields

from app.core.exceptions import ValidationError

_REQUIRED_TEXT = ("primary_contact_name", "relationship_to_deceased")
_FLAGS = ("has_will", "requires_legal_support", "requires_financial_support")
_MAX_TEXT = 200
_MAX_NOTES = 4000


@dataclass(frozen=True)
class CaseIntake:
    """Intake answers captured before a workflow plan can be generated."""

    primary_contact_name: str
    relationship_to_deceased: str
    primary_contact_phone: str | None = None
    has_will: bool = False
    requires_legal_support: bool = False
    requires_financial_support: bool = False
    notes: str | None = None

    def flag(self, name: str) -> bool:
        """Look up a boolean intake flag by name (used by catalog conditions)."""
        if name not in _FLAGS:
            raise ValidationError(f"Unknown intake condition: {name}")
        return bool(getattr(self, name))

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, payload: dict | None) -> "CaseIntake":
        """Validate and build an intake from untrusted input."""
        if not isinstance(payload, dict):
            raise ValidationError("intake payload must be an object")

        errors = {}
        for name in _REQUIRED_TEXT:
            value = payload.get(name)
            if not isinstance(value, str) or not value.strip():
                errors[name] = "required"
            elif len(value) > _MAX_TEXT:
                errors[name] = f"must be at most {_MAX_TEXT} characters"
        for name in _FLAGS:
            if name in payload and not isinstance(payload[name], bool):
                errors[name] = "must be a boolean"
        notes = payload.get("notes")
        if notes is not None and (not isinstance(notes, str) or len(notes) > _MAX_NOTES):
            errors["notes"] = f"must be a string of at most {_MAX_NOTES} characters"
        if errors:
            raise ValidationError("Invalid intake", details=errors)

        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in payload.items() if k in known}
        values["primary_contact_name"] = values["primary_contact_name"].strip()
        values["relationship_to_deceased"] = values["relationship_to_deceased"].strip()
        return cls(**values)

    @classmethod
    def from_json(cls, raw: str | None) -> "CaseIntake | None":
        if not raw:
            return None
        return cls.from_dict(json.loads(raw))


INTAKE_CONDITIONS = _FLAGS
