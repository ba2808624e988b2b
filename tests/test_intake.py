"""Tests for the structured intake record."""

import pytest

from app.core.exceptions import ValidationError
from app.services.intake import CaseIntake


class TestIntakeValidation:
    def test_minimal_payload(self):
        intake = CaseIntake.from_dict({"primary_contact_name": " Ana ", "relationship_to_deceased": "spouse"})
        assert intake.primary_contact_name == "Ana"
        assert intake.has_will is False
        assert intake.requires_legal_support is False

    def test_missing_required_fields_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            CaseIntake.from_dict({"primary_contact_name": "  "})
        assert exc.value.details == {
            "primary_contact_name": "required",
            "relationship_to_deceased": "required",
        }

    def test_flags_must_be_boolean(self):
        with pytest.raises(ValidationError) as exc:
            CaseIntake.from_dict({
                "primary_contact_name": "Ana",
                "relationship_to_deceased": "spouse",
                "has_will": "yes",
            })
        assert "has_will" in exc.value.details

    def test_non_object_payload(self):
        with pytest.raises(ValidationError):
            CaseIntake.from_dict(["not", "a", "dict"])

    def test_unknown_keys_ignored(self):
        intake = CaseIntake.from_dict({
            "primary_contact_name": "Ana",
            "relationship_to_deceased": "spouse",
            "favourite_colour": "blue",
        })
        assert not hasattr(intake, "favourite_colour")


class TestIntakeStorage:
    def test_json_column_boundary(self):
        intake = CaseIntake(
            primary_contact_name="Ana",
            relationship_to_deceased="spouse",
            has_will=True,
            notes="Will held by notary",
        )
        assert CaseIntake.from_json(intake.to_json()) == intake

    def test_from_json_empty(self):
        assert CaseIntake.from_json(None) is None
        assert CaseIntake.from_json("") is None

    def test_flag_lookup(self):
        intake = CaseIntake(primary_contact_name="Ana", relationship_to_deceased="spouse", has_will=True)
        assert intake.flag("has_will") is True
        assert intake.flag("requires_financial_support") is False
        with pytest.raises(ValidationError):
            intake.flag("primary_contact_name")
