"""
Tests for the step catalog and the dependency graph helpers.

Covers:
  - topological_sort: order, tie-breaking, cycle / self-loop / unknown-node rejection
  - StepCatalog validation at construction
  - intake-driven template selection on the default catalog
  - playbook template (de)serialization
"""

import pytest

from app.core.exceptions import ValidationError
from app.models.workflow import topological_sort, validate_step_transition
from app.services.intake import CaseIntake
from app.services.step_catalog import DEFAULT_CATALOG, StepCatalog, StepTemplate


def _intake(**flags):
    return CaseIntake(primary_contact_name="Ana", relationship_to_deceased="daughter", **flags)


class TestTopologicalSort:
    def test_prerequisites_come_first(self):
        order = topological_sort(["c", "b", "a"], [("c", "a"), ("c", "b"), ("b", "a")])
        assert order == ["a", "b", "c"]

    def test_ties_broken_by_priority(self):
        order = topological_sort(["x", "y", "z"], [], priority={"x": 3, "y": 1, "z": 2})
        assert order == ["y", "z", "x"]

    def test_cycle_rejected(self):
        with pytest.raises(ValueError, match="cycle"):
            topological_sort(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])

    def test_self_dependency_rejected(self):
        with pytest.raises(ValueError, match="Self dependency"):
            topological_sort(["a"], [("a", "a")])

    def test_unknown_node_rejected(self):
        with pytest.raises(ValueError, match="unknown node"):
            topological_sort(["a"], [("a", "ghost")])


class TestStepTransitions:
    @pytest.mark.parametrize("old,new", [("ready", "in_progress"), ("in_progress", "complete")])
    def test_allowed(self, old, new):
        assert validate_step_transition(old, new)

    @pytest.mark.parametrize("old,new", [
        ("blocked", "in_progress"),
        ("ready", "complete"),
        ("complete", "in_progress"),
        ("in_progress", "ready"),
    ])
    def test_rejected(self, old, new):
        assert not validate_step_transition(old, new)


class TestCatalogValidation:
    def test_default_catalog_order(self):
        assert DEFAULT_CATALOG.topological_order() == [
            "collect-civil-records",
            "gather-estate-inventory",
            "submit-succession-notification",
            "validate-will",
            "engage-legal-support",
        ]

    def test_duplicate_keys(self):
        with pytest.raises(ValidationError) as exc:
            StepCatalog("v", (StepTemplate("a", "A", 1), StepTemplate("a", "A2", 2)))
        assert exc.value.details["duplicates"] == ["a"]

    def test_unknown_dependency(self):
        with pytest.raises(ValidationError, match="unknown step"):
            StepCatalog("v", (StepTemplate("a", "A", 1, depends_on=("missing",)),))

    def test_cycle(self):
        with pytest.raises(ValidationError, match="cycle"):
            StepCatalog("v", (
                StepTemplate("a", "A", 1, depends_on=("b",)),
                StepTemplate("b", "B", 2, depends_on=("a",)),
            ))

    def test_unknown_condition(self):
        with pytest.raises(ValidationError, match="inclusion condition"):
            StepCatalog("v", (StepTemplate("a", "A", 1, include_when="has_yacht"),))

    def test_empty_catalog(self):
        with pytest.raises(ValidationError):
            StepCatalog("v", ())


class TestSelection:
    @pytest.mark.parametrize("flags,expected", [
        ({}, ["collect-civil-records", "gather-estate-inventory", "submit-succession-notification"]),
        ({"has_will": True}, [
            "collect-civil-records", "gather-estate-inventory",
            "submit-succession-notification", "validate-will",
        ]),
        ({"has_will": True, "requires_legal_support": True}, [
            "collect-civil-records", "gather-estate-inventory",
            "submit-succession-notification", "validate-will", "engage-legal-support",
        ]),
        ({"requires_legal_support": True}, [
            "collect-civil-records", "gather-estate-inventory",
            "submit-succession-notification", "engage-legal-support",
        ]),
    ])
    def test_select_by_intake(self, flags, expected):
        assert [t.key for t in DEFAULT_CATALOG.select(_intake(**flags))] == expected


class TestSerialization:
    def test_from_dict_defaults_sequence_and_version(self):
        catalog = StepCatalog.from_dict({
            "steps": [
                {"key": "first", "title": "First"},
                {"key": "second", "title": "Second", "depends_on": ["first"], "due_in_days": 7},
            ],
        })
        assert catalog.version == "custom"
        assert [t.sequence for t in catalog.templates] == [1, 2]
        assert catalog.get("second").depends_on == ("first",)
        assert catalog.get("second").due_in_days == 7
        assert catalog.get("nope") is None

    def test_to_dict_reloads_identically(self):
        assert StepCatalog.from_dict(DEFAULT_CATALOG.to_dict()) == DEFAULT_CATALOG

    def test_from_dict_requires_steps_list(self):
        with pytest.raises(ValidationError):
            StepCatalog.from_dict({"version": "x"})

    def test_from_dict_requires_key_and_title(self):
        with pytest.raises(ValidationError, match="#2"):
            StepCatalog.from_dict({"steps": [{"key": "a", "title": "A"}, {"key": "b"}]})

    def test_from_dict_rejects_negative_due(self):
        with pytest.raises(ValidationError, match="due_in_days"):
            StepCatalog.from_dict({"steps": [{"key": "a", "title": "A", "due_in_days": -1}]})
