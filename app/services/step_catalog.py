"""
Step Catalog — versioned workflow step templates.

A catalog is an immutable set of templates (key, title, sequence,
dependency keys, optional intake inclusion condition).  It is validated at
construction: unique keys, every dependency key known, no cycles.  The plan
generator instantiates the templates selected for a case's intake.

Usage:
    from app.services.step_catalog import DEFAULT_CATALOG, StepCatalog

    templates = DEFAULT_CATALOG.select(intake)
    catalog = StepCatalog.from_dict(playbook.template)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.core.exceptions import ValidationError
from app.models.workflow import topological_sort
from app.services.intake import INTAKE_CONDITIONS, CaseIntake

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepTemplate:
    """One step definition inside a catalog."""

    key: str
    title: str
    sequence: int
    depends_on: tuple[str, ...] = ()
    include_when: str | None = None
    due_in_days: int | None = None

    def applies_to(self, intake: CaseIntake) -> bool:
        return self.include_when is None or intake.flag(self.include_when)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "title": self.title,
            "sequence": self.sequence,
            "depends_on": list(self.depends_on),
            "include_when": self.include_when,
            "due_in_days": self.due_in_days,
        }


@dataclass(frozen=True)
class StepCatalog:
    """Validated, acyclic set of step templates."""

    version: str
    templates: tuple[StepTemplate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "templates", tuple(self.templates))
        if not self.version:
            raise ValidationError("Catalog version is required")
        if not self.templates:
            raise ValidationError("Catalog must contain at least one step")

        keys = [t.key for t in self.templates]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValidationError(
                f"Duplicate step keys: {', '.join(duplicates)}",
                details={"duplicates": duplicates},
            )

        known = set(keys)
        for template in self.templates:
            unknown = [d for d in template.depends_on if d not in known]
            if unknown:
                raise ValidationError(
                    f"Step '{template.key}' depends on unknown step(s): {', '.join(unknown)}",
                    details={"step": template.key, "unknown": unknown},
                )
            if template.include_when is not None and template.include_when not in INTAKE_CONDITIONS:
                raise ValidationError(
                    f"Step '{template.key}' has unknown inclusion condition '{template.include_when}'",
                )

        try:
            self.topological_order()
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    # ── Queries ──────────────────────────────────────────────────────────

    def get(self, key: str) -> StepTemplate | None:
        for template in self.templates:
            if template.key == key:
                return template
        return None

    def topological_order(self) -> list[str]:
        """Keys with prerequisites first; ties broken by sequence."""
        edges = [(t.key, dep) for t in self.templates for dep in t.depends_on]
        priority = {t.key: t.sequence for t in self.templates}
        return topological_sort([t.key for t in self.templates], edges, priority)

    def select(self, intake: CaseIntake) -> list[StepTemplate]:
        """Templates included for *intake*, in sequence order."""
        selected = [t for t in self.templates if t.applies_to(intake)]
        return sorted(selected, key=lambda t: (t.sequence, t.key))

    # ── Serialization (playbook templates) ───────────────────────────────

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "steps": [t.to_dict() for t in self.templates],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "StepCatalog":
        if not isinstance(payload, dict) or not isinstance(payload.get("steps"), list):
            raise ValidationError("Template must be an object with a 'steps' list")

        templates = []
        for index, raw in enumerate(payload["steps"]):
            if not isinstance(raw, dict) or not raw.get("key") or not raw.get("title"):
                raise ValidationError(
                    f"Template step #{index + 1} requires 'key' and 'title'",
                )
            due = raw.get("due_in_days")
            if due is not None and (not isinstance(due, int) or due < 0):
                raise ValidationError(f"Step '{raw['key']}': due_in_days must be a non-negative integer")
            templates.append(
                StepTemplate(
                    key=str(raw["key"]),
                    title=str(raw["title"]),
                    sequence=int(raw.get("sequence", index + 1)),
                    depends_on=tuple(raw.get("depends_on") or ()),
                    include_when=raw.get("include_when"),
                    due_in_days=due,
                )
            )
        return cls(version=str(payload.get("version") or "custom"), templates=tuple(templates))


# ═════════════════════════════════════════════════════════════════════════════
# Default catalog
# ═════════════════════════════════════════════════════════════════════════════

DEFAULT_CATALOG = StepCatalog(
    version="succession-v1",
    templates=(
        StepTemplate(
            key="collect-civil-records",
            title="Collect civil records",
            sequence=1,
            due_in_days=14,
        ),
        StepTemplate(
            key="gather-estate-inventory",
            title="Gather estate inventory",
            sequence=2,
            due_in_days=30,
        ),
        StepTemplate(
            key="submit-succession-notification",
            title="Submit succession notification",
            sequence=3,
            depends_on=("collect-civil-records", "gather-estate-inventory"),
            due_in_days=45,
        ),
        StepTemplate(
            key="validate-will",
            title="Validate will",
            sequence=4,
            depends_on=("gather-estate-inventory",),
            include_when="has_will",
            due_in_days=60,
        ),
        StepTemplate(
            key="engage-legal-support",
            title="Engage legal support",
            sequence=5,
            depends_on=("validate-will",),
            include_when="requires_legal_support",
            due_in_days=75,
        ),
    ),
)
