from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.modulith.audit import record_event

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modulith.modules.example.models import Example
    from app.modulith.modules.example.repository import ExampleRepository


class ExampleService:
    """Validation and writes for Example. Callers commit."""

    def __init__(self, repository: "ExampleRepository", max_name_length: int = 255, audit: bool = True):
        self.repository = repository
        self.max_name_length = max_name_length
        self.audit = audit

    def validate(self, payload: dict, partial: bool) -> list[str]:
        """Returns list of errors."""
        errors = []
        if "name" in payload or not partial:
            name = payload.get("name")
            if not isinstance(name, str) or not name.strip():
                errors.append("Name is required.")
            elif len(name.strip()) > self.max_name_length:
                errors.append(f"Name must be at most {self.max_name_length} characters.")
        description = payload.get("description")
        if description is not None and not isinstance(description, str):
            errors.append("Description must be a string.")
        return errors

    def create(self, s: "Session", payload: dict) -> "Example":
        from app.modulith.modules.example.models import Example

        now = datetime.utcnow()
        example = Example(
            name=payload["name"].strip(),
            description=(payload.get("description") or "").strip() or None,
            created_at=now,
            updated_at=now,
        )
        self.repository.save(s, example, flush=True)
        self._record(s, "example.create", example, {"name": example.name})
        return example

    def update(self, s: "Session", example: "Example", payload: dict, partial: bool) -> "Example":
        changes: dict[str, Any] = {}

        if "name" in payload:
            new_name = payload["name"].strip()
            if new_name != example.name:
                changes["name"] = {"old": example.name, "new": new_name}
                example.name = new_name

        if "description" in payload:
            new_description = (payload.get("description") or "").strip() or None
            if new_description != example.description:
                changes["description"] = {"old": example.description, "new": new_description}
                example.description = new_description

        if changes:
            example.updated_at = datetime.utcnow()
        self.repository.save(s, example, flush=True)
        self._record(s, "example.edit", example, {"name": example.name, "changes": changes})
        return example

    def delete(self, s: "Session", example: "Example") -> None:
        example_id = example.id
        name = example.name
        self.repository.remove(s, example, flush=True)
        if self.audit:
            record_event(
                s,
                action="example.delete",
                entity_type="Example",
                entity_id=str(example_id),
                metadata={"name": name},
            )

    def _record(self, s: "Session", action: str, example: "Example", metadata: dict) -> None:
        if not self.audit:
            return
        record_event(
            s,
            action=action,
            entity_type="Example",
            entity_id=str(example.id),
            metadata=metadata,
        )
