"""People List — a named, saved snapshot of entities and their assignments."""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from space_sync.errors import ValidationError
from space_sync.models.entity import Entity

LIST_NAME_MAX_LENGTH = 20
# Latin letters, Hebrew letters, digits and whitespace
LIST_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\u0590-\u05FF\s]+$")


class PeopleList(BaseModel):
    """A saved list. `entities` is the snapshot captured at save time."""

    id: str
    display_name: str                       # With spaces
    storage_name: str                       # Remote-safe (underscores)
    created_at: datetime
    updated_at: Optional[datetime] = None
    entities: List[Entity] = []
    from_remote: bool = False               # Discovered in pulled memberships

    def assigned_space_ids(self) -> set:
        return {e.assigned_space_id for e in self.entities if e.assigned_space_id}


def to_storage_name(name: str) -> str:
    """Display name to remote storage name (whitespace runs become '_')."""
    return re.sub(r"\s+", "_", name.strip())


def to_display_name(storage_name: str) -> str:
    return storage_name.replace("_", " ")


def validate_list_name(name: str) -> str:
    """
    Validate a list display name and return it trimmed.

    Raises ValidationError before any state mutation or network call.
    """
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("List name is required")
    if len(trimmed) > LIST_NAME_MAX_LENGTH:
        raise ValidationError(f"Max {LIST_NAME_MAX_LENGTH} characters allowed")
    if not LIST_NAME_PATTERN.match(trimmed):
        raise ValidationError("Only letters, numbers, and spaces allowed")
    return trimmed
