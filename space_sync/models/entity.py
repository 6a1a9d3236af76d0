"""Entity — an assignable record (e.g. a person) and its list memberships."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, model_validator


class SyncStatus(str, Enum):
    UNSYNCED = "unsynced"   # Only the local store has been mutated
    PENDING = "pending"     # Remote push in flight
    SYNCED = "synced"       # Remote push confirmed
    ERROR = "error"         # Remote push failed; retry manually


class ListMembership(BaseModel):
    """Membership of an entity in one named list, with its own assignment."""

    list_name: str                          # Storage name (underscores)
    space_id: Optional[str] = None          # None = unassigned in this list


class Entity(BaseModel):
    """A single assignable record tracked by the Assignment Store."""

    id: str                                 # Stable, generated locally
    attributes: Dict[str, str] = {}         # Open schema from field config
    assigned_space_id: Optional[str] = None
    virtual_pool_id: Optional[str] = None   # e.g. "POOL-0007"
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    last_synced_at: Optional[datetime] = None
    list_memberships: List[ListMembership] = []

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_list_fields(cls, data: Any) -> Any:
        """
        Load-time migration of the single-list shape.

        Older snapshots carry `list_name` / `list_space_id` (or the camelCase
        `listName` / `listSpaceId`). They are folded into `list_memberships`
        exactly once here, so the rest of the engine only ever sees the
        normalized form.
        """
        if not isinstance(data, dict):
            return data
        legacy_keys = ("list_name", "list_space_id", "listName", "listSpaceId")
        if not any(k in data for k in legacy_keys):
            return data

        data = dict(data)
        legacy_name = data.pop("list_name", None) or data.pop("listName", None)
        legacy_space = data.pop("list_space_id", None) or data.pop("listSpaceId", None)
        data.pop("listName", None)
        data.pop("listSpaceId", None)

        memberships = list(data.get("list_memberships") or [])
        if legacy_name:
            known = {
                m.list_name if isinstance(m, ListMembership) else m.get("list_name")
                for m in memberships
            }
            if legacy_name not in known:
                memberships.append({"list_name": legacy_name, "space_id": legacy_space})
        data["list_memberships"] = memberships
        return data

    @model_validator(mode="after")
    def _check_unique_memberships(self) -> "Entity":
        names = [m.list_name for m in self.list_memberships]
        if len(names) != len(set(names)):
            raise ValueError(f"Entity {self.id} has duplicate list memberships")
        return self

    @property
    def is_assigned(self) -> bool:
        return self.assigned_space_id is not None

    def remote_article_id(self) -> str:
        """Identifier the remote service addresses this entity by."""
        return self.assigned_space_id or self.virtual_pool_id or self.id

    def list_names(self) -> List[str]:
        return [m.list_name for m in self.list_memberships]

    def membership_for(self, list_name: str) -> Optional[ListMembership]:
        return next(
            (m for m in self.list_memberships if m.list_name == list_name), None
        )

    def with_membership(self, list_name: str, space_id: Optional[str]) -> "Entity":
        """Copy with the membership for `list_name` added or replaced."""
        memberships = [m for m in self.list_memberships if m.list_name != list_name]
        index = next(
            (i for i, m in enumerate(self.list_memberships) if m.list_name == list_name),
            len(memberships),
        )
        memberships.insert(index, ListMembership(list_name=list_name, space_id=space_id))
        return self.model_copy(update={"list_memberships": memberships}, deep=True)

    def without_membership(self, list_name: str) -> "Entity":
        memberships = [m for m in self.list_memberships if m.list_name != list_name]
        return self.model_copy(update={"list_memberships": memberships}, deep=True)
