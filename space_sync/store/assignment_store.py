"""
Assignment Store — authoritative local table of entities and saved lists.

Updated by: Assignment Controller
Observed by: presentation layer and the persistence snapshotter

Behavioral Contract:
- Performs no I/O. Every mutation is published to subscribers instead.
- Status-only updates never alter any other entity field.
- Bulk mutations are applied to a copy and swapped in under the lock, so
  readers never observe a half-applied batch.
- Readers receive copies; mutating a returned Entity has no effect here.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from space_sync.capacity.pool import compute_capacity
from space_sync.errors import NotFoundError, ValidationError
from space_sync.models.capacity import CapacityPool
from space_sync.models.entity import Entity, SyncStatus
from space_sync.models.lists import PeopleList

logger = logging.getLogger(__name__)


class StoreEvent:
    """A mutation notification delivered to subscribers."""

    def __init__(self, kind: str, entity_ids: Optional[List[str]] = None, **details):
        self.kind = kind
        self.entity_ids = entity_ids or []
        self.details = details
        self.emitted_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "entity_ids": list(self.entity_ids),
            "details": dict(self.details),
            "emitted_at": self.emitted_at.isoformat(),
        }


Listener = Callable[[StoreEvent], None]


class AssignmentStore:
    """In-memory assignment table with observable mutations."""

    def __init__(self, total_spaces: int = 0):
        if total_spaces < 0:
            raise ValidationError("total_spaces must be non-negative")
        self._lock = threading.RLock()
        self._entities: "OrderedDict[str, Entity]" = OrderedDict()
        self._lists: "OrderedDict[str, PeopleList]" = OrderedDict()
        self._total_spaces = total_spaces
        self._active_list_id: Optional[str] = None
        self._pending_changes = False
        self._listeners: List[Listener] = []

    # --- Subscription ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: str, entity_ids: Optional[List[str]] = None, **details) -> None:
        event = StoreEvent(kind, entity_ids, **details)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # A broken observer must not undo a committed mutation
                logger.exception("Store listener failed kind=%s", kind)

    # --- Reads ---

    @property
    def entities(self) -> List[Entity]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entities.values()]

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        with self._lock:
            entity = self._entities.get(entity_id)
            return entity.model_copy(deep=True) if entity else None

    def require_entity(self, entity_id: str) -> Entity:
        entity = self.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        return entity

    def assigned_entities(self) -> List[Entity]:
        return [e for e in self.entities if e.assigned_space_id is not None]

    def entity_holding(self, space_id: str) -> Optional[Entity]:
        """The entity currently occupying `space_id`, if any."""
        with self._lock:
            for entity in self._entities.values():
                if entity.assigned_space_id == space_id:
                    return entity.model_copy(deep=True)
        return None

    @property
    def total_spaces(self) -> int:
        return self._total_spaces

    @property
    def capacity_pool(self) -> CapacityPool:
        with self._lock:
            return compute_capacity(self._total_spaces, self._entities.values())

    @property
    def lists(self) -> List[PeopleList]:
        with self._lock:
            return [l.model_copy(deep=True) for l in self._lists.values()]

    def get_list(self, list_id: str) -> Optional[PeopleList]:
        with self._lock:
            people_list = self._lists.get(list_id)
            return people_list.model_copy(deep=True) if people_list else None

    def find_list_by_storage_name(self, storage_name: str) -> Optional[PeopleList]:
        with self._lock:
            for people_list in self._lists.values():
                if people_list.storage_name == storage_name:
                    return people_list.model_copy(deep=True)
        return None

    @property
    def active_list_id(self) -> Optional[str]:
        return self._active_list_id

    @property
    def pending_changes(self) -> bool:
        """True when assignments changed since the active list was saved/loaded."""
        return self._pending_changes

    # --- Entity mutations ---

    def set_entities(self, entities: Iterable[Entity]) -> None:
        """Replace the whole entity set in one step."""
        replacement: "OrderedDict[str, Entity]" = OrderedDict()
        for entity in entities:
            if entity.id in replacement:
                raise ValidationError(f"Duplicate entity id: {entity.id}")
            replacement[entity.id] = entity.model_copy(deep=True)
        with self._lock:
            self._entities = replacement
        self._emit("set_entities", list(replacement.keys()), count=len(replacement))

    def add_entity(self, entity: Entity) -> None:
        with self._lock:
            if entity.id in self._entities:
                raise ValidationError(f"Entity already exists: {entity.id}")
            self._entities[entity.id] = entity.model_copy(deep=True)
        self._emit("entity_added", [entity.id])

    def update_entity(self, entity_id: str, updates: dict) -> Entity:
        """
        Apply field updates. `attributes` is merged key by key; every other
        field is replaced. The result is re-validated.
        """
        with self._lock:
            current = self._entities.get(entity_id)
            if current is None:
                raise NotFoundError(f"Entity not found: {entity_id}")
            if "id" in updates and updates["id"] != entity_id:
                raise ValidationError("Entity id is immutable")
            merged = current.model_dump()
            for key, value in updates.items():
                if key == "attributes" and value is not None:
                    merged["attributes"] = {**merged["attributes"], **value}
                else:
                    merged[key] = value
            try:
                updated = Entity.model_validate(merged)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid update for entity {entity_id}: {exc}") from exc
            self._entities[entity_id] = updated
        self._emit("entity_updated", [entity_id], fields=sorted(updates.keys()))
        return updated.model_copy(deep=True)

    def delete_entity(self, entity_id: str) -> bool:
        with self._lock:
            if entity_id not in self._entities:
                return False
            del self._entities[entity_id]
        self._emit("entity_deleted", [entity_id])
        return True

    def assign_space(self, entity_id: str, space_id: str) -> None:
        """Local-only: set the entity's space. Does not touch the remote service."""
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                raise NotFoundError(f"Entity not found: {entity_id}")
            self._entities[entity_id] = entity.model_copy(
                update={"assigned_space_id": space_id}
            )
            self._touch_active_list()
        self._emit("space_assigned", [entity_id], space_id=space_id)

    def unassign_space(self, entity_id: str) -> None:
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                raise NotFoundError(f"Entity not found: {entity_id}")
            self._entities[entity_id] = entity.model_copy(
                update={"assigned_space_id": None, "sync_status": SyncStatus.UNSYNCED}
            )
            self._touch_active_list()
        self._emit("space_unassigned", [entity_id], space_id=entity.assigned_space_id)

    def assign_spaces(self, pairs: Sequence[Tuple[str, str]]) -> None:
        """Apply an ordered batch of (entity_id, space_id) pairs atomically."""
        with self._lock:
            staged = OrderedDict(self._entities)
            for entity_id, space_id in pairs:
                entity = staged.get(entity_id)
                if entity is None:
                    raise NotFoundError(f"Entity not found: {entity_id}")
                staged[entity_id] = entity.model_copy(
                    update={"assigned_space_id": space_id}
                )
            self._entities = staged
            self._touch_active_list()
        self._emit("spaces_assigned", [p[0] for p in pairs], count=len(pairs))

    def unassign_all(self) -> List[str]:
        """Clear every assignment. Returns the ids that were assigned."""
        with self._lock:
            cleared = [e.id for e in self._entities.values() if e.assigned_space_id]
            self._entities = OrderedDict(
                (
                    eid,
                    e.model_copy(update={
                        "assigned_space_id": None,
                        "sync_status": SyncStatus.UNSYNCED,
                        "last_synced_at": None,
                    })
                    if eid in cleared else e,
                )
                for eid, e in self._entities.items()
            )
            if cleared:
                self._touch_active_list()
        self._emit("all_unassigned", cleared, count=len(cleared))
        return cleared

    def update_sync_status(
        self,
        entity_ids: Sequence[str],
        status: SyncStatus,
        synced_at: Optional[datetime] = None,
    ) -> None:
        """
        Status-only update. `last_synced_at` changes only when `synced_at`
        is given; unknown ids are ignored (the entity may have been replaced
        while a request was in flight).
        """
        with self._lock:
            touched = []
            for entity_id in entity_ids:
                entity = self._entities.get(entity_id)
                if entity is None:
                    continue
                update: Dict[str, object] = {"sync_status": status}
                if synced_at is not None:
                    update["last_synced_at"] = synced_at
                self._entities[entity_id] = entity.model_copy(update=update)
                touched.append(entity_id)
        self._emit("sync_status", touched, status=status.value)

    def set_total_spaces(self, total_spaces: int) -> None:
        """Change the ceiling. Rejected if current assignments would not fit."""
        if total_spaces < 0:
            raise ValidationError("total_spaces must be non-negative")
        with self._lock:
            assigned = sum(1 for e in self._entities.values() if e.assigned_space_id)
            if total_spaces < assigned:
                raise ValidationError(
                    f"Cannot shrink to {total_spaces} spaces; {assigned} are assigned"
                )
            self._total_spaces = total_spaces
        self._emit("capacity", total_spaces=total_spaces)

    def _touch_active_list(self) -> None:
        if self._active_list_id is not None:
            self._pending_changes = True

    # --- List mutations ---

    def upsert_list(self, people_list: PeopleList) -> None:
        with self._lock:
            self._lists[people_list.id] = people_list.model_copy(deep=True)
        self._emit("lists_changed", list_id=people_list.id)

    def delete_list(self, list_id: str) -> bool:
        with self._lock:
            if list_id not in self._lists:
                return False
            del self._lists[list_id]
            if self._active_list_id == list_id:
                self._active_list_id = None
                self._pending_changes = False
        self._emit("lists_changed", list_id=list_id, deleted=True)
        return True

    def set_active_list(self, list_id: Optional[str]) -> None:
        with self._lock:
            if list_id is not None and list_id not in self._lists:
                raise NotFoundError(f"List not found: {list_id}")
            self._active_list_id = list_id
            self._pending_changes = False
        self._emit("active_list", list_id=list_id)

    # --- Snapshots ---

    def snapshot(self) -> dict:
        """Serializable view of the whole store, for persistence."""
        with self._lock:
            return {
                "entities": [e.model_dump(mode="json") for e in self._entities.values()],
                "lists": [l.model_dump(mode="json") for l in self._lists.values()],
                "active_list_id": self._active_list_id,
                "total_spaces": self._total_spaces,
            }

    def restore(self, snapshot: dict) -> None:
        """Load a snapshot produced by `snapshot()` (or an older layout)."""
        entities = [Entity.model_validate(e) for e in snapshot.get("entities", [])]
        lists = [PeopleList.model_validate(l) for l in snapshot.get("lists", [])]
        with self._lock:
            self._entities = OrderedDict((e.id, e) for e in entities)
            self._lists = OrderedDict((l.id, l) for l in lists)
            self._total_spaces = int(snapshot.get("total_spaces", self._total_spaces))
            active = snapshot.get("active_list_id")
            self._active_list_id = active if active in self._lists else None
            self._pending_changes = False
        logger.info(
            "Store restored entities=%d lists=%d", len(entities), len(lists)
        )
