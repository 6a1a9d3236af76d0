"""
Assignment Controller — orchestrates the store, capacity and remote client.

Each public operation is atomic with respect to local state and only
eventually consistent with the remote service.

Behavioral Contract:
- Validation and capacity checks run before any mutation or network call.
- Primary remote failures set sync status to ERROR. Single-entity
  operations then re-raise; batch operations report a failed result.
- Cleanup of vacated spaces is best-effort: it returns a CleanupResult
  and never blocks the operation the caller asked for.
- No automatic rollback and no automatic exit from ERROR; recovery is a
  normal retry of the same operation.
- Without a remote client every operation is local-only.

Per-entity sync status:
  UNSYNCED --push--> PENDING --ok--> SYNCED
                     PENDING --fail--> ERROR --push ok--> SYNCED
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from space_sync.capacity.pool import ensure_capacity, occupied_space_ids
from space_sync.capacity.virtual_pool import is_pool_id, next_pool_id
from space_sync.errors import (
    AuthExpired,
    NotFoundError,
    RemoteError,
    RemoteUnavailable,
    ValidationError,
)
from space_sync.models.capacity import CapacityPool
from space_sync.models.config import ControllerConfig
from space_sync.models.entity import Entity, SyncStatus
from space_sync.models.lists import (
    PeopleList,
    to_display_name,
    to_storage_name,
    validate_list_name,
)
from space_sync.models.results import BatchPushResult, CleanupResult, LoadListResult
from space_sync.remote.articles import article_to_entity
from space_sync.remote.client import RemoteSyncClient
from space_sync.store.assignment_store import AssignmentStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _space_sort_key(space_id: str) -> Tuple[int, object]:
    return (0, int(space_id)) if space_id.isdigit() else (1, space_id)


class AssignmentController:
    """Public operations consumed by the presentation layer."""

    def __init__(
        self,
        store: AssignmentStore,
        client: Optional[RemoteSyncClient] = None,
        config: Optional[ControllerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.client = client
        self.config = config or ControllerConfig()
        self._sleep = sleep

    # --- Read-only state ---

    @property
    def entities(self) -> List[Entity]:
        return self.store.entities

    @property
    def lists(self) -> List[PeopleList]:
        return self.store.lists

    @property
    def active_list_id(self) -> Optional[str]:
        return self.store.active_list_id

    @property
    def capacity_pool(self) -> CapacityPool:
        return self.store.capacity_pool

    @property
    def remote_enabled(self) -> bool:
        return self.client is not None

    def _require_client(self) -> RemoteSyncClient:
        if self.client is None:
            raise AuthExpired("Remote service is not configured")
        return self.client

    # --- Remote helpers ---

    async def _with_retry(self, action: str, call: Callable[[], Awaitable]):
        """Run a remote call within the push-attempt budget. AuthExpired is never retried."""
        attempts = self.config.max_push_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except AuthExpired:
                raise
            except RemoteUnavailable as exc:
                if attempt >= attempts:
                    raise
                delay = self.config.retry_backoff_seconds * attempt
                logger.warning(
                    "%s failed attempt=%d/%d retry_in=%.2fs error=%s",
                    action, attempt, attempts, delay, exc,
                )
                await self._sleep(delay)

    async def _clear_best_effort(
        self,
        space_ids: Sequence[str],
        hints: Optional[Dict[str, Entity]] = None,
    ) -> CleanupResult:
        """Vacate spaces remotely. Failures become warnings, never exceptions."""
        if not space_ids or self.client is None:
            return CleanupResult()
        hints = hints or {}
        try:
            if len(space_ids) == 1:
                await self.client.clear_one(space_ids[0], hints.get(space_ids[0]))
            else:
                await self.client.clear_many(list(space_ids), hints)
        except RemoteError as exc:
            logger.warning("Cleanup failed space_ids=%s error=%s", list(space_ids), exc)
            return CleanupResult(failed=list(space_ids), warnings=[str(exc)])
        return CleanupResult(cleared=list(space_ids))

    async def _push_batch(self, entity_ids: List[str], action: str) -> BatchPushResult:
        """PENDING → one push_many → SYNCED or ERROR for the whole batch."""
        client = self._require_client()
        if not entity_ids:
            return BatchPushResult(success=True)
        self.store.update_sync_status(entity_ids, SyncStatus.PENDING)
        entities = [e for e in (self.store.get_entity(i) for i in entity_ids) if e]
        try:
            await self._with_retry(action, lambda: client.push_many(entities))
        except RemoteError as exc:
            self.store.update_sync_status(entity_ids, SyncStatus.ERROR)
            logger.error("%s failed count=%d error=%s", action, len(entity_ids), exc)
            return BatchPushResult(success=False, entity_ids=entity_ids, error=str(exc))
        except Exception:
            self.store.update_sync_status(entity_ids, SyncStatus.ERROR)
            logger.exception("%s failed unexpectedly count=%d", action, len(entity_ids))
            raise
        self.store.update_sync_status(entity_ids, SyncStatus.SYNCED, synced_at=_utcnow())
        logger.info("%s synced count=%d", action, len(entity_ids))
        return BatchPushResult(
            success=True, synced_count=len(entity_ids), entity_ids=entity_ids
        )

    # --- Entities ---

    async def add_entity(
        self,
        attributes: Dict[str, str],
        push: bool = False,
    ) -> Entity:
        """Create an entity in the virtual pool with a fresh id and pool slot."""
        existing_pool_ids = [e.virtual_pool_id for e in self.store.entities if e.virtual_pool_id]
        entity = Entity(
            id=str(uuid4()),
            attributes=dict(attributes),
            virtual_pool_id=next_pool_id(existing_pool_ids),
        )
        self.store.add_entity(entity)
        logger.info("Entity added entity_id=%s pool_id=%s", entity.id, entity.virtual_pool_id)

        if push and self.client is not None:
            await self._push_single(entity.id)
        return self.store.require_entity(entity.id)

    async def _push_single(self, entity_id: str) -> None:
        client = self._require_client()
        self.store.update_sync_status([entity_id], SyncStatus.PENDING)
        entity = self.store.require_entity(entity_id)
        try:
            await self._with_retry("Push entity", lambda: client.push_one(entity))
        except RemoteError as exc:
            self.store.update_sync_status([entity_id], SyncStatus.ERROR)
            logger.error("Push failed entity_id=%s error=%s", entity_id, exc)
            raise
        except Exception:
            self.store.update_sync_status([entity_id], SyncStatus.ERROR)
            logger.exception("Push failed unexpectedly entity_id=%s", entity_id)
            raise
        self.store.update_sync_status([entity_id], SyncStatus.SYNCED, synced_at=_utcnow())

    def _check_space_free(self, space_id: str, moving: Iterable[str]) -> None:
        holder = self.store.entity_holding(space_id)
        if holder is not None and holder.id not in set(moving):
            raise ValidationError(
                f"Space {space_id} is already assigned to entity {holder.id}"
            )

    # --- Assignment ---

    async def assign_space_to_person(
        self, entity_id: str, space_id: str, push: bool = True
    ) -> bool:
        """
        Assign one space. Returns True once the remote push is confirmed,
        False when no push was made (push=False or local-only mode).

        A remote failure marks the entity ERROR and is re-raised; the local
        assignment is kept either way.
        """
        space_id = (space_id or "").strip()
        if not space_id:
            raise ValidationError("space_id is required")
        entity = self.store.require_entity(entity_id)
        self._check_space_free(space_id, [entity_id])
        if not entity.is_assigned:
            ensure_capacity(self.store.capacity_pool, 1)

        remote = push and self.client is not None
        old_space_id = entity.assigned_space_id
        pool_id = entity.virtual_pool_id if is_pool_id(entity.virtual_pool_id) else None
        logger.info(
            "Assigning space entity_id=%s space_id=%s old_space_id=%s push=%s",
            entity_id, space_id, old_space_id, remote,
        )

        if remote and old_space_id and old_space_id != space_id:
            # Keep the remote side from showing one identity on two spaces
            await self._clear_best_effort([old_space_id], {old_space_id: entity})
        if remote and pool_id:
            await self._clear_best_effort([pool_id], {pool_id: entity})

        self.store.assign_space(entity_id, space_id)

        if not remote:
            self.store.update_sync_status([entity_id], SyncStatus.UNSYNCED)
            return False

        if pool_id:
            self.store.update_entity(entity_id, {"virtual_pool_id": None})
        await self._push_single(entity_id)
        logger.info("Assignment synced entity_id=%s space_id=%s", entity_id, space_id)
        return True

    async def unassign_space(self, entity_id: str, push: bool = True) -> CleanupResult:
        """Clear the remote article best-effort, then clear locally."""
        entity = self.store.require_entity(entity_id)
        space_id = entity.assigned_space_id
        if space_id is None:
            return CleanupResult()

        cleanup = CleanupResult()
        if push:
            cleanup = await self._clear_best_effort([space_id], {space_id: entity})
        self.store.unassign_space(entity_id)
        logger.info("Space unassigned entity_id=%s space_id=%s", entity_id, space_id)
        return cleanup

    def _validate_batch(self, pairs: Sequence[Tuple[str, str]]) -> int:
        """Check a bulk batch without mutating. Returns the new allocations it needs."""
        entity_ids = [p[0] for p in pairs]
        space_ids = [p[1] for p in pairs]
        if len(set(entity_ids)) != len(entity_ids):
            raise ValidationError("An entity appears more than once in the batch")
        if len(set(space_ids)) != len(space_ids):
            raise ValidationError("A space appears more than once in the batch")
        if any(not s for s in space_ids):
            raise ValidationError("space_id is required for every pair")

        new_allocations = 0
        for entity_id, space_id in pairs:
            entity = self.store.require_entity(entity_id)
            self._check_space_free(space_id, entity_ids)
            if not entity.is_assigned:
                new_allocations += 1
        return new_allocations

    async def bulk_assign_spaces(
        self, pairs: Sequence[Tuple[str, str]], push: bool = True
    ) -> BatchPushResult:
        """
        Assign many spaces at once.

        CapacityExceeded (or any validation error) aborts the whole batch
        before anything changes. Status is all-or-nothing for the batch.
        """
        pairs = [(str(e), str(s).strip()) for e, s in pairs]
        ensure_capacity(self.store.capacity_pool, self._validate_batch(pairs))

        entity_ids = [p[0] for p in pairs]
        targets = {p[1] for p in pairs}
        previous = {e.id: e for e in (self.store.require_entity(i) for i in entity_ids)}
        vacated = {
            e.assigned_space_id: e for e in previous.values()
            if e.assigned_space_id and e.assigned_space_id not in targets
        }

        pooled = {
            e.virtual_pool_id: e for e in previous.values() if is_pool_id(e.virtual_pool_id)
        }

        logger.info("Bulk assigning count=%d push=%s", len(pairs), push)
        remote = push and self.client is not None
        cleanup = None
        to_clear = {**vacated, **pooled} if remote else {}
        if to_clear:
            cleanup = await self._clear_best_effort(
                sorted(to_clear, key=_space_sort_key), to_clear
            )

        self.store.assign_spaces(pairs)

        if not remote:
            self.store.update_sync_status(entity_ids, SyncStatus.UNSYNCED)
            return BatchPushResult(success=True, entity_ids=entity_ids)

        for entity in pooled.values():
            self.store.update_entity(entity.id, {"virtual_pool_id": None})
        result = await self._push_batch(entity_ids, "Bulk assign")
        result.cleanup = cleanup
        return result

    async def push_entities(self, entity_ids: Sequence[str]) -> BatchPushResult:
        """Upsert the given entities as they are."""
        for entity_id in entity_ids:
            self.store.require_entity(entity_id)
        return await self._push_batch(list(entity_ids), "Push selected")

    async def push_all_assignments(self) -> BatchPushResult:
        ids = [e.id for e in self.store.assigned_entities()]
        return await self._push_batch(ids, "Push all assignments")

    async def cancel_all_assignments(self) -> CleanupResult:
        """
        Vacate every assigned space. Remote first, then local; a remote
        failure is reported but the local clear always happens.
        """
        assigned = self.store.assigned_entities()
        if not assigned:
            logger.info("No assignments to cancel")
            return CleanupResult()

        hints = {e.assigned_space_id: e for e in assigned}
        space_ids = sorted(hints, key=_space_sort_key)
        logger.info("Cancelling all assignments count=%d", len(space_ids))

        cleanup = CleanupResult()
        if self.client is not None:
            cleanup = await self._clear_best_effort(space_ids, hints)
        self.store.unassign_all()
        return cleanup

    def set_total_spaces(self, total_spaces: int) -> CapacityPool:
        self.store.set_total_spaces(total_spaces)
        return self.store.capacity_pool

    # --- Pull ---

    async def sync_from_remote(self) -> List[Entity]:
        """
        Replace the local entity set with the remote one.

        Pages are fetched until a short page; the store is replaced once at
        the end, so observers never see a partial set.
        """
        client = self._require_client()
        page_size = self.config.page_size
        articles = []
        page = 0
        while True:
            batch = await self._with_retry(
                "Fetch articles", lambda: client.fetch_page(page, page_size)
            )
            articles.extend(batch)
            if len(batch) < page_size:
                break
            page += 1
        logger.info("Articles fetched count=%d pages=%d", len(articles), page + 1)

        now = _utcnow()
        by_id: Dict[str, Entity] = {}
        for article in articles:
            entity = article_to_entity(article, client.mapping, now=now)
            if entity is None:
                continue
            seen = by_id.get(entity.id)
            if seen is not None:
                logger.warning(
                    "Entity on two articles entity_id=%s articles=%s,%s",
                    entity.id, seen.remote_article_id(), entity.remote_article_id(),
                )
                if seen.is_assigned or not entity.is_assigned:
                    continue
            by_id[entity.id] = entity

        entities = list(by_id.values())
        self.store.set_entities(entities)
        self._register_remote_lists(entities)
        logger.info("Sync from remote complete entities=%d", len(entities))
        return self.store.entities

    def _register_remote_lists(self, entities: List[Entity]) -> None:
        """Create list entries for memberships that no local list covers yet."""
        names: List[str] = []
        for entity in entities:
            for name in entity.list_names():
                if name not in names:
                    names.append(name)

        for storage_name in names:
            if self.store.find_list_by_storage_name(storage_name):
                continue
            members = [
                e.model_copy(update={
                    "assigned_space_id": e.membership_for(storage_name).space_id
                })
                for e in entities if e.membership_for(storage_name)
            ]
            self.store.upsert_list(PeopleList(
                id=f"list_{uuid4().hex[:12]}",
                display_name=to_display_name(storage_name),
                storage_name=storage_name,
                created_at=_utcnow(),
                entities=members,
                from_remote=True,
            ))
            logger.info("Discovered remote list storage_name=%s members=%d", storage_name, len(members))

    # --- Lists ---

    def _capture_with_membership(self, storage_name: str) -> List[Entity]:
        captured = [
            e.with_membership(storage_name, e.assigned_space_id) for e in self.store.entities
        ]
        self.store.set_entities(captured)
        return captured

    def save_list(self, name: str) -> PeopleList:
        """Snapshot the active entity set under `name` and make it active."""
        display_name = validate_list_name(name)
        storage_name = to_storage_name(display_name)
        existing = self.store.find_list_by_storage_name(storage_name)

        captured = self._capture_with_membership(storage_name)
        now = _utcnow()
        people_list = PeopleList(
            id=existing.id if existing else f"list_{uuid4().hex[:12]}",
            display_name=display_name,
            storage_name=storage_name,
            created_at=existing.created_at if existing else now,
            updated_at=now if existing else None,
            entities=captured,
        )
        self.store.upsert_list(people_list)
        self.store.set_active_list(people_list.id)
        logger.info(
            "List saved list_id=%s storage_name=%s count=%d",
            people_list.id, storage_name, len(captured),
        )
        return people_list

    def update_list(self, list_id: Optional[str] = None) -> PeopleList:
        """Re-capture the active entity set into an existing list."""
        list_id = list_id or self.store.active_list_id
        if list_id is None:
            raise ValidationError("No active list to update")
        people_list = self.store.get_list(list_id)
        if people_list is None:
            raise NotFoundError(f"List not found: {list_id}")

        captured = self._capture_with_membership(people_list.storage_name)
        updated = people_list.model_copy(update={
            "entities": captured,
            "updated_at": _utcnow(),
            "from_remote": False,
        })
        self.store.upsert_list(updated)
        self.store.set_active_list(list_id)
        logger.info("List updated list_id=%s count=%d", list_id, len(captured))
        return updated

    def delete_list(self, list_id: str) -> bool:
        people_list = self.store.get_list(list_id)
        if people_list is None:
            raise NotFoundError(f"List not found: {list_id}")

        entities = self.store.entities
        if any(e.membership_for(people_list.storage_name) for e in entities):
            self.store.set_entities(
                [e.without_membership(people_list.storage_name) for e in entities]
            )
        self.store.delete_list(list_id)
        logger.info("List deleted list_id=%s storage_name=%s", list_id, people_list.storage_name)
        return True

    async def load_list(self, list_id: str) -> LoadListResult:
        """
        Switch the active list.

        1. clear spaces held now but not by the target list (best-effort)
        2. replace the local entity set with the list snapshot
        3. push every assigned entity of the target list
        """
        target = self.store.get_list(list_id)
        if target is None:
            raise NotFoundError(f"List not found: {list_id}")

        current_assigned = occupied_space_ids(self.store.entities)
        target_assigned = occupied_space_ids(target.entities)
        to_clear = sorted(current_assigned - target_assigned, key=_space_sort_key)
        logger.info(
            "Loading list list_id=%s entities=%d to_clear=%s",
            list_id, len(target.entities), to_clear,
        )

        cleanup = await self._clear_best_effort(to_clear)

        self.store.set_entities(target.entities)
        self.store.set_active_list(list_id)

        assigned_ids = [e.id for e in target.entities if e.assigned_space_id]
        push = None
        if self.client is None:
            self.store.update_sync_status(assigned_ids, SyncStatus.UNSYNCED)
        elif assigned_ids:
            push = await self._push_batch(assigned_ids, "Load list")

        return LoadListResult(
            list_id=list_id,
            entity_count=len(target.entities),
            cleanup=cleanup,
            push=push,
        )
