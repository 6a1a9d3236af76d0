"""
Space Sync API — FastAPI endpoints.

Exposes the Assignment Controller for:
- Entity management
- Space assignment (single, bulk, cancel-all, push)
- Pulling the remote article set
- Capacity
- Saved lists
- Token status
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from space_sync.config import Settings, configure_logging, get_settings
from space_sync.controller.assignment import AssignmentController
from space_sync.errors import (
    AuthExpired,
    CapacityExceeded,
    NotFoundError,
    RemoteUnavailable,
    ValidationError,
)
from space_sync.persistence.kv_store import SQLiteKeyValueStore, StorePersistence
from space_sync.remote.auth import RemoteAuthClient
from space_sync.remote.client import RemoteSyncClient
from space_sync.remote.tokens import TokenLifecycleManager
from space_sync.store.assignment_store import AssignmentStore

logger = logging.getLogger(__name__)


# --- Request Models ---

class EntityCreateRequest(BaseModel):
    attributes: Dict[str, str] = {}
    push: bool = False


class AssignRequest(BaseModel):
    space_id: str
    push: bool = True


class UnassignRequest(BaseModel):
    push: bool = True


class BulkPair(BaseModel):
    entity_id: str
    space_id: str


class BulkAssignRequest(BaseModel):
    assignments: List[BulkPair]
    push: bool = True


class PushRequest(BaseModel):
    entity_ids: Optional[List[str]] = None      # None = every assigned entity


class CapacityRequest(BaseModel):
    total_spaces: int


class ListCreateRequest(BaseModel):
    name: str


# --- Wiring ---

def build_controller(settings: Settings):
    """
    Assemble store, persistence and remote stack from settings.
    Returns (controller, token_manager, persistence); the last two may be None.
    """
    store = AssignmentStore(total_spaces=settings.total_spaces)

    persistence = None
    if settings.db_path:
        persistence = StorePersistence(store, SQLiteKeyValueStore(settings.db_path))
        persistence.restore()
        persistence.attach()

    token_manager = None
    client = None
    if settings.remote_enabled:
        remote_config = settings.remote_config()
        token_manager = TokenLifecycleManager(
            RemoteAuthClient(remote_config), config=settings.token_config()
        )
        client = RemoteSyncClient(
            remote_config, token_manager, mapping=settings.article_mapping()
        )

    controller = AssignmentController(
        store, client=client, config=settings.controller_config()
    )
    return controller, token_manager, persistence


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, **extra},
    )


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CapacityExceeded)
    async def capacity_exceeded(request: Request, exc: CapacityExceeded):
        return _error(409, exc, requested=exc.requested, available=exc.available)

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(422, exc)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(AuthExpired)
    async def auth_expired(request: Request, exc: AuthExpired):
        return _error(401, exc)

    @app.exception_handler(RemoteUnavailable)
    async def remote_unavailable(request: Request, exc: RemoteUnavailable):
        return _error(502, exc, remote_status=exc.status_code)


# --- Application Factory ---

def create_app(
    controller: Optional[AssignmentController] = None,
    token_manager: Optional[TokenLifecycleManager] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    persistence = None
    if controller is None:
        controller, built_tokens, persistence = build_controller(settings)
        token_manager = token_manager or built_tokens

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event = asyncio.Event()
        task = None
        if token_manager is not None:
            if settings.remote_enabled and token_manager.tokens is None:
                try:
                    await token_manager.connect()
                except (AuthExpired, RemoteUnavailable) as exc:
                    logger.warning("Initial login failed: %s", exc)
            task = asyncio.create_task(token_manager.run_async(stop_event))
        try:
            yield
        finally:
            stop_event.set()
            if task is not None:
                await task
            if controller.client is not None:
                await controller.client.aclose()
            if persistence is not None:
                persistence.detach()

    app = FastAPI(
        title=settings.app_title,
        description="Space assignment and synchronization engine",
        version=settings.app_version,
        lifespan=lifespan,
    )
    _register_error_handlers(app)

    # Store components on app state for access in endpoints
    app.state.controller = controller
    app.state.store = controller.store
    app.state.token_manager = token_manager
    app.state.persistence = persistence

    # === ENTITIES ===

    @app.get("/entities")
    def list_entities():
        """All entities in the active set."""
        return [e.model_dump(mode="json") for e in controller.entities]

    @app.post("/entities")
    async def create_entity(req: EntityCreateRequest):
        """Add an entity to the virtual pool."""
        entity = await controller.add_entity(req.attributes, push=req.push)
        return entity.model_dump(mode="json")

    @app.get("/entities/{entity_id}")
    def get_entity(entity_id: str):
        return controller.store.require_entity(entity_id).model_dump(mode="json")

    # === ASSIGNMENTS ===

    @app.post("/entities/{entity_id}/assign")
    async def assign_space(entity_id: str, req: AssignRequest):
        """Assign one space, pushing to the remote service unless push is false."""
        synced = await controller.assign_space_to_person(
            entity_id, req.space_id, push=req.push
        )
        return {
            "synced": synced,
            "entity": controller.store.require_entity(entity_id).model_dump(mode="json"),
        }

    @app.post("/entities/{entity_id}/unassign")
    async def unassign_space(entity_id: str, req: Optional[UnassignRequest] = None):
        req = req or UnassignRequest()
        cleanup = await controller.unassign_space(entity_id, push=req.push)
        return {
            "cleanup": cleanup.model_dump(mode="json"),
            "entity": controller.store.require_entity(entity_id).model_dump(mode="json"),
        }

    @app.post("/assignments/bulk")
    async def bulk_assign(req: BulkAssignRequest):
        pairs = [(p.entity_id, p.space_id) for p in req.assignments]
        result = await controller.bulk_assign_spaces(pairs, push=req.push)
        return result.model_dump(mode="json")

    @app.post("/assignments/cancel-all")
    async def cancel_all():
        cleanup = await controller.cancel_all_assignments()
        return cleanup.model_dump(mode="json")

    @app.post("/assignments/push")
    async def push_assignments(req: Optional[PushRequest] = None):
        """Re-push entities; the manual recovery path for ERROR status."""
        if req is None or req.entity_ids is None:
            result = await controller.push_all_assignments()
        else:
            result = await controller.push_entities(req.entity_ids)
        return result.model_dump(mode="json")

    # === SYNC ===

    @app.post("/sync/pull")
    async def sync_from_remote():
        """Replace local entities with the remote article set."""
        entities = await controller.sync_from_remote()
        return {"count": len(entities), "capacity": controller.capacity_pool.as_dict()}

    # === CAPACITY ===

    @app.get("/capacity")
    def get_capacity():
        return controller.capacity_pool.as_dict()

    @app.put("/capacity")
    def set_capacity(req: CapacityRequest):
        return controller.set_total_spaces(req.total_spaces).as_dict()

    # === LISTS ===

    @app.get("/lists")
    def list_lists():
        return {
            "active_list_id": controller.active_list_id,
            "pending_changes": controller.store.pending_changes,
            "lists": [
                {
                    "id": l.id,
                    "display_name": l.display_name,
                    "storage_name": l.storage_name,
                    "entity_count": len(l.entities),
                    "from_remote": l.from_remote,
                    "created_at": l.created_at.isoformat(),
                    "updated_at": l.updated_at.isoformat() if l.updated_at else None,
                }
                for l in controller.lists
            ],
        }

    @app.post("/lists")
    def save_list(req: ListCreateRequest):
        """Save the active entity set under a name."""
        return controller.save_list(req.name).model_dump(mode="json")

    @app.put("/lists/{list_id}")
    def update_list(list_id: str):
        return controller.update_list(list_id).model_dump(mode="json")

    @app.delete("/lists/{list_id}")
    def delete_list(list_id: str):
        controller.delete_list(list_id)
        return {"status": "deleted", "list_id": list_id}

    @app.post("/lists/{list_id}/load")
    async def load_list(list_id: str):
        result = await controller.load_list(list_id)
        return result.model_dump(mode="json")

    # === AUTH ===

    @app.get("/auth/status")
    def auth_status():
        if token_manager is None:
            return {"remote_enabled": False, "state": "disconnected", "loop": "stopped"}
        return {"remote_enabled": controller.remote_enabled, **token_manager.status_dict()}

    @app.post("/auth/connect")
    async def auth_connect():
        if token_manager is None:
            raise AuthExpired("Remote service is not configured")
        await token_manager.connect()
        return token_manager.status_dict()

    @app.post("/auth/disconnect")
    def auth_disconnect():
        if token_manager is not None:
            token_manager.disconnect()
        return {"state": "disconnected"}

    @app.get("/healthz")
    def health_check():
        return {"status": "ok"}

    return app


app = create_app()
