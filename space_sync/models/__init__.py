"""Space Sync data models."""

from space_sync.models.capacity import CapacityPool
from space_sync.models.config import ControllerConfig, RemoteConfig, TokenConfig
from space_sync.models.entity import Entity, ListMembership, SyncStatus
from space_sync.models.lists import (
    LIST_NAME_MAX_LENGTH,
    PeopleList,
    to_display_name,
    to_storage_name,
    validate_list_name,
)
from space_sync.models.remote import ArticleMapping, RemoteArticle, TokenSet
from space_sync.models.results import BatchPushResult, CleanupResult, LoadListResult

__all__ = [
    "ArticleMapping",
    "BatchPushResult",
    "CapacityPool",
    "CleanupResult",
    "ControllerConfig",
    "Entity",
    "LIST_NAME_MAX_LENGTH",
    "ListMembership",
    "LoadListResult",
    "PeopleList",
    "RemoteArticle",
    "RemoteConfig",
    "SyncStatus",
    "TokenConfig",
    "TokenSet",
    "to_display_name",
    "to_storage_name",
    "validate_list_name",
]
