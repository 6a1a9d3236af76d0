"""
Article codec — translation between Entities and remote article records.

Pushed articles carry cross-device metadata in reserved `data` keys so that
a later pull can rebuild the same entity (stable id, pool slot, list
memberships). Reserved keys are stripped from `attributes` on the way back.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from space_sync.capacity.virtual_pool import is_pool_id
from space_sync.models.entity import Entity, ListMembership, SyncStatus
from space_sync.models.remote import ArticleMapping, RemoteArticle

logger = logging.getLogger(__name__)

PERSON_UUID_KEY = "__PERSON_UUID__"
VIRTUAL_SPACE_KEY = "__VIRTUAL_SPACE__"
LAST_MODIFIED_KEY = "__LAST_MODIFIED__"
LIST_MEMBERSHIPS_KEY = "_LIST_MEMBERSHIPS_"
LEGACY_LIST_NAME_KEY = "_LIST_NAME_"
LEGACY_LIST_SPACE_KEY = "_LIST_SPACE_"

METADATA_KEYS = (
    PERSON_UUID_KEY,
    VIRTUAL_SPACE_KEY,
    LAST_MODIFIED_KEY,
    LIST_MEMBERSHIPS_KEY,
)
LEGACY_KEYS = (LEGACY_LIST_NAME_KEY, LEGACY_LIST_SPACE_KEY)


def _is_reserved(key: str) -> bool:
    return key.startswith("__") or key in (LIST_MEMBERSHIPS_KEY,) + LEGACY_KEYS


def _root_fields(article: dict, data: Dict[str, str], mapping: ArticleMapping) -> dict:
    if mapping.article_name_field and data.get(mapping.article_name_field):
        article["articleName"] = data[mapping.article_name_field]
    if mapping.store_field and data.get(mapping.store_field):
        article["store"] = data[mapping.store_field]
    return article


def build_article(
    entity: Entity,
    mapping: ArticleMapping,
    with_metadata: bool = True,
    now: Optional[datetime] = None,
) -> dict:
    """Full upsert payload for one entity."""
    article_id = entity.remote_article_id()
    data: Dict[str, str] = dict(entity.attributes)
    data.update(mapping.global_fields)
    data[mapping.article_id_field] = article_id

    if with_metadata:
        data[PERSON_UUID_KEY] = entity.id
        data[VIRTUAL_SPACE_KEY] = entity.virtual_pool_id or article_id
        data[LAST_MODIFIED_KEY] = (now or datetime.now(timezone.utc)).isoformat()
        data[LIST_MEMBERSHIPS_KEY] = (
            json.dumps([
                {"listName": m.list_name, "spaceId": m.space_id}
                for m in entity.list_memberships
            ])
            if entity.list_memberships else ""
        )

    article = {"articleId": article_id, "articleName": article_id, "data": data}
    return _root_fields(article, data, mapping)


def build_empty_article(
    space_id: str,
    mapping: ArticleMapping,
    field_keys: Iterable[str] = (),
) -> dict:
    """
    Payload that vacates `space_id` without deleting the article.

    Identifying and metadata fields are blanked; the article id and the
    global field assignments are kept.
    """
    data: Dict[str, str] = {key: "" for key in field_keys if not _is_reserved(key)}
    for key in METADATA_KEYS:
        data[key] = ""
    data.update({k: v for k, v in mapping.global_fields.items() if v})
    data[mapping.article_id_field] = space_id

    article = {"articleId": space_id, "articleName": "", "data": data}
    if mapping.store_field and mapping.global_fields.get(mapping.store_field):
        article["store"] = mapping.global_fields[mapping.store_field]
    return article


def _parse_memberships(data: Dict[str, str]) -> List[ListMembership]:
    raw = data.get(LIST_MEMBERSHIPS_KEY)
    if raw:
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable list memberships value=%r", raw)
            items = []
        memberships: List[ListMembership] = []
        seen = set()
        for item in items if isinstance(items, list) else []:
            name = item.get("listName") if isinstance(item, dict) else None
            if not name or name in seen:
                continue
            seen.add(name)
            memberships.append(ListMembership(list_name=name, space_id=item.get("spaceId") or None))
        return memberships

    legacy_name = data.get(LEGACY_LIST_NAME_KEY)
    if legacy_name:
        return [ListMembership(
            list_name=legacy_name, space_id=data.get(LEGACY_LIST_SPACE_KEY) or None
        )]
    return []


def has_content(data: Dict[str, str], mapping: ArticleMapping) -> bool:
    """True if the article holds anything beyond its id and global fields."""
    for key, value in data.items():
        if key == mapping.article_id_field or key in mapping.global_fields:
            continue
        if _is_reserved(key):
            continue
        if value and value.strip():
            return True
    return False


def article_to_entity(
    article: RemoteArticle,
    mapping: ArticleMapping,
    now: Optional[datetime] = None,
) -> Optional[Entity]:
    """
    Map a pulled article to an Entity, or None for an empty (vacated) article.

    Pool ids become `virtual_pool_id`; any other id is a physical space
    and becomes `assigned_space_id`.
    """
    data = article.data
    if not has_content(data, mapping):
        return None

    attributes = {k: v for k, v in data.items() if not _is_reserved(k)}
    attributes.setdefault(mapping.article_id_field, article.article_id)

    pooled = is_pool_id(article.article_id)
    pool_slot = article.article_id if pooled else data.get(VIRTUAL_SPACE_KEY)
    if not is_pool_id(pool_slot):
        pool_slot = None

    synced_at = now or datetime.now(timezone.utc)
    if data.get(LAST_MODIFIED_KEY):
        try:
            synced_at = datetime.fromisoformat(data[LAST_MODIFIED_KEY].replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Ignoring malformed %s value=%r", LAST_MODIFIED_KEY, data[LAST_MODIFIED_KEY])

    return Entity(
        id=data.get(PERSON_UUID_KEY) or str(uuid4()),
        attributes=attributes,
        assigned_space_id=None if pooled else article.article_id,
        virtual_pool_id=pool_slot,
        sync_status=SyncStatus.SYNCED,
        last_synced_at=synced_at,
        list_memberships=_parse_memberships(data),
    )
