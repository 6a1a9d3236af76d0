"""Tests for core data models."""

from datetime import datetime, timezone

import pytest

from space_sync.errors import ValidationError
from space_sync.models import (
    LIST_NAME_MAX_LENGTH,
    CapacityPool,
    Entity,
    ListMembership,
    PeopleList,
    RemoteArticle,
    RemoteConfig,
    SyncStatus,
    TokenSet,
    to_display_name,
    to_storage_name,
    validate_list_name,
)


class TestEntity:
    def test_defaults(self):
        entity = Entity(id="e1")
        assert entity.attributes == {}
        assert entity.assigned_space_id is None
        assert entity.sync_status == SyncStatus.UNSYNCED
        assert entity.list_memberships == []
        assert entity.is_assigned is False

    def test_remote_article_id_prefers_physical_space(self):
        entity = Entity(id="e1", assigned_space_id="4", virtual_pool_id="POOL-0001")
        assert entity.remote_article_id() == "4"

    def test_remote_article_id_falls_back_to_pool_then_id(self):
        assert Entity(id="e1", virtual_pool_id="POOL-0002").remote_article_id() == "POOL-0002"
        assert Entity(id="e1").remote_article_id() == "e1"

    def test_legacy_single_list_fields_are_migrated(self):
        entity = Entity.model_validate({
            "id": "e1",
            "list_name": "Morning_Shift",
            "list_space_id": "3",
        })
        assert entity.list_memberships == [
            ListMembership(list_name="Morning_Shift", space_id="3")
        ]

    def test_legacy_camel_case_fields_are_migrated(self):
        entity = Entity.model_validate({"id": "e1", "listName": "Team", "listSpaceId": None})
        assert entity.list_names() == ["Team"]
        assert entity.list_memberships[0].space_id is None

    def test_legacy_field_does_not_duplicate_existing_membership(self):
        entity = Entity.model_validate({
            "id": "e1",
            "list_name": "Team",
            "list_memberships": [{"list_name": "Team", "space_id": "1"}],
        })
        assert len(entity.list_memberships) == 1
        assert entity.list_memberships[0].space_id == "1"

    def test_duplicate_memberships_rejected(self):
        with pytest.raises(Exception):
            Entity(
                id="e1",
                list_memberships=[
                    ListMembership(list_name="A"),
                    ListMembership(list_name="A", space_id="2"),
                ],
            )

    def test_with_membership_replaces_in_place(self):
        entity = Entity(
            id="e1",
            list_memberships=[
                ListMembership(list_name="A", space_id="1"),
                ListMembership(list_name="B", space_id="2"),
            ],
        )
        updated = entity.with_membership("A", "7")
        assert updated.list_names() == ["A", "B"]
        assert updated.membership_for("A").space_id == "7"
        # Original untouched
        assert entity.membership_for("A").space_id == "1"

    def test_without_membership(self):
        entity = Entity(id="e1", list_memberships=[ListMembership(list_name="A")])
        assert entity.without_membership("A").list_memberships == []
        assert entity.membership_for("B") is None


class TestCapacityPool:
    def test_available_spaces(self):
        pool = CapacityPool(total_spaces=10, assigned_spaces=4)
        assert pool.available_spaces == 6

    def test_available_never_negative(self):
        pool = CapacityPool(total_spaces=2, assigned_spaces=5)
        assert pool.available_spaces == 0

    def test_negative_total_rejected(self):
        with pytest.raises(Exception):
            CapacityPool(total_spaces=-1)

    def test_as_dict(self):
        pool = CapacityPool(total_spaces=3, assigned_spaces=1)
        assert pool.as_dict() == {
            "total_spaces": 3,
            "assigned_spaces": 1,
            "available_spaces": 2,
        }


class TestListNames:
    def test_storage_and_display_names(self):
        assert to_storage_name("Morning  Shift") == "Morning_Shift"
        assert to_display_name("Morning_Shift") == "Morning Shift"

    def test_valid_names(self):
        assert validate_list_name("  Team 1 ") == "Team 1"
        assert validate_list_name("צוות א") == "צוות א"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            validate_list_name("   ")

    def test_too_long_rejected(self):
        with pytest.raises(ValidationError):
            validate_list_name("a" * (LIST_NAME_MAX_LENGTH + 1))

    def test_max_length_accepted(self):
        assert validate_list_name("a" * LIST_NAME_MAX_LENGTH)

    def test_punctuation_rejected(self):
        with pytest.raises(ValidationError):
            validate_list_name("Team-1!")

    def test_assigned_space_ids(self):
        people_list = PeopleList(
            id="l1",
            display_name="A",
            storage_name="A",
            created_at=datetime.now(timezone.utc),
            entities=[Entity(id="a", assigned_space_id="1"), Entity(id="b")],
        )
        assert people_list.assigned_space_ids() == {"1"}


class TestRemoteModels:
    def test_article_from_payload(self):
        article = RemoteArticle.from_payload({
            "articleId": "5",
            "data": {"NAME": "Dana", "ROOM": None, "FLOOR": 3},
            "labelCode": ["L1"],
        })
        assert article.article_id == "5"
        assert article.data == {"NAME": "Dana", "ROOM": "", "FLOOR": "3"}
        assert article.label_code == "L1"

    def test_article_from_legacy_payload(self):
        article = RemoteArticle.from_payload({"id": "7", "articleData": {"NAME": "x"}})
        assert article.article_id == "7"
        assert article.data["NAME"] == "x"

    def test_token_from_response_message(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        tokens = TokenSet.from_response(
            {"responseMessage": {
                "access_token": "a", "refresh_token": "r", "expires_in": 3600,
            }},
            now=now,
        )
        assert tokens.access_token == "a"
        assert tokens.refresh_token == "r"
        assert (tokens.expires_at - now).total_seconds() == 3600

    def test_token_from_epoch_millis(self):
        tokens = TokenSet.from_response({"accessToken": "a", "expiresAt": 1767225600000})
        assert tokens.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert tokens.refresh_token is None

    def test_token_from_iso(self):
        tokens = TokenSet.from_response({
            "accessToken": "a",
            "refreshToken": "r",
            "expiresAt": "2026-01-01T00:00:00Z",
        })
        assert tokens.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_token_naive_iso_is_utc(self):
        tokens = TokenSet.from_response({"accessToken": "a", "expiresAt": "2026-01-01T00:00:00"})
        assert tokens.expires_at.tzinfo is not None
        assert tokens.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_token_naive_datetime_is_utc(self):
        tokens = TokenSet(access_token="a", expires_at=datetime(2026, 1, 1))
        assert tokens.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_token_without_expiry_rejected(self):
        with pytest.raises(ValueError):
            TokenSet.from_response({"accessToken": "a"})

    def test_remote_config_api_root(self):
        assert RemoteConfig(base_url="https://x.test/").api_root == "https://x.test/common/api/v2"
        assert (
            RemoteConfig(base_url="https://x.test", cluster="c1").api_root
            == "https://x.test/c1/common/api/v2"
        )
