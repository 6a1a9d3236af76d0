"""Tests for the Remote Sync Client and the auth client over a mock transport."""

import json

import httpx
import pytest

from space_sync.errors import AuthExpired, RemoteUnavailable
from space_sync.models.config import RemoteConfig
from space_sync.models.entity import Entity
from space_sync.models.remote import ArticleMapping
from space_sync.remote.articles import PERSON_UUID_KEY
from space_sync.remote.auth import RemoteAuthClient
from space_sync.remote.client import RemoteSyncClient

CONFIG = RemoteConfig(
    base_url="https://labels.test",
    company="ACME",
    store="01",
    username="ops@acme.test",
    password="secret",
)


class StaticTokens:
    def __init__(self, token="tok-1", expired=False):
        self.token = token
        self.expired = expired

    def require_token(self) -> str:
        if self.expired:
            raise AuthExpired("expired")
        return self.token


def _make_client(handler, tokens=None, mapping=None) -> RemoteSyncClient:
    http = httpx.AsyncClient(
        base_url=CONFIG.api_root, transport=httpx.MockTransport(handler)
    )
    return RemoteSyncClient(
        CONFIG, tokens or StaticTokens(), mapping=mapping or ArticleMapping(), http_client=http
    )


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"articleList": [
                {"articleId": "1", "data": {"NAME": "Dana"}},
            ]})

        client = _make_client(handler)
        articles = await client.fetch_page(2, 100)

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/common/api/v2/common/config/article/info"
        assert request.url.params["company"] == "ACME"
        assert request.url.params["store"] == "01"
        assert request.url.params["page"] == "2"
        assert request.url.params["size"] == "100"
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert [a.article_id for a in articles] == ["1"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_page(self):
        client = _make_client(lambda request: httpx.Response(200, content=b""))
        assert await client.fetch_page(0, 100) == []

    @pytest.mark.asyncio
    async def test_bare_list_body(self):
        client = _make_client(
            lambda request: httpx.Response(200, json=[{"articleId": "3", "data": {}}])
        )
        articles = await client.fetch_page(0, 100)
        assert articles[0].article_id == "3"

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = _make_client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_page(0, 100)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        client = _make_client(lambda request: httpx.Response(401))
        with pytest.raises(AuthExpired):
            await client.fetch_page(0, 100)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _make_client(handler)
        with pytest.raises(RemoteUnavailable):
            await client.fetch_page(0, 100)


class TestWrites:
    def setup_method(self):
        self.requests = []

    def _handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"responseCode": "200"})

    @pytest.mark.asyncio
    async def test_push_many_single_request(self):
        client = _make_client(self._handler)
        await client.push_many([
            Entity(id="a", attributes={"NAME": "A"}, assigned_space_id="1"),
            Entity(id="b", attributes={"NAME": "B"}, assigned_space_id="2"),
        ])
        assert len(self.requests) == 1
        request = self.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/common/api/v2/common/articles"
        body = json.loads(request.content)
        assert [a["articleId"] for a in body] == ["1", "2"]
        assert body[0]["data"][PERSON_UUID_KEY] == "a"

    @pytest.mark.asyncio
    async def test_empty_batches_send_nothing(self):
        client = _make_client(self._handler)
        await client.push_many([])
        await client.clear_many([])
        assert self.requests == []

    @pytest.mark.asyncio
    async def test_clear_one_blanks_hinted_fields(self):
        client = _make_client(self._handler)
        hint = Entity(id="a", attributes={"NAME": "A", "TITLE": "Dr"}, assigned_space_id="4")
        await client.clear_one("4", hint)
        body = json.loads(self.requests[0].content)
        assert body[0]["articleId"] == "4"
        assert body[0]["data"]["NAME"] == ""
        assert body[0]["data"]["TITLE"] == ""

    @pytest.mark.asyncio
    async def test_clear_many(self):
        client = _make_client(self._handler)
        await client.clear_many(["1", "3"])
        body = json.loads(self.requests[0].content)
        assert [a["articleId"] for a in body] == ["1", "3"]

    @pytest.mark.asyncio
    async def test_expired_token_sends_nothing(self):
        client = _make_client(self._handler, tokens=StaticTokens(expired=True))
        with pytest.raises(AuthExpired):
            await client.push_one(Entity(id="a", assigned_space_id="1"))
        assert self.requests == []


class TestAuthClient:
    @pytest.mark.asyncio
    async def test_login(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"responseMessage": {
                "access_token": "a1", "refresh_token": "r1", "expires_in": 3600,
            }})

        http = httpx.AsyncClient(base_url=CONFIG.api_root, transport=httpx.MockTransport(handler))
        auth = RemoteAuthClient(CONFIG, http_client=http)
        tokens = await auth.login()

        assert seen[0].url.path == "/common/api/v2/token"
        assert json.loads(seen[0].content) == {"username": "ops@acme.test", "password": "secret"}
        assert tokens.access_token == "a1"
        assert tokens.refresh_token == "r1"

    @pytest.mark.asyncio
    async def test_refresh(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"responseMessage": {
                "access_token": "a2", "expires_in": 3600,
            }})

        http = httpx.AsyncClient(base_url=CONFIG.api_root, transport=httpx.MockTransport(handler))
        tokens = await RemoteAuthClient(CONFIG, http_client=http).refresh("r1")
        assert seen[0].url.path == "/common/api/v2/token/refresh"
        assert json.loads(seen[0].content) == {"refreshToken": "r1"}
        assert tokens.access_token == "a2"

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        http = httpx.AsyncClient(
            base_url=CONFIG.api_root,
            transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad")),
        )
        with pytest.raises(AuthExpired):
            await RemoteAuthClient(CONFIG, http_client=http).login()

    @pytest.mark.asyncio
    async def test_unreadable_token(self):
        http = httpx.AsyncClient(
            base_url=CONFIG.api_root,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"foo": 1})),
        )
        with pytest.raises(RemoteUnavailable):
            await RemoteAuthClient(CONFIG, http_client=http).login()
