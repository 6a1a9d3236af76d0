"""
Remote Sync Client — assignment operations as calls to the label service.

Behavioral Contract:
- Holds configuration only; no assignment state lives here.
- Never retries. Retry and backoff belong to the Assignment Controller so
  every state transition stays visible in the Assignment Store.
- Fails fast with AuthExpired, without sending a request, when no usable
  bearer token is available.
- Transport failures and non-2xx responses raise RemoteUnavailable;
  401/403 raise AuthExpired.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from space_sync.errors import AuthExpired, RemoteUnavailable
from space_sync.models.config import RemoteConfig
from space_sync.models.entity import Entity
from space_sync.models.remote import ArticleMapping, RemoteArticle
from space_sync.remote.articles import build_article, build_empty_article

logger = logging.getLogger(__name__)

ARTICLE_INFO_PATH = "/common/config/article/info"
ARTICLES_PATH = "/common/articles"


class TokenProvider(Protocol):
    def require_token(self) -> str:
        ...


def build_http_client(config: RemoteConfig) -> httpx.AsyncClient:
    timeout = httpx.Timeout(
        config.request_timeout_seconds,
        connect=config.connect_timeout_seconds,
    )
    return httpx.AsyncClient(base_url=config.api_root, timeout=timeout)


def raise_for_remote_status(response: httpx.Response, action: str) -> None:
    """Translate an HTTP error status into the engine's error taxonomy."""
    if response.status_code < 400:
        return
    body = response.text[:500]
    if response.status_code in (401, 403):
        raise AuthExpired(f"{action} rejected with {response.status_code}: {body}")
    raise RemoteUnavailable(
        f"{action} failed with {response.status_code}: {body}",
        status_code=response.status_code,
    )


class RemoteSyncClient:
    """Translates entity operations into article reads and upserts."""

    def __init__(
        self,
        config: RemoteConfig,
        tokens: TokenProvider,
        mapping: Optional[ArticleMapping] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.mapping = mapping or ArticleMapping()
        self._tokens = tokens
        self._http = http_client or build_http_client(config)

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def _scope(self) -> Dict[str, str]:
        return {"company": self.config.company, "store": self.config.store}

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        token = self._tokens.require_token()
        try:
            response = await self._http.request(
                method,
                path,
                params={**self._scope, **(params or {})},
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("%s transport error: %s", action, exc)
            raise RemoteUnavailable(f"{action} failed: {exc}") from exc
        raise_for_remote_status(response, action)
        return response

    # --- Reads ---

    async def fetch_page(self, page: int, page_size: int) -> List[RemoteArticle]:
        """
        One page of article records. A page shorter than `page_size`
        marks the end of the stream.
        """
        response = await self._request(
            "GET",
            ARTICLE_INFO_PATH,
            "Fetch articles",
            params={"page": page, "size": page_size},
        )
        if not response.content or not response.text.strip():
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteUnavailable("Invalid JSON in article listing") from exc

        if isinstance(payload, list):
            items = payload
        else:
            items = (
                payload.get("articleList")
                or payload.get("content")
                or payload.get("data")
                or []
            )
        articles = [RemoteArticle.from_payload(item) for item in items]
        logger.debug("Fetched articles page=%d size=%d count=%d", page, page_size, len(articles))
        return articles

    # --- Writes ---

    async def _post_articles(self, articles: List[dict], action: str) -> None:
        if not articles:
            return
        logger.debug("%s count=%d ids=%s", action, len(articles), [a["articleId"] for a in articles])
        await self._request("POST", ARTICLES_PATH, action, json=articles)

    async def push_one(self, entity: Entity) -> None:
        """Upsert the article addressed by the entity's remote id."""
        await self.push_many([entity])

    async def push_many(self, entities: Sequence[Entity]) -> None:
        """Upsert several articles in one request."""
        articles = [build_article(e, self.mapping) for e in entities]
        await self._post_articles(articles, "Push articles")
        logger.info("Pushed articles count=%d", len(articles))

    async def clear_one(self, space_id: str, entity_hint: Optional[Entity] = None) -> None:
        """
        Blank the identifying fields of one article, keeping the article.
        `entity_hint` supplies the attribute keys to blank.
        """
        keys = entity_hint.attributes.keys() if entity_hint else ()
        await self._post_articles(
            [build_empty_article(space_id, self.mapping, keys)], "Clear article"
        )
        logger.info("Cleared article space_id=%s", space_id)

    async def clear_many(
        self,
        space_ids: Sequence[str],
        hints: Optional[Dict[str, Entity]] = None,
    ) -> None:
        """Blank several articles in one request. `hints` maps space id to its last holder."""
        hints = hints or {}
        articles = [
            build_empty_article(s, self.mapping, hints[s].attributes.keys() if s in hints else ())
            for s in space_ids
        ]
        await self._post_articles(articles, "Clear articles")
        logger.info("Cleared articles count=%d", len(articles))
