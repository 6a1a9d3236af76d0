"""Remote-service records: articles, field mapping and bearer tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator


class ArticleMapping(BaseModel):
    """How entity attributes map onto the remote article shape."""

    article_id_field: str = "ARTICLE_ID"
    article_name_field: Optional[str] = None
    store_field: Optional[str] = None
    global_fields: Dict[str, str] = {}      # Applied to every pushed article


class RemoteArticle(BaseModel):
    """One article record as returned by the paginated article listing."""

    article_id: str
    data: Dict[str, str] = {}
    label_code: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "RemoteArticle":
        """Accept both `articleId`/`data` and the older `id`/`articleData` keys."""
        article_id = raw.get("articleId") or raw.get("id") or ""
        data = raw.get("data") or raw.get("articleData") or {}
        label_code = raw.get("labelCode")
        if isinstance(label_code, list):
            label_code = label_code[0] if label_code else None
        return cls(
            article_id=str(article_id),
            data={str(k): "" if v is None else str(v) for k, v in data.items()},
            label_code=label_code,
        )


class TokenSet(BaseModel):
    """Bearer token pair with its absolute expiry."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive expiries are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_response(
        cls, payload: Dict[str, Any], now: Optional[datetime] = None
    ) -> "TokenSet":
        """
        Parse a login/refresh response.

        Two shapes are accepted:
          {"accessToken", "refreshToken", "expiresAt"}  (epoch ms or ISO-8601)
          {"responseMessage": {"access_token", "refresh_token", "expires_in"}}
        """
        now = now or datetime.now(timezone.utc)
        body = payload.get("responseMessage", payload)

        if "access_token" in body:
            return cls(
                access_token=body["access_token"],
                refresh_token=body.get("refresh_token"),
                expires_at=now + timedelta(seconds=float(body.get("expires_in", 0))),
            )

        expires_at = body.get("expiresAt")
        if isinstance(expires_at, (int, float)):
            expires = datetime.fromtimestamp(expires_at / 1000.0, tz=timezone.utc)
        elif isinstance(expires_at, str):
            expires = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
        else:
            raise ValueError("Token response carries no expiry")
        return cls(
            access_token=body["accessToken"],
            refresh_token=body.get("refreshToken"),
            expires_at=expires,
        )
