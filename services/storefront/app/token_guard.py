"""
Storefront Service — 確定トークンガード (Commitment Token Guard)

セッションごとに「確認待ちの下書き」を最大 1 つだけ持つ状態機械。

    NO_PENDING_DRAFT ──issue──▶ PENDING_DRAFT(token)
    PENDING_DRAFT(t) ──issue──▶ PENDING_DRAFT(t')    (上書き。キューにはしない)
    PENDING_DRAFT(t) ──consume(t)──▶ NO_PENDING_DRAFT

下書きは Redis の 1 キーに JSON で保存し、トークンも同じ値に含める。
consume は WATCH / MULTI / DEL の楽観的トランザクションで行うので、
同じトークンで並行に確定しても成功するのは 1 回だけ。
WATCH 中に別のリクエストが消費・再発行した場合は WatchError となり無効扱い。
"""

import logging
import secrets
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError, WatchError

from .errors import SessionStoreUnavailable

logger = logging.getLogger(__name__)

KEY_PREFIX = "storefront:draft:"


class BuyerInfo(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=320)
    address: str = Field(min_length=1)
    account_last5: str = Field(pattern=r"^\d{5}$")
    facebook: str = ""
    remark: str = ""


class CommitmentDraft(BaseModel):
    token: str = ""
    buyer: BuyerInfo
    ordered_items: dict[str, int]
    summary_text: str
    computed_total: int
    created_at: datetime


def new_token() -> str:
    return secrets.token_urlsafe(16)


class CommitmentTokenGuard:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 300):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    async def issue(self, session_id: str, draft: CommitmentDraft) -> CommitmentDraft:
        """新しいトークンを発行して下書きを保存する。前の下書きは上書きされる。"""
        issued = draft.model_copy(update={"token": new_token()})
        try:
            await self.redis.set(
                self._key(session_id), issued.model_dump_json(), ex=self.ttl_seconds
            )
        except RedisError as e:
            logger.error("Failed to store draft for session %s: %s", session_id, e)
            raise SessionStoreUnavailable(str(e)) from e
        return issued

    async def pending(self, session_id: str) -> CommitmentDraft | None:
        try:
            raw = await self.redis.get(self._key(session_id))
        except RedisError as e:
            raise SessionStoreUnavailable(str(e)) from e
        return CommitmentDraft.model_validate_json(raw) if raw else None

    async def consume(self, session_id: str, token: str) -> CommitmentDraft | None:
        """
        トークンを一度だけ消費する。

        有効なら下書きを返し、キーはこの時点で削除済み。
        不一致・下書きなし・競合負けはすべて None（= 二重送信かセッション切れ）。
        不一致の場合は保存中の下書きには触らない。
        """
        key = self._key(session_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if not raw:
                    await pipe.unwatch()
                    return None
                draft = CommitmentDraft.model_validate_json(raw)
                if not token or not secrets.compare_digest(draft.token.encode(), token.encode()):
                    await pipe.unwatch()
                    return None
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
        except WatchError:
            logger.info("Draft for session %s changed while consuming; treating as replay", session_id)
            return None
        except RedisError as e:
            logger.error("Failed to consume draft for session %s: %s", session_id, e)
            raise SessionStoreUnavailable(str(e)) from e
        return draft
