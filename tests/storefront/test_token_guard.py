import asyncio
from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.errors import SessionStoreUnavailable
from storefront.token_guard import KEY_PREFIX, CommitmentDraft, CommitmentTokenGuard

pytestmark = pytest.mark.anyio


@pytest.fixture
def draft(buyer):
    return CommitmentDraft(
        buyer=buyer,
        ordered_items={"A": 3},
        summary_text="A: 3 x 50 = 150\nShipping: 65",
        computed_total=215,
        created_at=datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc),
    )


class TestIssue:
    async def test_issue_assigns_fresh_token_and_stores_draft(self, guard, draft):
        issued = await guard.issue("sess-1", draft)

        assert issued.token
        assert issued.ordered_items == {"A": 3}
        assert await guard.pending("sess-1") == issued

    async def test_tokens_are_unique(self, guard, draft):
        first = await guard.issue("sess-1", draft)
        second = await guard.issue("sess-2", draft)

        assert first.token != second.token

    async def test_draft_expires_with_session(self, guard, redis, draft):
        await guard.issue("sess-1", draft)

        ttl = await redis.ttl(f"{KEY_PREFIX}sess-1")

        assert 0 < ttl <= 300

    async def test_new_draft_supersedes_pending_one(self, guard, draft):
        old = await guard.issue("sess-1", draft)
        new = await guard.issue("sess-1", draft.model_copy(update={"ordered_items": {"B": 1}}))

        assert await guard.consume("sess-1", old.token) is None
        consumed = await guard.consume("sess-1", new.token)
        assert consumed.ordered_items == {"B": 1}


class TestConsume:
    async def test_valid_token_is_consumed_once(self, guard, draft):
        issued = await guard.issue("sess-1", draft)

        assert await guard.consume("sess-1", issued.token) == issued
        assert await guard.consume("sess-1", issued.token) is None
        assert await guard.pending("sess-1") is None

    async def test_mismatched_token_keeps_pending_draft(self, guard, draft):
        issued = await guard.issue("sess-1", draft)

        assert await guard.consume("sess-1", "forged-token") is None
        assert await guard.pending("sess-1") == issued

    async def test_token_is_bound_to_its_session(self, guard, draft):
        issued = await guard.issue("sess-1", draft)

        assert await guard.consume("sess-2", issued.token) is None
        assert await guard.pending("sess-1") == issued

    async def test_no_pending_draft(self, guard):
        assert await guard.consume("sess-1", "anything") is None

    async def test_empty_token_is_invalid(self, guard, draft):
        await guard.issue("sess-1", draft)

        assert await guard.consume("sess-1", "") is None

    async def test_concurrent_consumes_succeed_at_most_once(self, guard, draft):
        issued = await guard.issue("sess-1", draft)

        results = await asyncio.gather(
            *(guard.consume("sess-1", issued.token) for _ in range(5))
        )

        assert sum(r is not None for r in results) == 1


class BrokenRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


class TestStoreFailures:
    async def test_issue_reports_unavailable_session_store(self, draft):
        guard = CommitmentTokenGuard(BrokenRedis())

        with pytest.raises(SessionStoreUnavailable):
            await guard.issue("sess-1", draft)

    async def test_pending_reports_unavailable_session_store(self):
        guard = CommitmentTokenGuard(BrokenRedis())

        with pytest.raises(SessionStoreUnavailable):
            await guard.pending("sess-1")
