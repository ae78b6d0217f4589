"""
Storefront Service — FastAPI エントリーポイント

購入者向けの最小限の API。画面描画は持たない。

  ┌──────────┐  在庫取得・照合   ┌──────────────┐     ┌──────────────┐
  │ Browser  │ ────────────────▶ │  Storefront  │────▶│ Ledger (DB)  │
  │ (カート) │  下書き・確定     │              │     └──────────────┘
  └──────────┘ ────────────────▶ │              │────▶ Redis (下書き)
                                 └──────┬───────┘
                                        │ order_events (Pub/Sub)
                                 ┌──────▼───────┐
                                 │   Notifier   │  Discord / メール
                                 └──────────────┘

セッションは sid クッキーで識別し、確認待ちの下書きを Redis に 1 つだけ置く。
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Literal

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .cart import CartLine, StockAdjustment
from .committer import OrderCommitter
from .errors import DuplicateSubmission, LedgerUnavailable, StorefrontError
from .ledger import Ledger
from .notifier import OrderNotifier
from .schema import create_schema
from .token_guard import BuyerInfo, CommitmentTokenGuard

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
SHIPPING_FEE = int(os.environ.get("SHIPPING_FEE", "65"))
DRAFT_TTL_SECONDS = int(os.environ.get("DRAFT_TTL_SECONDS", "300"))
LEDGER_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "10"))
ORDER_TIMEZONE = os.environ.get("ORDER_TIMEZONE", "Asia/Taipei")
SESSION_COOKIE = "sid"

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
ledger = Ledger(async_session, timeout=LEDGER_TIMEOUT_SECONDS)
committer: OrderCommitter | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global committer
    await create_schema(engine)
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    committer = OrderCommitter(
        ledger,
        CommitmentTokenGuard(redis_pool, ttl_seconds=DRAFT_TTL_SECONDS),
        OrderNotifier(redis_pool),
        shipping_fee=SHIPPING_FEE,
        timezone=ORDER_TIMEZONE,
    )
    yield
    await committer.drain()
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Service", lifespan=lifespan)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if isinstance(exc, LedgerUnavailable):
        logger.warning("Ledger unavailable on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_committer() -> OrderCommitter:
    if committer is None:
        raise RuntimeError("Storefront service is not started")
    return committer


def get_session_id(request: Request, response: Response) -> str:
    """sid クッキーを読み、なければ発行する。"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=DRAFT_TTL_SECONDS,
            httponly=True,
            samesite="lax",
        )
    return session_id


# ── Request / Response Models ────────────────────


class ReconcileRequest(BaseModel):
    cart: dict[str, CartLine]


class ReconcileResponse(BaseModel):
    cart: dict[str, CartLine]
    events: list[StockAdjustment]


class SubmitDraftRequest(BaseModel):
    buyer: BuyerInfo
    # 商品コード → 数量。単価や合計は受け取らない
    quantities: dict[str, Any]


class ConfirmDraftRequest(BaseModel):
    token: str
    action: Literal["confirm", "cancel"]


# ── カート ──────────────────────────────────────


@app.get("/api/inventory")
async def fetch_inventory_snapshot(svc: OrderCommitter = Depends(get_committer)):
    """最新の在庫 {code: stock}（副作用なし）"""
    return await svc.snapshot()


@app.post("/api/cart/reconcile", response_model=ReconcileResponse)
async def reconcile_cart(
    req: ReconcileRequest,
    svc: OrderCommitter = Depends(get_committer),
):
    """クライアントのカートを最新在庫に合わせて返す"""
    cart, events = await svc.reconcile_cart(req.cart)
    return ReconcileResponse(cart=cart, events=events)


# ── 注文 ────────────────────────────────────────


@app.post("/api/orders/draft")
async def submit_draft(
    req: SubmitDraftRequest,
    session_id: str = Depends(get_session_id),
    svc: OrderCommitter = Depends(get_committer),
):
    """下書きを作成して確定用トークンを返す"""
    draft = await svc.submit_draft(session_id, req.buyer, req.quantities)
    return {
        "token": draft.token,
        "ordered_items": draft.ordered_items,
        "summary_text": draft.summary_text,
        "total_amount": draft.computed_total,
    }


@app.post("/api/orders/confirm")
async def confirm_draft(
    req: ConfirmDraftRequest,
    request: Request,
    svc: OrderCommitter = Depends(get_committer),
):
    """下書きを確定またはキャンセルする（トークンは一度だけ有効）"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        raise DuplicateSubmission()
    record = await svc.confirm_draft(session_id, req.token, req.action)
    if record is None:
        return {"status": "cancelled"}
    return {
        "status": "confirmed",
        "order_id": record.order_id,
        "summary_text": record.summary_text,
        "total_amount": record.total_amount,
    }


@app.get("/api/orders/{order_id}")
async def query_order(order_id: str, svc: OrderCommitter = Depends(get_committer)):
    return await svc.query_order(order_id)


# ── 台帳の監査ログ ──────────────────────────────


@app.get("/api/ledger/events/{aggregate_id}")
async def get_ledger_events(aggregate_id: str, svc: OrderCommitter = Depends(get_committer)):
    return await svc.ledger.load_events(aggregate_id)


@app.get("/_ah/warmup")
async def warmup(svc: OrderCommitter = Depends(get_committer)):
    """台帳への接続を温めておく"""
    try:
        await svc.ledger.get_stock()
    except LedgerUnavailable:
        logger.exception("Warmup failed")
        return {"status": "degraded"}
    return {"status": "ok"}


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront-service"}
