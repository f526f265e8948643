"""HTTP front end: topics, subscribe, confirm, reject, unsubscribe, publish, health, stats."""

from dotenv import load_dotenv
load_dotenv()

import asyncio
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from notifygate.config import Settings
from notifygate.errors import GatewayError
from notifygate.facade import Gateway
from notifygate.memory_provider import InMemoryProvider
from notifygate.observability import get_logger
from notifygate.protocol import (
    ERROR_UNAUTHORIZED,
    SubscribeResponse,
    TopicCreatedResponse,
    UnsubscribeResponse,
    error_body,
    gateway_error_response,
    health_response,
    stats_response,
    topics_list_response,
)

logger = get_logger("notifygate.server")


class XAPIKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key header; API_KEY must be configured."""

    def __init__(self, app, api_key: str | None) -> None:
        super().__init__(app)
        self._api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if not self._api_key:
            return JSONResponse(
                status_code=503,
                content=error_body(ERROR_UNAUTHORIZED, "X-API-Key required (API_KEY env not set)"),
            )
        key = (request.headers.get("X-API-Key") or "").strip()
        if key != self._api_key:
            return JSONResponse(
                status_code=401,
                content=error_body(ERROR_UNAUTHORIZED, "invalid or missing X-API-Key"),
            )
        return await call_next(request)


async def _expiry_loop(gateway: Gateway, interval: float) -> None:
    """Periodically mark Pending subscriptions past their window as Failed."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(gateway.expire_pending)
        except Exception:
            logger.exception("expiry_sweep_failed")


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


router = APIRouter(prefix="/api/v1")


# ---- Health / stats ----

@router.get("/health")
def health(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """GET /health → { status, uptime_sec, topics, subscriptions }."""
    return JSONResponse(content=health_response(gateway.health()), status_code=200)


@router.get("/stats")
def stats(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """GET /stats → { counters, gauges }."""
    return JSONResponse(content=stats_response(gateway.stats()), status_code=200)


# ---- Topics ----

class TopicCreateBody(BaseModel):
    name: str


@router.post("/topics")
def create_topic(body: TopicCreateBody, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """POST /topics { name } → 200 { topic_id, name }; repeating a name returns the same id."""
    topic_id = gateway.create_topic(body.name)
    topic = gateway.topics.get(topic_id)
    return JSONResponse(
        content=TopicCreatedResponse(topic_id=topic_id, name=topic.name).to_dict(),
        status_code=200,
    )


@router.get("/topics")
def list_topics(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """GET /topics → { topics: [ { id, name, created_at } ] }."""
    body = topics_list_response([t.to_dict() for t in gateway.topics.list_topics()])
    return JSONResponse(content=body, status_code=200)


@router.get("/topics/{topic_id}/subscriptions")
def list_topic_subscriptions(topic_id: str, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    subs = gateway.subscriptions.list_for_topic(topic_id)
    return JSONResponse(content={"subscriptions": [s.to_dict() for s in subs]}, status_code=200)


# ---- Subscriptions ----

class SubscribeBody(BaseModel):
    email: str
    topic_id: str | None = None


@router.post("/subscribe")
def subscribe(body: SubscribeBody, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """POST /subscribe { email, topic_id? } → subscription in Pending (or its existing state)."""
    subscription_id = gateway.subscribe_email(body.email, body.topic_id)
    sub = gateway.get_subscription(subscription_id)
    resp = SubscribeResponse(
        subscription_id=subscription_id,
        topic_id=sub.topic_id,
        email=sub.endpoint,
        state=sub.state.value,
    )
    return JSONResponse(content=resp.to_dict(), status_code=200)


@router.get("/subscriptions/{subscription_id}")
def get_subscription(subscription_id: str, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    return JSONResponse(content=gateway.get_subscription(subscription_id).to_dict(), status_code=200)


@router.api_route("/subscriptions/{subscription_id}/confirm", methods=["GET", "POST"])
def confirm(subscription_id: str, token: str = "", gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Confirmation callback (the link the provider sends to the subscriber)."""
    sub = gateway.confirm(subscription_id, token)
    return JSONResponse(content=sub.to_dict(), status_code=200)


class RejectBody(BaseModel):
    reason: str | None = None


@router.post("/subscriptions/{subscription_id}/reject")
def reject(
    subscription_id: str, body: RejectBody | None = None, gateway: Gateway = Depends(get_gateway)
) -> JSONResponse:
    """Provider callback: the endpoint was rejected or bounced before confirmation."""
    sub = gateway.reject(subscription_id, body.reason if body else None)
    return JSONResponse(content=sub.to_dict(), status_code=200)


@router.delete("/subscriptions/{subscription_id}")
def unsubscribe(
    subscription_id: str, missing_ok: bool = False, gateway: Gateway = Depends(get_gateway)
) -> JSONResponse:
    """DELETE /subscriptions/{id}[?missing_ok=true] → 200, or 404 when already gone."""
    removed = gateway.unsubscribe(subscription_id, missing_ok=missing_ok)
    return JSONResponse(
        content=UnsubscribeResponse(subscription_id=subscription_id, removed=removed).to_dict(),
        status_code=200,
    )


# ---- Publish ----

class PublishBody(BaseModel):
    message: str
    subject: str | None = None
    topic_id: str | None = None


@router.post("/publish")
def publish(body: PublishBody, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """POST /publish { message, subject?, topic_id? } → PublishResult with per-subscriber outcomes."""
    result = gateway.publish_message(body.message, body.subject, body.topic_id)
    return JSONResponse(content=result.to_dict(), status_code=200)


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    status, body = gateway_error_response(exc)
    return JSONResponse(status_code=status, content=body)


def create_app(gateway: Gateway | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the app around ``gateway`` (defaults to one backed by the in-memory provider)."""
    settings = settings or (gateway.settings if gateway is not None else Settings.from_env())
    gateway = gateway or Gateway(InMemoryProvider(), settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if settings.sweep_interval_sec > 0:
            task = asyncio.create_task(_expiry_loop(gateway, settings.sweep_interval_sec))
        yield
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        gateway.close()

    app =FastAPI(title="Notification Gateway API", lifespan=lifespan)
    app.state.gateway = gateway
    app.add_middleware(XAPIKeyMiddleware, api_key=settings.api_key)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "server:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
    )
