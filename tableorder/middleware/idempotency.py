"""
Table Order Service — Idempotency Key Middleware

Order creation is the only non-idempotent customer call, so a retried
POST /orders carrying the same Idempotency-Key must not create duplicate
records:
  - Cache hit  → return the stored response immediately (no business logic)
  - Cache miss → execute handler, store a non-5xx response for the TTL
"""
import json
import logging
from typing import Callable

import redis.asyncio as aioredis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from tableorder.core.config import get_settings
from tableorder.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "idempotent:orders:"
IDEMPOTENCY_METHODS = {"POST"}
IDEMPOTENCY_PATHS = {"/orders", "/orders/"}


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Reads the Idempotency-Key header on order creation and either:
      1. Returns the cached response (replay)
      2. Executes the handler and caches its response
    Redis being unavailable degrades to plain pass-through.
    """

    def __init__(self, app, redis_factory: Callable[[], aioredis.Redis] = get_redis):
        super().__init__(app)
        self._redis_factory = redis_factory

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method not in IDEMPOTENCY_METHODS:
            return await call_next(request)

        if request.url.path not in IDEMPOTENCY_PATHS:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        redis = self._redis_factory()
        cache_key = f"{IDEMPOTENCY_PREFIX}{idem_key}"

        try:
            cached = await redis.get(cache_key)
        except RedisError as exc:
            logger.warning("Idempotency cache unavailable, processing %s without it: %s", idem_key, exc)
            return await call_next(request)

        # Cache HIT → replay stored response
        if cached:
            data = json.loads(cached)
            logger.info("Replaying order creation for Idempotency-Key %s", idem_key)
            return JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
                headers={"X-Idempotency-Replay": "true"},
            )

        # Cache MISS → proceed to handler
        response = await call_next(request)

        body_bytes = b""
        async for chunk in response.body_iterator:
            body_bytes += chunk

        try:
            body = json.loads(body_bytes)
        except ValueError:
            body = body_bytes.decode("utf-8", errors="replace")

        if response.status_code < 500:
            try:
                await redis.setex(
                    cache_key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"body": body, "status_code": response.status_code}),
                )
            except RedisError as exc:
                logger.warning("Could not store idempotent response for %s: %s", idem_key, exc)

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
