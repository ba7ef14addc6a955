"""ASGI middleware applying the concurrency governor to expensive routes.

Configured per path prefix (CONCURRENCY_SETTINGS['routes']). For a matching
request the governor is asked for a slot; a rejected request gets a 429 with
the current / max concurrency, an admitted one releases its slot on the first
of:

  completed - the final response body chunk was sent
  closed    - the client disconnected (http.disconnect received, watched
              for the whole request, not only when the app reads the body)
  errored   - the downstream app raised

Written as a plain ASGI middleware rather than ``@app.middleware("http")`` so
the disconnect signal and the end of a streamed body are both observable.
"""
from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Optional

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.utils import get_logger
from app.utils.concurrency import ConcurrencyGovernor, derive_key

logger = get_logger(__name__)

TOO_MANY_CONCURRENT_REQUESTS = "TOO_MANY_CONCURRENT_REQUESTS"

KeyFunc = Callable[[Scope], str]


@dataclass(slots=True, frozen=True)
class RouteLimit:
    prefix: str
    max_concurrent: int
    kind: str = "generic"


def default_key_func(scope: Scope) -> str:
    """``user-<id>`` when an upstream auth layer set ``request.state.user_id``, else ``ip-<host>``."""
    state: MutableMapping[str, Any] = scope.get("state") or {}
    client = scope.get("client")
    host = client[0] if client else None
    return derive_key(state.get("user_id"), host)


def build_route_limits(routes: Mapping[str, Mapping[str, Any]]) -> list[RouteLimit]:
    limits = [
        RouteLimit(prefix=prefix, max_concurrent=int(cfg.get("max_concurrent", 5)), kind=str(cfg.get("kind", "generic")))
        for prefix, cfg in routes.items()
    ]
    # Longest prefix wins
    return sorted(limits, key=lambda r: len(r.prefix), reverse=True)


def rejection_response(meta: Mapping[str, Any]) -> JSONResponse:
    current = meta["currentConcurrent"]
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": (
                f"You already have {current} AI request(s) in progress. "
                "Please wait for one of them to finish before sending a new one."
            ),
            "error": TOO_MANY_CONCURRENT_REQUESTS,
            "data": {
                "currentConcurrent": current,
                "maxConcurrent": meta["maxConcurrent"],
            },
        },
    )


class ConcurrencyLimitMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        governor: ConcurrencyGovernor,
        routes: Mapping[str, Mapping[str, Any]],
        key_func: Optional[KeyFunc] = None,
    ) -> None:
        self.app = app
        self.governor = governor
        self.limits = build_route_limits(routes)
        self.key_func = key_func or default_key_func

    def _match(self, path: str) -> Optional[RouteLimit]:
        for limit in self.limits:
            if path == limit.prefix or path.startswith(limit.prefix.rstrip("/") + "/"):
                return limit
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        limit = self._match(scope.get("path", ""))
        if limit is None:
            await self.app(scope, receive, send)
            return

        key = self.key_func(scope)
        admission, meta = self.governor.admit(key, limit.max_concurrent)
        if admission is None:
            logger.warning(
                "Concurrent limit rejected request",
                kind=limit.kind,
                endpoint=scope.get("path"),
                **meta,
            )
            await rejection_response(meta)(scope, receive, send)
            return

        # Only the watcher reads the server channel; the app reads from the inbox.
        inbox: asyncio.Queue[Message] = asyncio.Queue()
        disconnected = asyncio.Event()

        async def watch_disconnect() -> None:
            while True:
                message = await receive()
                await inbox.put(message)
                if message["type"] == "http.disconnect":
                    disconnected.set()
                    admission.release("closed")
                    return

        async def guarded_receive() -> Message:
            if disconnected.is_set() and inbox.empty():
                return {"type": "http.disconnect"}
            return await inbox.get()

        async def guarded_send(message: Message) -> None:
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                admission.release("completed")

        watcher = asyncio.create_task(watch_disconnect())
        try:
            await self.app(scope, guarded_receive, guarded_send)
        except Exception:
            admission.release("errored")
            raise
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher
            # Backstop for apps that return without a final body chunk; no-op otherwise.
            admission.release("completed")


__all__ = [
    "ConcurrencyLimitMiddleware",
    "RouteLimit",
    "default_key_func",
    "build_route_limits",
    "rejection_response",
    "TOO_MANY_CONCURRENT_REQUESTS",
]
