"""
Per-request finalization.

RequestLifecycleMiddleware attaches a RequestFinalizer to every HTTP request.
Components that acquire per-request resources (the tenant resolver's scoped
connection) register a cleanup callback on it. The finalizer fires on the
first terminal event of the request:

- "disconnect": the client went away (http.disconnect observed)
- "complete": the application returned, normally or by raising

and runs the callbacks exactly once regardless of how many terminal events
arrive.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

FINALIZER_STATE_KEY = "request_finalizer"

Cleanup = Callable[[], Awaitable[Any]]


class RequestFinalizer:
    """Runs registered cleanup callbacks exactly once, in reverse order."""

    def __init__(self):
        self._callbacks: list[Cleanup] = []
        self._finalized = False
        self.trigger: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def register(self, callback: Cleanup) -> bool:
        """
        Register a cleanup callback.

        Returns False when the request has already been finalized; the caller
        then owns the cleanup itself.
        """
        if self._finalized:
            return False
        self._callbacks.append(callback)
        return True

    async def run(self, trigger: str) -> bool:
        """Fire all callbacks. Only the first call does anything."""
        if self._finalized:
            return False
        self._finalized = True
        self.trigger = trigger
        callbacks, self._callbacks = self._callbacks, []
        for callback in reversed(callbacks):
            try:
                await callback()
            except Exception:
                # Keep going: one failed cleanup must not leak the others.
                logger.exception("Request cleanup callback failed", extra={"trigger": trigger})
        return True


def get_request_finalizer(request: Request) -> Optional[RequestFinalizer]:
    return getattr(request.state, FINALIZER_STATE_KEY, None)


class RequestLifecycleMiddleware:
    """Pure ASGI middleware binding the finalizer to completion and disconnect."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        finalizer = RequestFinalizer()
        scope.setdefault("state", {})[FINALIZER_STATE_KEY] = finalizer

        async def receive_with_disconnect() -> Message:
            message = await receive()
            if message["type"] == "http.disconnect":
                logger.info("Client disconnected before completion", extra={"path": scope.get("path")})
                await finalizer.run("disconnect")
            return message

        try:
            await self.app(scope, receive_with_disconnect, send)
        finally:
            await finalizer.run("complete")
