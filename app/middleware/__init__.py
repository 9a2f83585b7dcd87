"""Request-ID middleware — tags each HTTP request with a unique ID.

Pure ASGI rather than ``BaseHTTPMiddleware``, so long-running task
requests are not buffered through an extra task group.
"""

import uuid

from starlette.types import ASGIApp, Receive, Scope, Send


class RequestIDMiddleware:
    """Injects ``X-Request-ID`` into every HTTP request/response cycle.

    A client-supplied ID is echoed back unchanged; otherwise a fresh
    UUID-4 is assigned.  Non-HTTP scopes pass through.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                response_headers = [
                    *message.get("headers", []),
                    (b"x-request-id", request_id.encode()),
                ]
                message = {**message, "headers": response_headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
