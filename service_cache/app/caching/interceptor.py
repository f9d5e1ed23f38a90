"""
Response interceptor: observes the body a downstream app sends on a miss.

``arm`` wraps an ASGI ``send`` callable and returns a replacement with the
same signature. Every message is forwarded unmodified and exactly once. When
the first complete response has status 200 and a JSON body, the decoded
body is handed to ``on_success`` before the final message is forwarded.
"""

import json
from typing import Any, Callable, List, Optional

from starlette.datastructures import Headers
from starlette.types import Message, Send

from shared.logging import get_logger

SUCCESS_STATUS = 200

logger = get_logger("response_cache.interceptor")


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class ResponseInterceptor:
    """Captures one response flowing through an ASGI ``send``."""

    def __init__(self, on_success: Callable[[Any], Any], *, max_body_bytes: Optional[int] = None):
        self.on_success = on_success
        self.max_body_bytes = max_body_bytes

        self.status_code: Optional[int] = None
        self.content_type = ""
        self.fired = False
        self._chunks: List[bytes] = []
        self._size = 0
        self._capturing = False

    def arm(self, send: Send) -> Send:
        async def wrapped_send(message: Message) -> None:
            if not self.fired:
                try:
                    self._observe(message)
                except Exception as exc:
                    self.fired = True
                    logger.error("Response capture failed", error=str(exc))
            await send(message)

        return wrapped_send

    def _observe(self, message: Message) -> None:
        message_type = message.get("type")

        if message_type == "http.response.start":
            self.status_code = message["status"]
            self.content_type = Headers(raw=message.get("headers", [])).get("content-type", "")
            self._capturing = self.status_code == SUCCESS_STATUS and _is_json(self.content_type)
            if not self._capturing:
                logger.debug(
                    "Cache skip, response not cacheable",
                    status_code=self.status_code,
                    content_type=self.content_type,
                )
            return

        if message_type != "http.response.body":
            return

        if self._capturing:
            chunk = message.get("body", b"")
            self._size += len(chunk)
            if self.max_body_bytes is not None and self._size > self.max_body_bytes:
                logger.warning("Cache skip, response body too large", size=self._size, limit=self.max_body_bytes)
                self._capturing = False
                self._chunks = []
            else:
                self._chunks.append(chunk)

        if message.get("more_body", False):
            return

        self.fired = True
        if self._capturing:
            self._complete(b"".join(self._chunks))
        self._chunks = []

    def _complete(self, raw_body: bytes) -> None:
        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            logger.warning("Cache skip, response body is not valid JSON", error=str(exc))
            return

        self.on_success(body)
