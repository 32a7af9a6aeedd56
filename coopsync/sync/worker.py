"""Background compression worker.

Serializing and compressing a large park blocks for a noticeable time, so
the work runs on a dedicated thread. Requests and responses are plain dicts::

    {"type": "serialize-compress", "id": 7, "state": {...}}
    {"type": "serialized-compressed", "id": 7, "compressed": "..."}
    {"type": "decompressed-parsed", "id": 8, "error": "..."}

Each request id is unique per worker and correlates the asynchronous
response; responses for unknown or already resolved ids are ignored. A
request that has not been answered within ``timeout`` seconds is discarded
and the same work runs synchronously on the caller's thread.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from .codec import compress_state, decompress_state
from .config import WORKER_TIMEOUT
from .errors import WorkerError

logger = logging.getLogger(__name__)

RESPONSE_TYPES = {
    "serialize-compress": "serialized-compressed",
    "decompress-parse": "decompressed-parsed",
    "serialize-compress-encoded": "serialized-compressed-encoded",
    "decompress-parse-encoded": "decompressed-parsed-encoded",
}

RequestHandler = Callable[[dict[str, Any]], dict[str, Any]]


def handle_request(request: dict[str, Any]) -> dict[str, Any]:
    """Worker-side handling of one request message."""
    request_type = str(request.get("type", ""))
    request_id = request.get("id")
    response_type = RESPONSE_TYPES.get(request_type)
    if response_type is None:
        return {"type": "error", "id": request_id, "error": f"Unknown request type: {request_type}"}

    encoded = request_type.endswith("-encoded")
    try:
        if request_type.startswith("serialize"):
            return {"type": response_type, "id": request_id, "compressed": compress_state(request["state"], encoded)}
        return {"type": response_type, "id": request_id, "state": decompress_state(request["compressed"], encoded)}
    except Exception as exc:
        return {"type": response_type, "id": request_id, "error": str(exc) or type(exc).__name__}


class CompressionWorker:
    """Session-scoped worker thread with its own request table."""

    def __init__(self, timeout: float = WORKER_TIMEOUT, handler: RequestHandler = handle_request) -> None:
        self.timeout = timeout
        self._handler = handler
        self._requests: queue.Queue[tuple[dict[str, Any], asyncio.AbstractEventLoop] | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._next_id = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> bool:
        if self.running:
            return True
        try:
            thread = threading.Thread(target=self._run, name="coopsync-compression", daemon=True)
            thread.start()
        except RuntimeError as exc:
            logger.warning("Failed to start compression worker, using caller thread: %s", exc)
            return False
        self._thread = thread
        return True

    def close(self) -> None:
        thread = self._thread
        self._thread = None
        if thread is not None:
            self._requests.put(None)
            thread.join(timeout=1.0)
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    def __enter__(self) -> CompressionWorker:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def serialize_compress(self, state: dict[str, Any]) -> str:
        return await self._request(
            "serialize-compress", "state", state, lambda: compress_state(state, encoded=False)
        )

    async def serialize_compress_encoded(self, state: dict[str, Any]) -> str:
        return await self._request(
            "serialize-compress-encoded", "state", state, lambda: compress_state(state, encoded=True)
        )

    async def decompress_parse(self, compressed: str) -> dict[str, Any] | None:
        return await self._request(
            "decompress-parse", "compressed", compressed, lambda: decompress_state(compressed, encoded=False)
        )

    async def decompress_parse_encoded(self, compressed: str) -> dict[str, Any] | None:
        return await self._request(
            "decompress-parse-encoded",
            "compressed",
            compressed,
            lambda: decompress_state(compressed, encoded=True),
        )

    async def _request(self, request_type: str, field: str, payload: Any, fallback: Callable[[], Any]) -> Any:
        if not self.start():
            return fallback()

        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[Any] = loop.create_future()
        self._pending[request_id] = future
        self._requests.put(({"type": request_type, "id": request_id, field: payload}, loop))

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Compression worker timeout on %s #%d, falling back to caller thread", request_type, request_id)
        except WorkerError as exc:
            logger.warning("Compression worker failed %s #%d, falling back to caller thread: %s", request_type, request_id, exc)
        finally:
            self._pending.pop(request_id, None)
        return fallback()

    def _run(self) -> None:
        while True:
            item = self._requests.get()
            if item is None:
                return
            request, loop = item
            try:
                response = self._handler(request)
            except Exception as exc:
                logger.exception("Compression worker crashed")
                self._post(loop, self._fail_all, f"Worker error: {exc}")
                return
            self._post(loop, self._on_response, response)

    @staticmethod
    def _post(loop: asyncio.AbstractEventLoop, callback: Callable[[Any], None], argument: Any) -> None:
        try:
            loop.call_soon_threadsafe(callback, argument)
        except RuntimeError:
            logger.debug("Dropping worker response, event loop is closed")

    def _on_response(self, response: dict[str, Any]) -> None:
        future = self._pending.pop(response.get("id"), None)
        if future is None or future.done():
            return
        if response.get("error"):
            future.set_exception(WorkerError(str(response["error"])))
        elif "compressed" in response:
            future.set_result(response["compressed"])
        else:
            future.set_result(response.get("state"))

    def _fail_all(self, reason: str) -> None:
        self._thread = None
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(WorkerError(reason))
