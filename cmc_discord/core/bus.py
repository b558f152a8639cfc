"""Core bus transport.

The adapter talks to the core through two primitives: ``call`` (async
request/response to a named target) and ``on`` (handlers for calls and
events the core sends to us). ``JsonLineBus`` implements them as
newline-delimited JSON over a pair of streams, stdin/stdout in production.
"""

import asyncio
import inspect
import json
import logging
import sys
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger("cmc_discord.core.bus")

# Base64 attachments travel inline, so lines can be far above the 64 KiB default
STDIO_LINE_LIMIT = 64 * 1024 * 1024

Responder = Callable[[Any, Any], None]
Handler = Callable[[str, Any, Responder], Union[Awaitable[None], None]]


@dataclass
class CallResult:
    exists: bool
    data: Any = None


class CoreBus(ABC):
    """Request/response + event subscription surface of the core."""

    @abstractmethod
    async def call(self, target: str, method: str, payload: Any) -> CallResult:
        """Call ``method`` on module ``target``. Failures yield ``exists=False``."""

    @abstractmethod
    def on(self, name: str, handler: Handler):
        """Handle calls named ``name`` sent to this module."""


class JsonLineBus(CoreBus):
    """CoreBus over newline-delimited JSON streams.

    Args:
        reader: Stream of incoming lines (responses and calls from the core).
        write: Writes one serialized line to the core.
    """

    def __init__(self, reader: asyncio.StreamReader, write: Callable[[str], None]):
        self._reader = reader
        self._write = write
        self._handlers: dict[str, Handler] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = asyncio.Event()

    # ── Outgoing ────────────────────────────────────────────────

    async def call(self, target: str, method: str, payload: Any) -> CallResult:
        if self._closed.is_set():
            return CallResult(exists=False)

        call_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        try:
            self._send({
                "type": "api_call",
                "call_id": call_id,
                "call_to": target,
                "call_cmd": method,
                "data": payload,
            })
            return await future
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize call {target}.{method}: {e}")
            return CallResult(exists=False)
        finally:
            self._pending.pop(call_id, None)

    def on(self, name: str, handler: Handler):
        self._handlers[name] = handler

    # ── Incoming ────────────────────────────────────────────────

    async def serve(self):
        """Read lines until the stream ends, then fail all pending calls."""
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError as e:
                    logger.warning(f"Dropping oversized line from core: {e}")
                    continue
                if not line:
                    break
                line = line.strip()
                if line:
                    self.feed(line)
        finally:
            self._close()

    async def wait_closed(self):
        await self._closed.wait()

    def feed(self, line: Union[str, bytes]):
        """Process one raw line from the core."""
        try:
            message = json.loads(line)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping malformed line from core: {e}")
            return
        if not isinstance(message, dict):
            logger.warning("Dropping non-object message from core")
            return

        kind = message.get("type")
        if kind == "api_response":
            self._resolve(message)
        elif kind == "api_call":
            self._dispatch(message)
        else:
            logger.debug(f"Ignoring core message of type {kind!r}")

    def _resolve(self, message: dict):
        future = self._pending.get(str(message.get("call_id")))
        if future is None or future.done():
            return
        if message.get("error") or not message.get("exist", False):
            future.set_result(CallResult(exists=False, data=message.get("data")))
        else:
            future.set_result(CallResult(exists=True, data=message.get("data")))

    def _dispatch(self, message: dict):
        call_id = message.get("call_id")
        origin = str(message.get("call_from", ""))
        name = str(message.get("call_cmd", ""))
        handler = self._handlers.get(name)

        if handler is None:
            self._reply(call_id, origin, exist=False)
            return

        answered = False

        def respond(error: Any = None, data: Any = None):
            nonlocal answered
            if answered:
                return
            answered = True
            self._reply(call_id, origin, exist=True, error=error, data=data)

        try:
            result = handler(origin, message.get("data"), respond)
        except Exception as e:
            logger.error(f"Handler for '{name}' failed: {e}", exc_info=True)
            respond(str(e), None)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._handler_done(t, name, respond))

    def _handler_done(self, task: asyncio.Task, name: str, respond: Responder):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Handler for '{name}' failed: {exc}", exc_info=exc)
            respond(str(exc), None)

    def _reply(self, call_id, origin: str, exist: bool, error: Any = None, data: Any = None):
        try:
            self._send({
                "type": "api_response",
                "call_id": call_id,
                "response_to": origin,
                "exist": exist,
                "error": error,
                "data": data,
            })
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize response to {origin}: {e}")

    def _send(self, message: dict):
        self._write(json.dumps(message, ensure_ascii=False) + "\n")

    def _close(self):
        self._closed.set()
        for future in self._pending.values():
            if not future.done():
                future.set_result(CallResult(exists=False))


async def open_stdio_bus() -> JsonLineBus:
    """Build a JsonLineBus on this process' stdin/stdout."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STDIO_LINE_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    def _write(line: str):
        sys.stdout.write(line)
        sys.stdout.flush()

    return JsonLineBus(reader, _write)
