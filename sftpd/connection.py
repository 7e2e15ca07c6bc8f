"""
Per-client SFTP connection state.

A Connection owns the client's handle table and its request handlers,
and serializes response writes through a single-slot continuation gate:
when the transport reports its send buffer is full the gate closes, and
the next response waits for the drain signal (can_continue) before it
is written.

Requests are processed concurrently, one task each, so responses leave
in completion order rather than arrival order.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from vfs.errors import GenericError, OpUnsupportedError, StatusCode, status_of
from vfs.handles import Handle, HandleIdAllocator, HandleKind

from .protocol import Request

logger = logging.getLogger(__name__)

Action = Callable[[Request], Awaitable[Any]]


class Connection:
    """
    One authenticated client.

    `client` is the transport-level client object: it carries the
    backend's per-client `session` dict and is closed on teardown.
    """

    def __init__(self, client, allocator: HandleIdAllocator = None):
        self.client = client
        self.allocator = allocator if allocator is not None else HandleIdAllocator()
        self.handles: Dict[int, Handle] = {}  # Insertion ordered
        self.actions: Dict[str, Action] = {}
        self.stream = None
        self.pending: Set[asyncio.Task] = set()
        self._closed = False
        self._can_continue = asyncio.Event()
        self._can_continue.set()

    @property
    def session(self) -> Dict[str, Any]:
        return self.client.session

    @property
    def closed(self) -> bool:
        return self._closed

    # ========================================================================
    # Flow control
    # ========================================================================

    def should_await_continue(self):
        """Close the gate until the transport drains"""
        self._can_continue.clear()

    def can_continue(self):
        """Drain signal from the transport: reopen the gate"""
        self._can_continue.set()

    async def respond(self, fn: Callable[[], bool]):
        """
        Write one response once the gate is open.

        `fn` performs the write and returns False when the transport
        buffer is saturated, which closes the gate behind it.
        """
        # Several waiters wake on the same set(); only the first one through
        # may write if its write closes the gate again.
        while not self._can_continue.is_set():
            await self._can_continue.wait()

        if self._closed:
            logger.debug("Dropping response on closed connection")
            return

        if not fn():
            self.should_await_continue()

    # ========================================================================
    # Dispatch
    # ========================================================================

    def add_stream(self, stream):
        self.stream = stream

    def add_action(self, action: str, fn: Action):
        self.actions[action] = fn

    def dispatch(self, request: Request) -> asyncio.Task:
        """Handle a decoded request in its own task"""
        task = asyncio.create_task(self._dispatch(request))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    def reject(self, request_id: int, error: Exception) -> asyncio.Task:
        """Answer a request that could not be decoded"""
        task = asyncio.create_task(self._send_error(request_id, error))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    async def _dispatch(self, request: Request):
        logger.debug(f"← {type(request).__name__} id={request.id}")
        try:
            action = self.actions.get(request.action)
            if action is None:
                raise OpUnsupportedError(f"Unsupported request: {request.action}")

            result = await action(request)
        except Exception as e:
            await self._send_error(request.id, e)
            return

        if callable(result):
            try:
                await self.respond(result)
            except Exception as e:
                await self._send_error(request.id, e)
        else:
            status = StatusCode.OK if result is None else StatusCode(result)
            await self.respond(lambda: self.stream.status(request.id, status))

    async def _send_error(self, request_id: int, error: Exception):
        status = status_of(error)
        message = str(error)
        if isinstance(error, GenericError):
            logger.debug(f"Request {request_id} failed with {status.name}: {message}")
        else:
            logger.exception(f"Request {request_id} failed: {error}", exc_info=error)
        await self.respond(lambda: self.stream.status(request_id, status, message))

    # ========================================================================
    # Handles
    # ========================================================================

    def _create_handle(self, kind: HandleKind, path: str) -> Handle:
        handle = Handle(kind, path, self.allocator)
        self.handles[handle.id.value] = handle
        logger.debug(f"Created {handle}")
        return handle

    def create_file_handle(self, path: str) -> Handle:
        return self._create_handle(HandleKind.FILE, path)

    def create_directory_handle(self, path: str) -> Handle:
        return self._create_handle(HandleKind.DIRECTORY, path)

    def get_handle(self, token: bytes) -> Handle:
        value = self.allocator.decode(token)
        handle = self.handles.get(value)
        if handle is None:
            raise GenericError(f"No handle found: {value}")
        return handle

    async def destroy_handle(self, token: bytes):
        handle = self.get_handle(token)
        await self.release_handle(handle)

    async def release_handle(self, handle: Handle):
        """Drop a handle from the table and run its cleanup"""
        if self.handles.get(handle.id.value) is handle:
            del self.handles[handle.id.value]
        logger.debug(f"Releasing {handle}")
        await handle.release()

    # ========================================================================
    # Teardown
    # ========================================================================

    async def close(self):
        """
        Release every live handle in the order it was opened, then close
        the transport. All handles are released even if some fail; the
        first failure is raised afterwards.
        """
        self._closed = True
        # Responses still in flight are dropped instead of waiting on a
        # drain that will never come.
        self._can_continue.set()

        # Handles opened by in-flight requests must have their cleanup
        # registered before the table is released.
        current = asyncio.current_task()
        in_flight = [task for task in self.pending if task is not current]
        if in_flight:
            logger.debug(f"Waiting for {len(in_flight)} in-flight requests")
            await asyncio.gather(*in_flight, return_exceptions=True)

        handles = list(self.handles.values())
        self.handles.clear()

        error: Optional[Exception] = None
        for handle in handles:
            try:
                await handle.release()
            except Exception as e:
                logger.error(f"Failed to release {handle}: {e}")
                if error is None:
                    error = e

        self.client.close()

        if error is not None:
            raise error
