"""
Handles for open files and directories.

A Handle is the server-side state behind the opaque token a client gets
back from open/opendir. Its identifier comes from a HandleIdAllocator and
travels on the wire as a fixed 4-byte big-endian token.
"""

import inspect
import logging
import struct
from enum import Enum
from typing import Any, Callable, Dict, List, Set

from .errors import BadMessageError, GenericError

logger = logging.getLogger(__name__)

HANDLE_ID_SIZE = 4
MAX_HANDLE_ID = 0xFFFFFFFF


class HandleIdAllocator:
    """
    Issues the smallest unused positive integer.

    One allocator may be shared by many connections or owned by a
    single one; the server decides which.
    """

    def __init__(self):
        self._in_use: Set[int] = set()

    def allocate(self) -> int:
        value = 1
        while value in self._in_use:
            value += 1
        if value > MAX_HANDLE_ID:
            raise GenericError("Too many open handles")
        self._in_use.add(value)
        return value

    def release(self, value: int):
        self._in_use.discard(value)

    def __contains__(self, value: int) -> bool:
        return value in self._in_use

    def __len__(self) -> int:
        return len(self._in_use)

    @staticmethod
    def encode(value: int) -> bytes:
        return struct.pack('>I', value)

    @staticmethod
    def decode(token: bytes) -> int:
        if len(token) != HANDLE_ID_SIZE:
            raise BadMessageError(f"Invalid handle: expected {HANDLE_ID_SIZE} bytes, got {len(token)}")
        return struct.unpack('>I', token)[0]


class HandleId:
    """An allocated identifier and its wire token"""

    def __init__(self, allocator: HandleIdAllocator):
        self._allocator = allocator
        self.value = allocator.allocate()
        self.encoded = allocator.encode(self.value)

    def release(self):
        self._allocator.release(self.value)

    def __repr__(self):
        return f"HandleId({self.value})"


class HandleKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"


class Handle:
    """
    An open file or directory.

    Backends keep their private state (a descriptor, an end-of-listing
    flag) in the param bag and register cleanup with add_disposable().
    Disposables run once, in registration order, on release().
    """

    def __init__(self, kind: HandleKind, path: str, allocator: HandleIdAllocator):
        self.kind = kind
        self.path = path
        self.id = HandleId(allocator)
        self.params: Dict[str, Any] = {}
        self._disposables: List[Callable[[], Any]] = []
        self._released = False

    @property
    def is_directory(self) -> bool:
        return self.kind is HandleKind.DIRECTORY

    @property
    def released(self) -> bool:
        return self._released

    def set_param(self, name: str, value: Any) -> Any:
        self.params[name] = value
        return value

    def get_param(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)

    def add_disposable(self, fn: Callable[[], Any]):
        self._disposables.append(fn)

    async def release(self):
        """
        Return the id to its allocator, then run every disposable.

        A failing disposable does not stop the ones after it; the first
        failure is raised once all of them have run.
        """
        if self._released:
            return
        self._released = True
        self.id.release()

        disposables, self._disposables = self._disposables, []
        error = None
        for fn in disposables:
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Cleanup failed for {self.kind.value} handle {self.id.value} ({self.path}): {e}")
                if error is None:
                    error = e

        if error is not None:
            raise error

    def __repr__(self):
        return f"Handle({self.kind.value}, {self.path!r}, id={self.id.value})"
