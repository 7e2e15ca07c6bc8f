"""
The virtual filesystem contract.

A storage backend subclasses FileSystemInterface and overrides the
operations it supports. Everything it leaves alone answers the client
with OP_UNSUPPORTED.

Every operation receives the per-client `session` dict first. Backends
may keep whatever they like in it (the authenticated user, a chroot...);
it lives as long as the SSH connection.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .attrs import Attributes, Name
from .errors import OpUnsupportedError
from .handles import Handle

logger = logging.getLogger(__name__)

Session = Dict[str, Any]


@dataclass
class AuthRequest:
    """One authentication attempt as chosen by the transport"""
    method: str
    username: str
    password: Optional[str] = None


class FileSystemInterface:
    """
    Base backend. Rejects every operation.

    Contract summary:
        authenticate  None to grant, PermissionDeniedError to deny, or a
                      list of method names the client may still try
        open          must register cleanup with handle.add_disposable()
        read          bytes, or None at end of file
        listdir       the whole listing on the first call, None afterwards
        stat/lstat    a fully populated Attributes
        setstat       applies only the fields that are set
        realpath/readlink
                      a single path string
    """

    def _unsupported(self, operation: str):
        logger.warning(f"{type(self).__name__}: {operation} not implemented")
        return OpUnsupportedError("Not implemented")

    async def authenticate(self, session: Session, request: AuthRequest) -> Optional[List[str]]:
        raise self._unsupported("authenticate")

    async def open(self, session: Session, handle: Handle, flags: int, attrs: Attributes):
        raise self._unsupported("open")

    async def read(self, session: Session, handle: Handle, offset: int, length: int) -> Optional[bytes]:
        raise self._unsupported("read")

    async def write(self, session: Session, handle: Handle, offset: int, data: bytes):
        raise self._unsupported("write")

    async def stat(self, session: Session, path: str) -> Attributes:
        raise self._unsupported("stat")

    async def lstat(self, session: Session, path: str) -> Attributes:
        raise self._unsupported("lstat")

    async def setstat(self, session: Session, path: str, attrs: Attributes):
        raise self._unsupported("setstat")

    async def opendir(self, session: Session, handle: Handle):
        raise self._unsupported("opendir")

    async def listdir(self, session: Session, handle: Handle) -> Optional[List[Name]]:
        raise self._unsupported("listdir")

    async def mkdir(self, session: Session, path: str, attrs: Attributes):
        raise self._unsupported("mkdir")

    async def remove(self, session: Session, path: str):
        raise self._unsupported("remove")

    async def rmdir(self, session: Session, path: str):
        raise self._unsupported("rmdir")

    async def rename(self, session: Session, old_path: str, new_path: str):
        raise self._unsupported("rename")

    async def symlink(self, session: Session, target_path: str, link_path: str):
        raise self._unsupported("symlink")

    async def readlink(self, session: Session, path: str) -> str:
        raise self._unsupported("readlink")

    async def realpath(self, session: Session, path: str) -> str:
        raise self._unsupported("realpath")
