"""
SFTP v3 Protocol Message Types

This module defines the SSH_FXP_* packets of draft-ietf-secsh-filexfer-02.
Requests carry the client-chosen request id that every response echoes.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, List

from vfs.attrs import Attributes, Name
from vfs.errors import StatusCode

SFTP_VERSION = 3


class MsgType(IntEnum):
    """SSH_FXP_* packet types"""
    INIT = 1
    VERSION = 2
    OPEN = 3
    CLOSE = 4
    READ = 5
    WRITE = 6
    LSTAT = 7
    FSTAT = 8
    SETSTAT = 9
    FSETSTAT = 10
    OPENDIR = 11
    READDIR = 12
    REMOVE = 13
    MKDIR = 14
    RMDIR = 15
    REALPATH = 16
    STAT = 17
    RENAME = 18
    READLINK = 19
    SYMLINK = 20
    STATUS = 101
    HANDLE = 102
    DATA = 103
    NAME = 104
    ATTRS = 105
    EXTENDED = 200
    EXTENDED_REPLY = 201


STATUS_MESSAGES = {
    StatusCode.OK: "Success",
    StatusCode.EOF: "End of file",
    StatusCode.NO_SUCH_FILE: "No such file",
    StatusCode.PERMISSION_DENIED: "Permission denied",
    StatusCode.FAILURE: "Failure",
    StatusCode.BAD_MESSAGE: "Bad message",
    StatusCode.NO_CONNECTION: "No connection",
    StatusCode.CONNECTION_LOST: "Connection lost",
    StatusCode.OP_UNSUPPORTED: "Operation unsupported",
}


@dataclass
class Message:
    """
    Base SFTP message.

    `id` has no default so that every response is built from the id of
    the request it answers.
    """
    id: int

    @classmethod
    def msg_type(cls) -> MsgType:
        """Return the packet type for this class"""
        raise NotImplementedError


@dataclass
class Request(Message):
    """A client request; `action` names the connection handler it goes to"""
    action: ClassVar[str] = ""


# ============================================================================
# Version negotiation (no request id on the wire; `id` holds the version)
# ============================================================================

@dataclass
class FxpInit(Message):

    @property
    def version(self) -> int:
        return self.id

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.INIT


@dataclass
class FxpVersion(Message):

    @property
    def version(self) -> int:
        return self.id

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.VERSION


# ============================================================================
# Requests
# ============================================================================

@dataclass
class FxpOpen(Request):
    action: ClassVar[str] = "open"
    filename: str = ""
    pflags: int = 0
    attrs: Attributes = field(default_factory=Attributes)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.OPEN


@dataclass
class FxpClose(Request):
    action: ClassVar[str] = "close"
    handle: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.CLOSE


@dataclass
class FxpRead(Request):
    action: ClassVar[str] = "read"
    handle: bytes = b""
    offset: int = 0
    length: int = 0

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.READ


@dataclass
class FxpWrite(Request):
    action: ClassVar[str] = "write"
    handle: bytes = b""
    offset: int = 0
    data: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.WRITE


@dataclass
class FxpLstat(Request):
    action: ClassVar[str] = "lstat"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.LSTAT


@dataclass
class FxpFstat(Request):
    action: ClassVar[str] = "fstat"
    handle: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.FSTAT


@dataclass
class FxpSetstat(Request):
    action: ClassVar[str] = "setstat"
    path: str = ""
    attrs: Attributes = field(default_factory=Attributes)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.SETSTAT


@dataclass
class FxpFsetstat(Request):
    action: ClassVar[str] = "fsetstat"
    handle: bytes = b""
    attrs: Attributes = field(default_factory=Attributes)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.FSETSTAT


@dataclass
class FxpOpendir(Request):
    action: ClassVar[str] = "opendir"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.OPENDIR


@dataclass
class FxpReaddir(Request):
    action: ClassVar[str] = "readdir"
    handle: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.READDIR


@dataclass
class FxpRemove(Request):
    action: ClassVar[str] = "remove"
    filename: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.REMOVE


@dataclass
class FxpMkdir(Request):
    action: ClassVar[str] = "mkdir"
    path: str = ""
    attrs: Attributes = field(default_factory=Attributes)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.MKDIR


@dataclass
class FxpRmdir(Request):
    action: ClassVar[str] = "rmdir"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.RMDIR


@dataclass
class FxpRealpath(Request):
    action: ClassVar[str] = "realpath"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.REALPATH


@dataclass
class FxpStat(Request):
    action: ClassVar[str] = "stat"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.STAT


@dataclass
class FxpRename(Request):
    action: ClassVar[str] = "rename"
    oldpath: str = ""
    newpath: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.RENAME


@dataclass
class FxpReadlink(Request):
    action: ClassVar[str] = "readlink"
    path: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.READLINK


@dataclass
class FxpSymlink(Request):
    action: ClassVar[str] = "symlink"
    linkpath: str = ""
    targetpath: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.SYMLINK


# ============================================================================
# Responses
# ============================================================================

@dataclass
class FxpStatus(Message):
    code: StatusCode = StatusCode.OK
    message: str = ""
    language: str = ""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.STATUS


@dataclass
class FxpHandle(Message):
    handle: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.HANDLE


@dataclass
class FxpData(Message):
    data: bytes = b""

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.DATA


@dataclass
class FxpName(Message):
    names: List[Name] = field(default_factory=list)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.NAME


@dataclass
class FxpAttrs(Message):
    attrs: Attributes = field(default_factory=Attributes)

    @classmethod
    def msg_type(cls) -> MsgType:
        return MsgType.ATTRS
