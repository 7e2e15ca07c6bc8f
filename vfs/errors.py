"""
Error taxonomy for SFTP backends.

Every error carries the SFTP status code it is reported with. Backends
raise these from their VFS operations; the connection dispatcher turns
whatever escapes a request handler into a single status reply.
"""

import errno
from enum import IntEnum


class StatusCode(IntEnum):
    """SSH_FX_* status codes (SFTP v3)"""
    OK = 0
    EOF = 1
    NO_SUCH_FILE = 2
    PERMISSION_DENIED = 3
    FAILURE = 4
    BAD_MESSAGE = 5
    NO_CONNECTION = 6
    CONNECTION_LOST = 7
    OP_UNSUPPORTED = 8


class GenericError(Exception):
    """Base error, reported as FAILURE unless a subclass says otherwise"""

    status = StatusCode.FAILURE

    def __init__(self, message: str = "", status: StatusCode = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = StatusCode(status)


class NoSuchFileError(GenericError):
    status = StatusCode.NO_SUCH_FILE


class PermissionDeniedError(GenericError):
    status = StatusCode.PERMISSION_DENIED


class BadMessageError(GenericError):
    status = StatusCode.BAD_MESSAGE


class OpUnsupportedError(GenericError):
    status = StatusCode.OP_UNSUPPORTED


def status_of(exc: BaseException) -> StatusCode:
    """Status code to report for an exception (FAILURE if it carries none)"""
    status = getattr(exc, "status", None)
    try:
        return StatusCode(status)
    except (TypeError, ValueError):
        return StatusCode.FAILURE


def from_os_error(exc: OSError) -> GenericError:
    """Translate an OSError raised by a local filesystem call"""
    message = exc.strerror or str(exc)
    if exc.errno == errno.ENOENT:
        return NoSuchFileError(message)
    if exc.errno in (errno.EACCES, errno.EPERM):
        return PermissionDeniedError(message)
    return GenericError(message)
