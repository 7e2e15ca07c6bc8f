# Virtual filesystem contract for SFTP backends
from .attrs import Attributes, Name, OpenFlags, convert_flags, longname
from .errors import (
    StatusCode,
    GenericError,
    NoSuchFileError,
    PermissionDeniedError,
    BadMessageError,
    OpUnsupportedError,
    from_os_error,
    status_of,
)
from .handles import Handle, HandleId, HandleIdAllocator, HandleKind
from .interface import AuthRequest, FileSystemInterface, Session

__all__ = [
    'Attributes',
    'Name',
    'OpenFlags',
    'convert_flags',
    'longname',
    'StatusCode',
    'GenericError',
    'NoSuchFileError',
    'PermissionDeniedError',
    'BadMessageError',
    'OpUnsupportedError',
    'from_os_error',
    'status_of',
    'Handle',
    'HandleId',
    'HandleIdAllocator',
    'HandleKind',
    'AuthRequest',
    'FileSystemInterface',
    'Session',
]
