"""
File attributes and open flags for SFTP.

Translates between POSIX metadata (os.stat_result, os.O_* flags) and the
SFTP v3 ATTRS structure, and renders the "ls -l" style longname that
accompanies directory listings.
"""

import os
import stat
import struct
import time
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Optional, Tuple

from .errors import BadMessageError

# ATTRS flag bits
ATTR_SIZE = 0x00000001
ATTR_UIDGID = 0x00000002
ATTR_PERMISSIONS = 0x00000004
ATTR_ACMODTIME = 0x00000008
ATTR_EXTENDED = 0x80000000

SIX_MONTHS = 365 * 24 * 60 * 60 // 2


class OpenFlags(IntFlag):
    """SSH_FXF_* open flags"""
    READ = 0x01
    WRITE = 0x02
    APPEND = 0x04
    CREATE = 0x08
    TRUNCATE = 0x10
    EXCLUSIVE = 0x20


def convert_flags(pflags: int) -> int:
    """Convert SFTP open flags to an os.open() flag mask"""
    if pflags & OpenFlags.READ and pflags & OpenFlags.WRITE:
        mode = os.O_RDWR
    elif pflags & OpenFlags.WRITE:
        mode = os.O_WRONLY
    else:
        mode = os.O_RDONLY

    if pflags & OpenFlags.CREATE:
        mode |= os.O_CREAT
    if pflags & OpenFlags.APPEND:
        mode |= os.O_APPEND
    if pflags & OpenFlags.EXCLUSIVE:
        mode |= os.O_EXCL
    if pflags & OpenFlags.TRUNCATE:
        mode |= os.O_TRUNC

    return mode


def _unpack(fmt: str, data: bytes, pos: int) -> Tuple[tuple, int]:
    try:
        values = struct.unpack_from(fmt, data, pos)
    except struct.error:
        raise BadMessageError("Truncated attributes")
    return values, pos + struct.calcsize(fmt)


def _unpack_string(data: bytes, pos: int) -> Tuple[bytes, int]:
    (length,), pos = _unpack('>I', data, pos)
    if pos + length > len(data):
        raise BadMessageError("Truncated attributes")
    return data[pos:pos + length], pos + length


@dataclass
class Attributes:
    """
    SFTP file attributes.

    Every field is optional: on input only the fields a client set are
    present, on output (stat/lstat/fstat) all of them are.
    """
    size: Optional[int] = None
    uid: Optional[int] = None
    gid: Optional[int] = None
    mode: Optional[int] = None   # Permission and file type bits
    atime: Optional[int] = None
    mtime: Optional[int] = None

    @classmethod
    def from_stat(cls, st: os.stat_result) -> 'Attributes':
        return cls(
            size=st.st_size,
            uid=st.st_uid,
            gid=st.st_gid,
            mode=st.st_mode,
            atime=int(st.st_atime),
            mtime=int(st.st_mtime),
        )

    def is_dir(self) -> bool:
        return self.mode is not None and stat.S_ISDIR(self.mode)

    def is_symlink(self) -> bool:
        return self.mode is not None and stat.S_ISLNK(self.mode)

    def pack(self) -> bytes:
        """Pack to the SFTP v3 ATTRS wire format"""
        flags = 0
        body = b''

        if self.size is not None:
            flags |= ATTR_SIZE
            body += struct.pack('>Q', self.size)
        if self.uid is not None or self.gid is not None:
            flags |= ATTR_UIDGID
            body += struct.pack('>II', self.uid or 0, self.gid or 0)
        if self.mode is not None:
            flags |= ATTR_PERMISSIONS
            body += struct.pack('>I', self.mode)
        if self.atime is not None or self.mtime is not None:
            flags |= ATTR_ACMODTIME
            body += struct.pack('>II', self.atime or 0, self.mtime or 0)

        return struct.pack('>I', flags) + body

    @classmethod
    def unpack(cls, data: bytes, pos: int = 0) -> Tuple['Attributes', int]:
        """Unpack ATTRS, returns (attributes, new_position)"""
        (flags,), pos = _unpack('>I', data, pos)
        attrs = cls()

        if flags & ATTR_SIZE:
            (attrs.size,), pos = _unpack('>Q', data, pos)
        if flags & ATTR_UIDGID:
            (attrs.uid, attrs.gid), pos = _unpack('>II', data, pos)
        if flags & ATTR_PERMISSIONS:
            (attrs.mode,), pos = _unpack('>I', data, pos)
        if flags & ATTR_ACMODTIME:
            (attrs.atime, attrs.mtime), pos = _unpack('>II', data, pos)
        if flags & ATTR_EXTENDED:
            # Extended pairs are not interpreted
            (count,), pos = _unpack('>I', data, pos)
            for _ in range(count):
                _, pos = _unpack_string(data, pos)
                _, pos = _unpack_string(data, pos)

        return attrs, pos


@dataclass
class Name:
    """One entry of a NAME response"""
    filename: str
    longname: str = ""
    attrs: Attributes = field(default_factory=Attributes)

    def pack(self) -> bytes:
        # Undecodable host names go out as their original bytes
        filename = self.filename.encode('utf-8', 'surrogateescape')
        longname = self.longname.encode('utf-8', 'surrogateescape')
        return (struct.pack('>I', len(filename)) + filename +
                struct.pack('>I', len(longname)) + longname +
                self.attrs.pack())


def _permissions(mode: int) -> str:
    if stat.S_ISDIR(mode):
        kind = "d"
    elif stat.S_ISLNK(mode):
        kind = "l"
    else:
        kind = "-"

    bits = ""
    for read, write, execute in (
        (stat.S_IRUSR, stat.S_IWUSR, stat.S_IXUSR),
        (stat.S_IRGRP, stat.S_IWGRP, stat.S_IXGRP),
        (stat.S_IROTH, stat.S_IWOTH, stat.S_IXOTH),
    ):
        bits += "r" if mode & read else "-"
        bits += "w" if mode & write else "-"
        bits += "x" if mode & execute else "-"

    return kind + bits


def _modtime(mtime: int, now: float = None) -> str:
    if now is None:
        now = time.time()
    local = time.localtime(mtime)
    day = f"{time.strftime('%b', local)} {local.tm_mday:2d}"
    if now - SIX_MONTHS < mtime <= now:
        return f"{day} {time.strftime('%H:%M', local)}"
    return f"{day}  {local.tm_year}"


def longname(filename: str, attrs: Attributes, nlink: int = 1) -> str:
    """
    Format an "ls -l" style listing line.

    Display text only; clients show it verbatim and do not parse it.
    """
    return " ".join([
        _permissions(attrs.mode or 0),
        str(nlink),
        str(attrs.uid or 0),
        str(attrs.gid or 0),
        str(attrs.size or 0),
        _modtime(attrs.mtime or 0),
        filename,
    ])
