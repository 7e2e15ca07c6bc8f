"""
SFTP v3 Wire Format Codec

Handles encoding and decoding of SFTP packets to/from their binary wire
format. All integers are big-endian; strings are uint32 length-prefixed.

Wire format for all packets:
    length[4] type[1] ... packet-specific data ...

Where length counts everything after itself. Requests (everything but
INIT) start their body with a uint32 request id.
"""

import struct
from typing import Optional, Tuple

from vfs.attrs import Attributes
from vfs.errors import BadMessageError, OpUnsupportedError

from .protocol import *


class Codec:
    """
    SFTP packet encoder/decoder.

    `openssh_quirks` swaps the SYMLINK arguments: OpenSSH clients send
    targetpath before linkpath, the reverse of the draft.
    """

    def __init__(self, openssh_quirks: bool = False):
        self.openssh_quirks = openssh_quirks

    @staticmethod
    def pack_packet(msg_type: MsgType, body: bytes) -> bytes:
        """Frame a packet body: length[4] type[1] body"""
        return struct.pack('>IB', len(body) + 1, msg_type) + body

    def encode(self, msg: Message) -> bytes:
        """Encode message to wire format"""
        return self.pack_packet(msg.msg_type(), self._encode_body(msg))

    def decode(self, packet: bytes) -> Message:
        """
        Decode one packet (without its length prefix).

        Raises BadMessageError for malformed packets and
        OpUnsupportedError for packet types we do not serve.
        """
        if not packet:
            raise BadMessageError("Empty packet")

        try:
            msg_type = MsgType(packet[0])
        except ValueError:
            raise OpUnsupportedError(f"Unknown packet type: {packet[0]}")

        try:
            return self._decode_body(msg_type, packet[1:])
        except struct.error:
            raise BadMessageError(f"Truncated {msg_type.name} packet")
        except UnicodeDecodeError:
            raise BadMessageError(f"Invalid UTF-8 in {msg_type.name} packet")

    @staticmethod
    def peek_request_id(packet: bytes) -> Optional[int]:
        """Request id of a packet, or None if it has none"""
        if len(packet) < 5 or packet[0] == MsgType.INIT:
            return None
        return struct.unpack_from('>I', packet, 1)[0]

    def _encode_body(self, msg: Message) -> bytes:
        """Encode message body (without length and type)"""

        if isinstance(msg, (FxpInit, FxpVersion)):
            return struct.pack('>I', msg.id)

        elif isinstance(msg, FxpStatus):
            return (struct.pack('>II', msg.id, msg.code) +
                    self._pack_str(msg.message) +
                    self._pack_str(msg.language))

        elif isinstance(msg, FxpHandle):
            return struct.pack('>I', msg.id) + self._pack_bytes(msg.handle)

        elif isinstance(msg, FxpData):
            return struct.pack('>I', msg.id) + self._pack_bytes(msg.data)

        elif isinstance(msg, FxpName):
            body = struct.pack('>II', msg.id, len(msg.names))
            for name in msg.names:
                body += name.pack()
            return body

        elif isinstance(msg, FxpAttrs):
            return struct.pack('>I', msg.id) + msg.attrs.pack()

        elif isinstance(msg, FxpOpen):
            return (struct.pack('>I', msg.id) + self._pack_str(msg.filename) +
                    struct.pack('>I', msg.pflags) + msg.attrs.pack())

        elif isinstance(msg, (FxpClose, FxpFstat, FxpReaddir)):
            return struct.pack('>I', msg.id) + self._pack_bytes(msg.handle)

        elif isinstance(msg, FxpRead):
            return (struct.pack('>I', msg.id) + self._pack_bytes(msg.handle) +
                    struct.pack('>QI', msg.offset, msg.length))

        elif isinstance(msg, FxpWrite):
            return (struct.pack('>I', msg.id) + self._pack_bytes(msg.handle) +
                    struct.pack('>Q', msg.offset) + self._pack_bytes(msg.data))

        elif isinstance(msg, (FxpLstat, FxpOpendir, FxpRmdir, FxpRealpath, FxpStat, FxpReadlink)):
            return struct.pack('>I', msg.id) + self._pack_str(msg.path)

        elif isinstance(msg, FxpRemove):
            return struct.pack('>I', msg.id) + self._pack_str(msg.filename)

        elif isinstance(msg, (FxpSetstat, FxpMkdir)):
            return struct.pack('>I', msg.id) + self._pack_str(msg.path) + msg.attrs.pack()

        elif isinstance(msg, FxpFsetstat):
            return struct.pack('>I', msg.id) + self._pack_bytes(msg.handle) + msg.attrs.pack()

        elif isinstance(msg, FxpRename):
            return (struct.pack('>I', msg.id) + self._pack_str(msg.oldpath) +
                    self._pack_str(msg.newpath))

        elif isinstance(msg, FxpSymlink):
            first, second = msg.linkpath, msg.targetpath
            if self.openssh_quirks:
                first, second = second, first
            return struct.pack('>I', msg.id) + self._pack_str(first) + self._pack_str(second)

        else:
            raise ValueError(f"Cannot encode message type: {type(msg)}")

    def _decode_body(self, msg_type: MsgType, body: bytes) -> Message:
        """Decode packet body"""

        if msg_type == MsgType.INIT:
            # Extension pairs may follow the version; v3 servers ignore them
            version = struct.unpack_from('>I', body, 0)[0]
            return FxpInit(version)

        request_id = struct.unpack_from('>I', body, 0)[0]
        pos = 4

        if msg_type == MsgType.OPEN:
            filename, pos = self._unpack_str(body, pos)
            pflags = struct.unpack_from('>I', body, pos)[0]
            attrs, _ = Attributes.unpack(body, pos + 4)
            return FxpOpen(request_id, filename, pflags, attrs)

        elif msg_type == MsgType.CLOSE:
            handle, _ = self._unpack_bytes(body, pos)
            return FxpClose(request_id, handle)

        elif msg_type == MsgType.READ:
            handle, pos = self._unpack_bytes(body, pos)
            offset, length = struct.unpack_from('>QI', body, pos)
            return FxpRead(request_id, handle, offset, length)

        elif msg_type == MsgType.WRITE:
            handle, pos = self._unpack_bytes(body, pos)
            offset = struct.unpack_from('>Q', body, pos)[0]
            data, _ = self._unpack_bytes(body, pos + 8)
            return FxpWrite(request_id, handle, offset, data)

        elif msg_type == MsgType.LSTAT:
            path, _ = self._unpack_str(body, pos)
            return FxpLstat(request_id, path)

        elif msg_type == MsgType.FSTAT:
            handle, _ = self._unpack_bytes(body, pos)
            return FxpFstat(request_id, handle)

        elif msg_type == MsgType.SETSTAT:
            path, pos = self._unpack_str(body, pos)
            attrs, _ = Attributes.unpack(body, pos)
            return FxpSetstat(request_id, path, attrs)

        elif msg_type == MsgType.FSETSTAT:
            handle, pos = self._unpack_bytes(body, pos)
            attrs, _ = Attributes.unpack(body, pos)
            return FxpFsetstat(request_id, handle, attrs)

        elif msg_type == MsgType.OPENDIR:
            path, _ = self._unpack_str(body, pos)
            return FxpOpendir(request_id, path)

        elif msg_type == MsgType.READDIR:
            handle, _ = self._unpack_bytes(body, pos)
            return FxpReaddir(request_id, handle)

        elif msg_type == MsgType.REMOVE:
            filename, _ = self._unpack_str(body, pos)
            return FxpRemove(request_id, filename)

        elif msg_type == MsgType.MKDIR:
            path, pos = self._unpack_str(body, pos)
            attrs, _ = Attributes.unpack(body, pos)
            return FxpMkdir(request_id, path, attrs)

        elif msg_type == MsgType.RMDIR:
            path, _ = self._unpack_str(body, pos)
            return FxpRmdir(request_id, path)

        elif msg_type == MsgType.REALPATH:
            path, _ = self._unpack_str(body, pos)
            return FxpRealpath(request_id, path)

        elif msg_type == MsgType.STAT:
            path, _ = self._unpack_str(body, pos)
            return FxpStat(request_id, path)

        elif msg_type == MsgType.RENAME:
            oldpath, pos = self._unpack_str(body, pos)
            newpath, _ = self._unpack_str(body, pos)
            return FxpRename(request_id, oldpath, newpath)

        elif msg_type == MsgType.READLINK:
            path, _ = self._unpack_str(body, pos)
            return FxpReadlink(request_id, path)

        elif msg_type == MsgType.SYMLINK:
            linkpath, pos = self._unpack_str(body, pos)
            targetpath, _ = self._unpack_str(body, pos)
            if self.openssh_quirks:
                linkpath, targetpath = targetpath, linkpath
            return FxpSymlink(request_id, linkpath, targetpath)

        else:
            raise OpUnsupportedError(f"Unsupported request: {msg_type.name}")

    @staticmethod
    def _pack_bytes(b: bytes) -> bytes:
        """Pack bytes with 4-byte length prefix"""
        return struct.pack('>I', len(b)) + b

    @classmethod
    def _pack_str(cls, s: str) -> bytes:
        return cls._pack_bytes(s.encode('utf-8', 'surrogateescape'))

    @staticmethod
    def _unpack_bytes(data: bytes, pos: int) -> Tuple[bytes, int]:
        """Unpack length-prefixed bytes, returns (bytes, new_position)"""
        blen = struct.unpack_from('>I', data, pos)[0]
        end = pos + 4 + blen
        if end > len(data):
            raise BadMessageError("String runs past end of packet")
        return data[pos + 4:end], end

    @classmethod
    def _unpack_str(cls, data: bytes, pos: int) -> Tuple[str, int]:
        b, pos = cls._unpack_bytes(data, pos)
        return b.decode('utf-8'), pos
