import struct

import pytest

from sftpd.codec import Codec
from sftpd.protocol import *
from vfs.attrs import ATTR_PERMISSIONS, Attributes, Name
from vfs.errors import BadMessageError, OpUnsupportedError, StatusCode


def string(s):
    b = s.encode() if isinstance(s, str) else s
    return struct.pack('>I', len(b)) + b


def packet(msg_type, body):
    """A packet as the codec sees it, without the length prefix"""
    return bytes([msg_type]) + body


def test_decode_init_ignores_extensions():
    msg = Codec().decode(packet(MsgType.INIT, struct.pack('>I', 6) + string("ext") + string("1")))

    assert isinstance(msg, FxpInit)
    assert msg.version == 6


def test_decode_open():
    body = (struct.pack('>I', 7) + string("/tmp/x") + struct.pack('>I', 0x1a) +
            struct.pack('>II', ATTR_PERMISSIONS, 0o600))
    msg = Codec().decode(packet(MsgType.OPEN, body))

    assert msg == FxpOpen(7, "/tmp/x", 0x1a, Attributes(mode=0o600))
    assert msg.action == "open"


def test_decode_read_and_write():
    codec = Codec()
    token = b"\x00\x00\x00\x01"

    read = codec.decode(packet(MsgType.READ, struct.pack('>I', 1) + string(token) + struct.pack('>QI', 2 ** 33, 4096)))
    write = codec.decode(packet(MsgType.WRITE, struct.pack('>I', 2) + string(token) + struct.pack('>Q', 10) + string(b"abc")))

    assert read == FxpRead(1, token, 2 ** 33, 4096)
    assert write == FxpWrite(2, token, 10, b"abc")


def test_decode_rename_and_path_requests():
    codec = Codec()

    assert codec.decode(packet(MsgType.RENAME, struct.pack('>I', 3) + string("a") + string("b"))) == FxpRename(3, "a", "b")
    assert codec.decode(packet(MsgType.REALPATH, struct.pack('>I', 4) + string("."))) == FxpRealpath(4, ".")
    assert codec.decode(packet(MsgType.REMOVE, struct.pack('>I', 5) + string("f"))) == FxpRemove(5, "f")


def test_symlink_argument_order():
    body = struct.pack('>I', 9) + string("first") + string("second")

    draft = Codec().decode(packet(MsgType.SYMLINK, body))
    openssh = Codec(openssh_quirks=True).decode(packet(MsgType.SYMLINK, body))

    assert (draft.linkpath, draft.targetpath) == ("first", "second")
    assert (openssh.linkpath, openssh.targetpath) == ("second", "first")


def test_unknown_packet_type():
    with pytest.raises(OpUnsupportedError):
        Codec().decode(packet(99, struct.pack('>I', 1)))


def test_extended_request_is_unsupported():
    with pytest.raises(OpUnsupportedError):
        Codec().decode(packet(MsgType.EXTENDED, struct.pack('>I', 1) + string("statvfs@openssh.com")))


@pytest.mark.parametrize("data", [
    b"",
    packet(MsgType.OPEN, b"\x00\x00"),
    packet(MsgType.OPEN, struct.pack('>I', 1) + string("x")),
    packet(MsgType.STAT, struct.pack('>I', 1) + struct.pack('>I', 100) + b"short"),
    packet(MsgType.STAT, struct.pack('>I', 1) + string(b"\xff\xfe")),
])
def test_malformed_packets(data):
    with pytest.raises(BadMessageError):
        Codec().decode(data)


def test_peek_request_id():
    assert Codec.peek_request_id(packet(MsgType.STAT, struct.pack('>I', 42))) == 42
    assert Codec.peek_request_id(packet(MsgType.INIT, struct.pack('>I', 3))) is None
    assert Codec.peek_request_id(b"\x11\x00") is None


def test_encode_version():
    assert Codec().encode(FxpVersion(3)) == b"\x00\x00\x00\x05\x02\x00\x00\x00\x03"


def test_encode_status():
    encoded = Codec().encode(FxpStatus(5, StatusCode.NO_SUCH_FILE, "gone"))

    body = struct.pack('>II', 5, 2) + string("gone") + string("")
    assert encoded == struct.pack('>IB', len(body) + 1, MsgType.STATUS) + body


def test_encode_handle_and_data():
    codec = Codec()

    assert codec.encode(FxpHandle(1, b"\x00\x00\x00\x02"))[4:] == bytes([MsgType.HANDLE]) + struct.pack('>I', 1) + string(b"\x00\x00\x00\x02")
    assert codec.encode(FxpData(2, b"xyz"))[4:] == bytes([MsgType.DATA]) + struct.pack('>I', 2) + string(b"xyz")


def test_encode_name():
    names = [Name("a", "la"), Name("b", "lb", Attributes(size=1))]
    encoded = Codec().encode(FxpName(3, names))

    assert encoded[4] == MsgType.NAME
    assert encoded[5:13] == struct.pack('>II', 3, 2)
    assert encoded[13:] == names[0].pack() + names[1].pack()


def test_encoded_requests_decode_back():
    codec = Codec(openssh_quirks=True)
    request = FxpSymlink(8, "/link", "/target")

    assert codec.decode(codec.encode(request)[4:]) == request


def test_encode_status_with_undecodable_message():
    message = "cannot open " + "bad\udcff"
    encoded = Codec().encode(FxpStatus(1, StatusCode.FAILURE, message))

    assert encoded.endswith(string(b"cannot open bad\xff") + string(""))
