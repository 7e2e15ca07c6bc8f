import struct

import pytest

from sftpd.channel import MAX_PACKET_SIZE, SFTPChannel
from sftpd.codec import Codec
from sftpd.protocol import *


class FakeChan:
    def __init__(self, client_version="SSH-2.0-AsyncSSH_2.14.0"):
        self.client_version = client_version
        self.written = []
        self.closed = False

    def get_extra_info(self, name, default=None):
        if name == 'client_version':
            return self.client_version
        return default

    def write(self, data):
        self.written.append(data)

    def close(self):
        self.closed = True


class RecordingConnection:
    def __init__(self):
        self.dispatched = []
        self.rejected = []

    def dispatch(self, request):
        self.dispatched.append(request)

    def reject(self, request_id, error):
        self.rejected.append((request_id, error))


@pytest.fixture
def channel():
    channel = SFTPChannel(server=None, client=None)
    channel.connection_made(FakeChan())
    channel.connection = RecordingConnection()
    return channel


def framed(msg):
    return Codec().encode(msg)


def test_packets_split_across_reads(channel):
    data = framed(FxpInit(3)) + framed(FxpStat(1, "/a")) + framed(FxpRealpath(2, "."))

    for i in range(0, len(data), 3):
        channel.data_received(data[i:i + 3], None)

    assert channel._chan.written == [framed(FxpVersion(3))]
    assert channel.connection.dispatched == [FxpStat(1, "/a"), FxpRealpath(2, ".")]
    assert len(channel._buffer) == 0


def test_pipelined_writes_in_one_read(channel):
    channel.data_received(framed(FxpInit(3)), None)
    writes = [FxpWrite(i, b"\x00\x00\x00\x01", i * 32768, b"x" * 32768) for i in range(1, 9)]

    channel.data_received(b"".join(framed(w) for w in writes), None)

    assert channel.connection.dispatched == writes


def test_first_packet_must_be_init(channel):
    channel.data_received(framed(FxpStat(1, "/")), None)

    assert channel._chan.closed
    assert channel.connection.dispatched == []


def test_malformed_request_is_rejected_by_id(channel):
    channel.data_received(framed(FxpInit(3)), None)
    body = bytes([MsgType.STAT]) + struct.pack('>I', 7) + b"\x00"

    channel.data_received(struct.pack('>I', len(body)) + body, None)

    request_id, error = channel.connection.rejected[0]
    assert request_id == 7
    assert error.status == StatusCode.BAD_MESSAGE


def test_oversized_packet_closes_channel(channel):
    channel.data_received(framed(FxpInit(3)), None)
    channel.data_received(struct.pack('>I', MAX_PACKET_SIZE + 1), None)

    assert channel._chan.closed


def test_openssh_clients_get_swapped_symlink_arguments():
    channel = SFTPChannel(server=None, client=None)
    channel.connection_made(FakeChan("SSH-2.0-OpenSSH_9.6"))
    channel.connection = RecordingConnection()

    channel.data_received(framed(FxpInit(3)), None)
    channel.data_received(framed(FxpSymlink(1, "target", "link")), None)

    assert channel.connection.dispatched == [FxpSymlink(1, "link", "target")]
