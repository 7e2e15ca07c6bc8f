"""
SFTP subsystem channel.

Reassembles SFTP packets from an SSH session channel, negotiates the
protocol version, and hands decoded requests to the client's Connection.
Also provides the outbound primitives (status, handle, data, attrs, name)
the request handlers write through. Each returns False once the channel's
send buffer is above its high-water mark; resume_writing() is the drain
signal that reopens the connection's gate.
"""

import logging
import struct
from typing import List, Optional

import asyncssh

from vfs.attrs import Attributes, Name
from vfs.errors import BadMessageError, GenericError, StatusCode

from .codec import Codec
from .protocol import *

logger = logging.getLogger(__name__)

SFTP_SUBSYSTEM = "sftp"
MAX_PACKET_SIZE = 1024 * 1024 + 1024


class SFTPChannel(asyncssh.SSHServerSession):
    """One SSH session channel running the sftp subsystem"""

    def __init__(self, server, client):
        self._server = server
        self._client = client
        self._chan: Optional[asyncssh.SSHServerChannel] = None
        self._buffer = bytearray()
        self._codec = Codec()
        self._initialized = False
        self._closing = False
        self.paused = False
        self.connection = None

    # ========================================================================
    # asyncssh session callbacks
    # ========================================================================

    def connection_made(self, chan: asyncssh.SSHServerChannel):
        self._chan = chan
        client_version = chan.get_extra_info('client_version') or ''
        self._codec = Codec(openssh_quirks='OpenSSH' in client_version)

    def subsystem_requested(self, subsystem: str) -> bool:
        if subsystem != SFTP_SUBSYSTEM:
            logger.warning(f"Rejecting subsystem request: {subsystem}")
            return False
        return self._server.on_stream(self._client, self)

    def data_received(self, data: bytes, datatype):
        self._buffer.extend(data)

        # Process complete packets
        while len(self._buffer) >= 4 and not self._closing:
            size = struct.unpack_from('>I', self._buffer, 0)[0]
            if size > MAX_PACKET_SIZE:
                logger.error(f"Packet too large: {size} > {MAX_PACKET_SIZE}")
                self.close()
                return

            if len(self._buffer) < 4 + size:
                break  # Need more data

            packet = bytes(self._buffer[4:4 + size])
            del self._buffer[:4 + size]
            self._handle_packet(packet)

    def eof_received(self) -> bool:
        logger.debug("Client closed the sftp channel")
        return False

    def pause_writing(self):
        self.paused = True

    def resume_writing(self):
        self.paused = False
        self._server.on_continue(self._client)

    def connection_lost(self, exc: Optional[Exception]):
        self._closing = True
        if exc:
            logger.info(f"sftp channel lost: {exc}")

    # ========================================================================
    # Inbound
    # ========================================================================

    def _handle_packet(self, packet: bytes):
        # Version must be negotiated before anything else
        if not self._initialized:
            if packet[:1] != bytes([MsgType.INIT]):
                logger.error("Expected SSH_FXP_INIT, closing channel")
                self.close()
                return
            try:
                init = self._codec.decode(packet)
            except GenericError as e:
                logger.error(f"Bad SSH_FXP_INIT: {e}")
                self.close()
                return
            logger.debug(f"Client SFTP version {init.version}, speaking {SFTP_VERSION}")
            self._initialized = True
            self.send(FxpVersion(SFTP_VERSION))
            return

        try:
            request = self._codec.decode(packet)
            if not isinstance(request, Request):
                raise BadMessageError(f"Unexpected {type(request).__name__} packet")
        except GenericError as e:
            request_id = self._codec.peek_request_id(packet)
            if request_id is None:
                logger.warning(f"Dropping undecodable packet: {e}")
                return
            logger.debug(f"Rejecting request {request_id}: {e}")
            self.connection.reject(request_id, e)
            return

        self.connection.dispatch(request)

    # ========================================================================
    # Outbound
    # ========================================================================

    def send(self, msg: Message) -> bool:
        """Write a message, returns False when the peer should be let drain"""
        if self._chan is None or self._closing:
            logger.debug(f"Channel closed, dropping {type(msg).__name__} id={msg.id}")
            return True

        logger.debug(f"→ {type(msg).__name__} id={msg.id}")
        self._chan.write(self._codec.encode(msg))
        return not self.paused

    def status(self, request_id: int, code: StatusCode, message: str = None) -> bool:
        code = StatusCode(code)
        if not message:
            message = STATUS_MESSAGES.get(code, "")
        return self.send(FxpStatus(request_id, code, message))

    def handle(self, request_id: int, token: bytes) -> bool:
        return self.send(FxpHandle(request_id, token))

    def data(self, request_id: int, data: bytes) -> bool:
        return self.send(FxpData(request_id, data))

    def attrs(self, request_id: int, attrs: Attributes) -> bool:
        return self.send(FxpAttrs(request_id, attrs))

    def name(self, request_id: int, names: List[Name]) -> bool:
        return self.send(FxpName(request_id, names))

    def close(self):
        self._closing = True
        if self._chan is not None:
            self._chan.close()
