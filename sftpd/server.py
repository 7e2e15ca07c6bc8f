"""
SFTP File Server

This module implements an SSH server whose sftp subsystem is backed by a
FileSystemInterface. It accepts SSH clients, delegates authentication to
the backend, and gives every authenticated client a Connection that owns
its open handles.

Lifecycle events (register with Server.on):
    client-connected      (connection)
    client-disconnected   (connection)
    error                 (exception)
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

import asyncssh

from vfs.errors import GenericError, PermissionDeniedError
from vfs.handles import HandleIdAllocator
from vfs.interface import AuthRequest, FileSystemInterface

from .actions import register_actions
from .channel import SFTPChannel
from .connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_AUTH_METHODS = ["password"]


class ClientHandler(asyncssh.SSHServer):
    """
    Transport-level state for one SSH client.

    Holds the backend's per-client `session` dict and forwards asyncssh's
    callbacks to the Server.
    """

    def __init__(self, server: 'Server'):
        self.server = server
        self.conn: Optional[asyncssh.SSHServerConnection] = None
        self.session: Dict[str, Any] = {}
        self.username: Optional[str] = None
        self.auth_methods: List[str] = list(DEFAULT_AUTH_METHODS)

    @property
    def peer(self):
        if self.conn is None:
            return None
        return self.conn.get_extra_info('peername')

    def connection_made(self, conn: asyncssh.SSHServerConnection):
        self.conn = conn
        logger.info(f"Connection from {self.peer}")

    def connection_lost(self, exc: Optional[Exception]):
        if exc:
            self.server.on_error(exc)
        self.server.on_end(self)

    async def begin_auth(self, username: str) -> bool:
        """Probe the backend with the 'none' method; True means auth is required"""
        self.username = username
        granted = await self.server.authenticate(self, AuthRequest("none", username))
        return not granted

    def password_auth_supported(self) -> bool:
        return "password" in self.auth_methods

    async def validate_password(self, username: str, password: str) -> bool:
        return await self.server.authenticate(self, AuthRequest("password", username, password))

    def auth_completed(self):
        self.server.on_ready(self)

    def session_requested(self):
        return SFTPChannel(self.server, self)

    def close(self):
        if self.conn is not None:
            self.conn.close()


class Server:
    """
    SFTP server.

    Serves one filesystem backend over SSH. Handle ids come from a single
    allocator shared by every connection unless per_connection_handles is
    set, in which case each connection numbers its handles from 1.
    """

    def __init__(self, filesystem: FileSystemInterface, per_connection_handles: bool = False):
        assert isinstance(filesystem, FileSystemInterface), \
            "filesystem must be a FileSystemInterface"

        self.fs = filesystem
        self.per_connection_handles = per_connection_handles
        self.allocator = HandleIdAllocator()
        self.connections: List[Connection] = []
        self.port: Optional[int] = None
        self._server: Optional[asyncssh.SSHAcceptor] = None
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._teardowns: Set[asyncio.Task] = set()

    # ========================================================================
    # Events
    # ========================================================================

    def on(self, event: str, callback: Callable):
        self._listeners[event].append(callback)

    def remove_all_listeners(self):
        self._listeners.clear()

    def emit(self, event: str, *args):
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(*args)
            except Exception as e:
                logger.exception(f"'{event}' listener failed: {e}")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self, key_file: str, port: int, host: str = ''):
        """
        Start listening.

        Args:
            key_file: Path to the SSH host private key
            port: Port to listen on (0 picks a free one)
            host: Address to bind, all interfaces by default
        """
        assert self._server is None, "Server already started"

        key = asyncssh.read_private_key(key_file)

        self._server = await asyncssh.listen(
            host, port,
            server_host_keys=[key],
            server_factory=lambda: ClientHandler(self),
            encoding=None,
        )
        self.port = self._server.get_port()

        logger.info(f"SFTP server listening on {host or '*'}:{self.port}")

    async def stop(self):
        """Close every connection, then the listener"""
        self.remove_all_listeners()

        connections, self.connections = self.connections, []
        for connection in connections:
            try:
                await connection.close()
            except Exception as e:
                logger.error(f"Error closing connection: {e}")

        if self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    # ========================================================================
    # Connections
    # ========================================================================

    def create_connection(self, client: ClientHandler) -> Connection:
        allocator = HandleIdAllocator() if self.per_connection_handles else self.allocator
        connection = Connection(client, allocator)
        self.connections.append(connection)

        self.emit("client-connected", connection)

        return connection

    def get_connection(self, client: ClientHandler) -> Optional[Connection]:
        for connection in self.connections:
            if connection.client is client:
                return connection
        return None

    async def destroy_connection(self, client: ClientHandler):
        connection = self.get_connection(client)

        if connection:
            self.connections.remove(connection)
            try:
                await connection.close()
            finally:
                logger.info(f"Client {client.username} disconnected")
                self.emit("client-disconnected", connection)

    # ========================================================================
    # Transport events
    # ========================================================================

    async def authenticate(self, client: ClientHandler, request: AuthRequest) -> bool:
        """
        Ask the backend whether `request` grants access.

        A backend that answers with a list of methods narrows what the
        client is offered next.
        """
        try:
            methods = await self.fs.authenticate(client.session, request)
        except PermissionDeniedError as e:
            logger.info(f"Authentication denied for {request.username} ({request.method}): {e}")
            return False
        except GenericError as e:
            logger.warning(f"Authentication failed for {request.username} ({request.method}): {e}")
            return False
        except Exception as e:
            logger.exception(f"Authentication error for {request.username}: {e}")
            self.on_error(e)
            return False

        if methods is not None:
            client.auth_methods = list(methods)
            logger.debug(f"Authentication for {request.username} continues with {client.auth_methods}")
            return False

        logger.info(f"Authenticated {request.username} ({request.method})")
        return True

    def on_ready(self, client: ClientHandler):
        self.create_connection(client)

    def on_stream(self, client: ClientHandler, channel: SFTPChannel) -> bool:
        connection = self.get_connection(client)
        if connection is None:
            logger.error("sftp requested before authentication completed")
            return False
        if connection.stream is not None:
            logger.warning(f"Client {client.username} already has an sftp channel")
            return False

        channel.connection = connection
        connection.add_stream(channel)
        register_actions(connection, self.fs)

        logger.debug(f"sftp subsystem started for {client.username}")
        return True

    def on_continue(self, client: ClientHandler):
        connection = self.get_connection(client)
        if connection:
            connection.can_continue()

    def on_end(self, client: ClientHandler):
        task = asyncio.ensure_future(self._destroy(client))
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)

    def on_error(self, error: Exception):
        logger.debug(f"Transport error: {error}")
        self.emit("error", error)

    async def _destroy(self, client: ClientHandler):
        try:
            await self.destroy_connection(client)
        except Exception as e:
            logger.error(f"Error tearing down client {client.username}: {e}")
            self.on_error(e)
