"""
Request handlers binding SFTP requests to a filesystem backend.

Each handler returns one of:
    None        → OK status
    StatusCode  → that status, no payload
    callable    → a writer for a typed payload, run through the
                  connection's flow-control gate
and anything it raises becomes a status reply.
"""

import logging

from vfs.attrs import Name
from vfs.errors import GenericError, StatusCode
from vfs.handles import Handle
from vfs.interface import FileSystemInterface

from .connection import Connection
from .protocol import *

logger = logging.getLogger(__name__)

MAX_READ_LENGTH = 256 * 1024


def _expect_file(handle: Handle) -> Handle:
    if handle.is_directory:
        raise GenericError(f"Not a file handle: {handle.path}")
    return handle


def _expect_directory(handle: Handle) -> Handle:
    if not handle.is_directory:
        raise GenericError(f"Not a directory handle: {handle.path}")
    return handle


def register_actions(connection: Connection, fs: FileSystemInterface):
    """Install a handler for every SFTP request on `connection`"""

    def stream():
        return connection.stream

    # ========================================================================
    # Files
    # ========================================================================

    async def on_open(msg: FxpOpen):
        handle = connection.create_file_handle(msg.filename)
        try:
            await fs.open(connection.session, handle, msg.pflags, msg.attrs)
        except Exception:
            await connection.release_handle(handle)
            raise

        if connection.closed:
            await connection.release_handle(handle)
            raise GenericError("Connection closed")

        logger.debug(f"Open: {msg.filename} flags={msg.pflags:#x} -> {handle.id.value}")
        return lambda: stream().handle(msg.id, handle.id.encoded)

    async def on_close(msg: FxpClose):
        await connection.destroy_handle(msg.handle)

    async def on_read(msg: FxpRead):
        handle = _expect_file(connection.get_handle(msg.handle))
        length = min(msg.length, MAX_READ_LENGTH)
        data = await fs.read(connection.session, handle, msg.offset, length)

        if data:
            return lambda: stream().data(msg.id, data)

        return StatusCode.EOF

    async def on_write(msg: FxpWrite):
        handle = _expect_file(connection.get_handle(msg.handle))
        await fs.write(connection.session, handle, msg.offset, msg.data)

    async def on_fstat(msg: FxpFstat):
        handle = connection.get_handle(msg.handle)
        attrs = await fs.stat(connection.session, handle.path)
        return lambda: stream().attrs(msg.id, attrs)

    async def on_fsetstat(msg: FxpFsetstat):
        handle = connection.get_handle(msg.handle)
        await fs.setstat(connection.session, handle.path, msg.attrs)

    # ========================================================================
    # Directories
    # ========================================================================

    async def on_opendir(msg: FxpOpendir):
        handle = connection.create_directory_handle(msg.path)
        try:
            await fs.opendir(connection.session, handle)
        except Exception:
            await connection.release_handle(handle)
            raise

        if connection.closed:
            await connection.release_handle(handle)
            raise GenericError("Connection closed")

        logger.debug(f"Opendir: {msg.path} -> {handle.id.value}")
        return lambda: stream().handle(msg.id, handle.id.encoded)

    async def on_readdir(msg: FxpReaddir):
        handle = _expect_directory(connection.get_handle(msg.handle))
        names = await fs.listdir(connection.session, handle)

        if names:
            return lambda: stream().name(msg.id, names)

        return StatusCode.EOF

    async def on_mkdir(msg: FxpMkdir):
        await fs.mkdir(connection.session, msg.path, msg.attrs)

    async def on_rmdir(msg: FxpRmdir):
        await fs.rmdir(connection.session, msg.path)

    # ========================================================================
    # Paths
    # ========================================================================

    async def on_stat(msg: FxpStat):
        attrs = await fs.stat(connection.session, msg.path)
        return lambda: stream().attrs(msg.id, attrs)

    async def on_lstat(msg: FxpLstat):
        attrs = await fs.lstat(connection.session, msg.path)
        return lambda: stream().attrs(msg.id, attrs)

    async def on_setstat(msg: FxpSetstat):
        await fs.setstat(connection.session, msg.path, msg.attrs)

    async def on_remove(msg: FxpRemove):
        await fs.remove(connection.session, msg.filename)

    async def on_rename(msg: FxpRename):
        await fs.rename(connection.session, msg.oldpath, msg.newpath)

    async def on_symlink(msg: FxpSymlink):
        await fs.symlink(connection.session, msg.targetpath, msg.linkpath)

    async def on_readlink(msg: FxpReadlink):
        filename = await fs.readlink(connection.session, msg.path)
        return lambda: stream().name(msg.id, [Name(filename)])

    async def on_realpath(msg: FxpRealpath):
        filename = await fs.realpath(connection.session, msg.path)
        return lambda: stream().name(msg.id, [Name(filename)])

    handlers = {
        FxpOpen: on_open,
        FxpClose: on_close,
        FxpRead: on_read,
        FxpWrite: on_write,
        FxpFstat: on_fstat,
        FxpFsetstat: on_fsetstat,
        FxpOpendir: on_opendir,
        FxpReaddir: on_readdir,
        FxpMkdir: on_mkdir,
        FxpRmdir: on_rmdir,
        FxpStat: on_stat,
        FxpLstat: on_lstat,
        FxpSetstat: on_setstat,
        FxpRemove: on_remove,
        FxpRename: on_rename,
        FxpSymlink: on_symlink,
        FxpReadlink: on_readlink,
        FxpRealpath: on_realpath,
    }

    for msg_class, handler in handlers.items():
        connection.add_action(msg_class.action, handler)
