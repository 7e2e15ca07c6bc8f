"""
Local disk backend.

Serves the host filesystem through the VFS contract. Blocking os calls
run in worker threads. Clients authenticate with a single static
username and password.

When `root` is given every client path is resolved under it, with "/"
naming the root itself, and paths whose symlinks lead outside it are
refused. Without it client paths are host paths.
"""

import asyncio
import hmac
import logging
import os
import posixpath
from typing import List, Optional

from vfs.attrs import Attributes, Name, convert_flags, longname
from vfs.errors import PermissionDeniedError, from_os_error
from vfs.handles import Handle
from vfs.interface import AuthRequest, FileSystemInterface, Session

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755


async def _run(fn, *args):
    """Run a blocking os call in a worker thread, translating OSError"""
    try:
        return await asyncio.to_thread(fn, *args)
    except OSError as e:
        raise from_os_error(e) from e


def _pread(fd: int, length: int, offset: int) -> Optional[bytes]:
    if offset >= os.fstat(fd).st_size:
        return None
    return os.pread(fd, length, offset)


def _pwrite(fd: int, data: bytes, offset: int):
    view = memoryview(data)
    while view:
        written = os.pwrite(fd, view, offset)
        view = view[written:]
        offset += written


def _scandir(path: str) -> List[Name]:
    names = []
    for filename in sorted(os.listdir(path)):
        try:
            st = os.lstat(os.path.join(path, filename))
        except FileNotFoundError:
            continue  # Removed while listing
        attrs = Attributes.from_stat(st)
        names.append(Name(filename, longname(filename, attrs, st.st_nlink), attrs))
    return names


class LocalFileSystem(FileSystemInterface):
    """Host filesystem backend"""

    def __init__(self, username: str, password: str, root: str = None):
        self.username = username
        self.password = password
        self.root = os.path.realpath(root) if root else None

    # ========================================================================
    # Paths
    # ========================================================================

    def _confine(self, path: str, follow: bool) -> str:
        # normpath on an absolute path drops any leading ".."
        relative = posixpath.normpath("/" + path).lstrip("/")
        local = os.path.join(self.root, relative)

        if follow or not relative:
            resolved = os.path.realpath(local)
        else:
            # The last component is acted on itself, not followed
            parent, name = os.path.split(local)
            resolved = os.path.join(os.path.realpath(parent), name)

        self._client(resolved)
        return resolved

    async def _local(self, path: str, follow: bool = True) -> str:
        """
        Host path for a client path.

        Under a served root, symlinks are resolved and anything that lands
        outside the root raises PermissionDeniedError. With follow=False
        only the parent directories are resolved.
        """
        if self.root is None:
            return path
        return await asyncio.to_thread(self._confine, path, follow)

    def _client(self, local: str) -> str:
        """Client path for a host path"""
        if self.root is None:
            return local
        relative = os.path.relpath(local, self.root)
        if relative == os.curdir:
            return "/"
        if relative == os.pardir or relative.startswith(os.pardir + os.sep):
            raise PermissionDeniedError(f"Outside served root: {local}")
        return "/" + relative.replace(os.sep, "/")

    # ========================================================================
    # Authentication
    # ========================================================================

    async def authenticate(self, session: Session, request: AuthRequest):
        if request.method != "password":
            raise PermissionDeniedError(f"Method not allowed: {request.method}")

        username_ok = hmac.compare_digest(request.username.encode(), self.username.encode())
        password_ok = hmac.compare_digest((request.password or "").encode(), self.password.encode())
        if not (username_ok and password_ok):
            raise PermissionDeniedError("Invalid username or password")

        session["username"] = request.username

    # ========================================================================
    # Files
    # ========================================================================

    async def open(self, session: Session, handle: Handle, flags: int, attrs: Attributes):
        mode = DEFAULT_FILE_MODE if attrs.mode is None else attrs.mode & 0o7777
        local = await self._local(handle.path)
        fd = await _run(os.open, local, convert_flags(flags), mode)

        handle.set_param("fd", fd)
        handle.add_disposable(lambda: os.close(fd))

    async def read(self, session: Session, handle: Handle, offset: int, length: int) -> Optional[bytes]:
        return await _run(_pread, handle.get_param("fd"), length, offset)

    async def write(self, session: Session, handle: Handle, offset: int, data: bytes):
        await _run(_pwrite, handle.get_param("fd"), data, offset)

    async def stat(self, session: Session, path: str) -> Attributes:
        st = await _run(os.stat, await self._local(path))
        return Attributes.from_stat(st)

    async def lstat(self, session: Session, path: str) -> Attributes:
        st = await _run(os.lstat, await self._local(path, follow=False))
        return Attributes.from_stat(st)

    async def setstat(self, session: Session, path: str, attrs: Attributes):
        local = await self._local(path)

        if attrs.mode is not None:
            await _run(os.chmod, local, attrs.mode & 0o7777)

        if attrs.uid is not None or attrs.gid is not None:
            uid = -1 if attrs.uid is None else attrs.uid
            gid = -1 if attrs.gid is None else attrs.gid
            await _run(os.chown, local, uid, gid)

        if attrs.atime is not None or attrs.mtime is not None:
            atime, mtime = attrs.atime, attrs.mtime
            if atime is None or mtime is None:
                st = await _run(os.stat, local)
                atime = st.st_atime if atime is None else atime
                mtime = st.st_mtime if mtime is None else mtime
            await _run(os.utime, local, (atime, mtime))

    # ========================================================================
    # Directories
    # ========================================================================

    async def opendir(self, session: Session, handle: Handle):
        local = await self._local(handle.path)
        if not await asyncio.to_thread(os.path.isdir, local):
            # Raise the same error the listing itself would
            await _run(os.listdir, local)
        handle.set_param("eof", False)

    async def listdir(self, session: Session, handle: Handle) -> Optional[List[Name]]:
        if handle.get_param("eof"):
            return None

        names = await _run(_scandir, await self._local(handle.path))
        handle.set_param("eof", True)
        return names

    async def mkdir(self, session: Session, path: str, attrs: Attributes):
        mode = DEFAULT_DIR_MODE if attrs.mode is None else attrs.mode & 0o7777
        await _run(os.mkdir, await self._local(path, follow=False), mode)
        await self.setstat(session, path, Attributes(
            uid=attrs.uid,
            gid=attrs.gid,
            atime=attrs.atime,
            mtime=attrs.mtime,
        ))

    async def rmdir(self, session: Session, path: str):
        await _run(os.rmdir, await self._local(path, follow=False))

    # ========================================================================
    # Names
    # ========================================================================

    async def remove(self, session: Session, path: str):
        await _run(os.unlink, await self._local(path, follow=False))

    async def rename(self, session: Session, old_path: str, new_path: str):
        old_local = await self._local(old_path, follow=False)
        new_local = await self._local(new_path, follow=False)
        await _run(os.rename, old_local, new_local)

    async def symlink(self, session: Session, target_path: str, link_path: str):
        # The target is stored verbatim, it is resolved relative to the link
        await _run(os.symlink, target_path, await self._local(link_path, follow=False))

    async def readlink(self, session: Session, path: str) -> str:
        return await _run(os.readlink, await self._local(path, follow=False))

    async def realpath(self, session: Session, path: str) -> str:
        local = await _run(os.path.realpath, await self._local(path or "."))
        return self._client(local)
