import os

import pytest

from localfs.filesystem import LocalFileSystem
from vfs.attrs import Attributes, OpenFlags
from vfs.errors import GenericError, NoSuchFileError, PermissionDeniedError
from vfs.handles import Handle, HandleIdAllocator, HandleKind
from vfs.interface import AuthRequest


@pytest.fixture
def fs():
    return LocalFileSystem("alice", "secret")


@pytest.fixture
def rooted(tmp_path):
    return LocalFileSystem("alice", "secret", root=str(tmp_path))


def file_handle(path):
    return Handle(HandleKind.FILE, str(path), HandleIdAllocator())


def dir_handle(path):
    return Handle(HandleKind.DIRECTORY, str(path), HandleIdAllocator())


# ============================================================================
# Authentication
# ============================================================================

@pytest.mark.asyncio
async def test_password_accepted(fs):
    session = {}
    assert await fs.authenticate(session, AuthRequest("password", "alice", "secret")) is None
    assert session["username"] == "alice"


@pytest.mark.asyncio
@pytest.mark.parametrize("request_", [
    AuthRequest("password", "alice", "wrong"),
    AuthRequest("password", "bob", "secret"),
    AuthRequest("none", "alice"),
    AuthRequest("publickey", "alice"),
])
async def test_authentication_rejected(fs, request_):
    with pytest.raises(PermissionDeniedError):
        await fs.authenticate({}, request_)


# ============================================================================
# Files
# ============================================================================

@pytest.mark.asyncio
async def test_write_read_until_eof(fs, tmp_path):
    path = tmp_path / "data.bin"
    handle = file_handle(path)

    await fs.open({}, handle, OpenFlags.READ | OpenFlags.WRITE | OpenFlags.CREATE, Attributes())
    await fs.write({}, handle, 0, b"hello ")
    await fs.write({}, handle, 6, b"world")

    assert await fs.read({}, handle, 0, 5) == b"hello"
    assert await fs.read({}, handle, 6, 100) == b"world"
    assert await fs.read({}, handle, 11, 100) is None
    assert await fs.read({}, handle, 50, 100) is None

    await handle.release()
    assert path.read_bytes() == b"hello world"


@pytest.mark.asyncio
async def test_open_applies_mode(fs, tmp_path):
    path = tmp_path / "private"
    handle = file_handle(path)

    await fs.open({}, handle, OpenFlags.WRITE | OpenFlags.CREATE, Attributes(mode=0o600))
    await handle.release()

    assert os.stat(path).st_mode & 0o777 == 0o600


@pytest.mark.asyncio
async def test_exclusive_create_of_existing_file_fails(fs, tmp_path):
    path = tmp_path / "exists"
    path.write_bytes(b"")

    with pytest.raises(GenericError):
        await fs.open({}, file_handle(path), OpenFlags.WRITE | OpenFlags.CREATE | OpenFlags.EXCLUSIVE, Attributes())


@pytest.mark.asyncio
async def test_missing_file(fs, tmp_path):
    with pytest.raises(NoSuchFileError):
        await fs.open({}, file_handle(tmp_path / "nope"), OpenFlags.READ, Attributes())
    with pytest.raises(NoSuchFileError):
        await fs.stat({}, str(tmp_path / "nope"))


@pytest.mark.asyncio
async def test_setstat_changes_only_given_fields(fs, tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"x")
    os.utime(path, (1000, 2000))
    os.chmod(path, 0o644)

    await fs.setstat({}, str(path), Attributes(mode=0o600))
    st = os.stat(path)
    assert st.st_mode & 0o777 == 0o600
    assert int(st.st_mtime) == 2000

    await fs.setstat({}, str(path), Attributes(mtime=5000))
    st = os.stat(path)
    assert int(st.st_mtime) == 5000
    assert int(st.st_atime) == 1000
    assert st.st_mode & 0o777 == 0o600


@pytest.mark.asyncio
async def test_stat_and_lstat(fs, tmp_path):
    target = tmp_path / "target"
    target.write_bytes(b"12345")
    link = tmp_path / "link"
    os.symlink(target, link)

    assert (await fs.stat({}, str(link))).size == 5
    assert (await fs.lstat({}, str(link))).is_symlink()


# ============================================================================
# Directories
# ============================================================================

@pytest.mark.asyncio
async def test_listdir_is_single_shot(fs, tmp_path):
    (tmp_path / "b.txt").write_bytes(b"bb")
    (tmp_path / "a").mkdir()
    handle = dir_handle(tmp_path)

    await fs.opendir({}, handle)
    names = await fs.listdir({}, handle)

    assert [n.filename for n in names] == ["a", "b.txt"]
    assert names[0].attrs.is_dir()
    assert names[0].longname.startswith("d")
    assert names[0].longname.endswith(" a")
    assert names[1].attrs.size == 2

    assert await fs.listdir({}, handle) is None


@pytest.mark.asyncio
async def test_opendir_of_missing_directory(fs, tmp_path):
    with pytest.raises(NoSuchFileError):
        await fs.opendir({}, dir_handle(tmp_path / "nope"))


@pytest.mark.asyncio
async def test_opendir_of_file(fs, tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"")

    with pytest.raises(GenericError):
        await fs.opendir({}, dir_handle(path))


@pytest.mark.asyncio
async def test_mkdir_rename_rmdir(fs, tmp_path):
    old = tmp_path / "old"
    new = tmp_path / "new"

    await fs.mkdir({}, str(old), Attributes(mode=0o700, mtime=3000))
    assert old.is_dir()
    assert os.stat(old).st_mode & 0o777 == 0o700
    assert int(os.stat(old).st_mtime) == 3000

    await fs.rename({}, str(old), str(new))
    assert not old.exists()
    assert new.is_dir()

    await fs.rmdir({}, str(new))
    assert not new.exists()


@pytest.mark.asyncio
async def test_remove(fs, tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"")

    await fs.remove({}, str(path))
    assert not path.exists()

    with pytest.raises(NoSuchFileError):
        await fs.remove({}, str(path))


@pytest.mark.asyncio
async def test_symlink_and_readlink(fs, tmp_path):
    link = tmp_path / "link"

    await fs.symlink({}, "target", str(link))

    assert os.readlink(link) == "target"
    assert await fs.readlink({}, str(link)) == "target"


@pytest.mark.asyncio
async def test_realpath(fs, tmp_path):
    (tmp_path / "d").mkdir()
    expected = os.path.realpath(tmp_path / "d")

    assert await fs.realpath({}, str(tmp_path / "d" / ".." / "d")) == expected


# ============================================================================
# Served root
# ============================================================================

@pytest.mark.asyncio
async def test_root_maps_client_paths(rooted, tmp_path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "readme").write_bytes(b"hi")

    assert (await rooted.stat({}, "/docs/readme")).size == 2
    assert await rooted.realpath({}, ".") == "/"
    assert await rooted.realpath({}, "/docs/../docs") == "/docs"


@pytest.mark.asyncio
async def test_root_cannot_be_escaped(rooted, tmp_path):
    assert await rooted.realpath({}, "/../../..") == "/"

    handle = dir_handle("/..")
    await rooted.opendir({}, handle)
    assert await rooted.listdir({}, handle) == []


@pytest.mark.asyncio
async def test_root_realpath_refuses_links_outside(rooted, tmp_path):
    os.symlink("/", tmp_path / "out")

    with pytest.raises(PermissionDeniedError):
        await rooted.realpath({}, "/out")


@pytest.mark.asyncio
async def test_listdir_with_undecodable_name(fs, tmp_path):
    try:
        fd = os.open(os.path.join(os.fsencode(tmp_path), b"bad\xff"), os.O_WRONLY | os.O_CREAT)
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 names")
    os.close(fd)

    handle = dir_handle(tmp_path)
    await fs.opendir({}, handle)
    names = await fs.listdir({}, handle)

    assert [os.fsencode(n.filename) for n in names] == [b"bad\xff"]
    assert b"bad\xff" in names[0].pack()


@pytest.fixture
def outside(tmp_path_factory):
    directory = tmp_path_factory.mktemp("outside")
    (directory / "secret").write_bytes(b"outside")
    return directory


@pytest.mark.asyncio
async def test_root_refuses_following_planted_symlinks(rooted, tmp_path, outside):
    await rooted.symlink({}, str(outside / "secret"), "/link")
    await rooted.symlink({}, str(outside), "/dirlink")

    with pytest.raises(PermissionDeniedError):
        await rooted.open({}, file_handle("/link"), OpenFlags.READ, Attributes())
    with pytest.raises(PermissionDeniedError):
        await rooted.stat({}, "/link")
    with pytest.raises(PermissionDeniedError):
        await rooted.setstat({}, "/link", Attributes(mode=0o777))
    with pytest.raises(PermissionDeniedError):
        await rooted.opendir({}, dir_handle("/dirlink"))
    with pytest.raises(PermissionDeniedError):
        await rooted.mkdir({}, "/dirlink/new", Attributes())
    with pytest.raises(PermissionDeniedError):
        await rooted.remove({}, "/dirlink/secret")

    assert (outside / "secret").read_bytes() == b"outside"
    assert not (outside / "new").exists()
    assert os.stat(outside / "secret").st_mode & 0o777 != 0o777


@pytest.mark.asyncio
async def test_root_allows_acting_on_the_link_itself(rooted, tmp_path, outside):
    await rooted.symlink({}, str(outside / "secret"), "/link")

    assert (await rooted.lstat({}, "/link")).is_symlink()
    assert await rooted.readlink({}, "/link") == str(outside / "secret")

    await rooted.rename({}, "/link", "/moved")
    await rooted.remove({}, "/moved")

    assert not os.path.lexists(tmp_path / "moved")
    assert (outside / "secret").exists()


@pytest.mark.asyncio
async def test_root_follows_symlinks_that_stay_inside(rooted, tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "file").write_bytes(b"inside")
    await rooted.symlink({}, "data", "/shortcut")

    handle = file_handle("/shortcut/file")
    await rooted.open({}, handle, OpenFlags.READ, Attributes())
    try:
        assert await rooted.read({}, handle, 0, 100) == b"inside"
    finally:
        await handle.release()
