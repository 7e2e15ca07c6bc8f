# Host filesystem backend and the sftpfs command
from .filesystem import LocalFileSystem

__all__ = [
    'LocalFileSystem',
]
