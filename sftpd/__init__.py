# SFTP v3 server over SSH, backed by a vfs.FileSystemInterface
from .protocol import MsgType, SFTP_VERSION
from .codec import Codec
from .connection import Connection
from .actions import register_actions
from .channel import SFTPChannel
from .server import Server, ClientHandler

__all__ = [
    'MsgType',
    'SFTP_VERSION',
    'Codec',
    'Connection',
    'register_actions',
    'SFTPChannel',
    'Server',
    'ClientHandler',
]
