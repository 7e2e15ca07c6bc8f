#!/usr/bin/env python3
"""
sftpfs - serve a local directory over SFTP

Usage:
    python -m localfs.main [options]

Options:
    --key PATH         SSH host key (default: keys/ssh_host_key, generated if missing)
    --port PORT        Listen port (default: 8022)
    --host HOST        Listen address (default: all interfaces)
    --username NAME    Login username (default: $USER)
    --password SECRET  Login password
    --root DIR         Serve DIR as "/" instead of the whole host filesystem
    --debug            Enable debug logging

Every option can also be set in the environment or a .env file
(SFTP_HOST_KEY, SFTP_PORT, SFTP_HOST, SFTP_USERNAME, SFTP_PASSWORD, SFTP_ROOT).
"""

import asyncio
import argparse
import logging
import os
import signal
import sys

import asyncssh
from dotenv import load_dotenv

from localfs.filesystem import LocalFileSystem
from sftpd.server import Server

logger = logging.getLogger(__name__)

DEFAULT_KEY_FILE = os.path.join("keys", "ssh_host_key")
DEFAULT_PORT = 8022
DEFAULT_PASSWORD = "SuPerSeCrReT"


def ensure_host_key(path: str):
    """Generate an ed25519 host key at `path` unless one exists"""
    if os.path.exists(path):
        return

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    key = asyncssh.generate_private_key('ssh-ed25519')
    key.write_private_key(path)
    os.chmod(path, 0o600)
    logger.info(f"Generated host key {path}")


class SFTPFSServer:
    """Local filesystem served as a standalone SFTP server"""

    def __init__(self, username: str, password: str, root: str = None):
        self.filesystem = LocalFileSystem(username, password, root=root)
        self.server = Server(self.filesystem)
        self._stopped = asyncio.Event()

        self.server.on("client-connected", lambda c: logger.info("Client connected"))
        self.server.on("client-disconnected", lambda c: logger.info("Client disconnected"))
        self.server.on("error", lambda e: logger.error(f"Server error: {e}"))

    async def run(self, key_file: str, host: str, port: int):
        """Serve until stop() is called"""
        await self.server.start(key_file, port, host)
        logger.info("Server is ready")
        await self._stopped.wait()

    async def stop(self):
        logger.info("Shutting down...")
        await self.server.stop()
        logger.info("All connections closed")
        self._stopped.set()


async def main():
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="sftpfs - serve a local directory over SFTP"
    )
    parser.add_argument(
        "--key", "-k",
        default=os.environ.get("SFTP_HOST_KEY", DEFAULT_KEY_FILE),
        help=f"SSH host key file (default: {DEFAULT_KEY_FILE})"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=int(os.environ.get("SFTP_PORT", DEFAULT_PORT)),
        help=f"Listen port (default: {DEFAULT_PORT})"
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("SFTP_HOST", ""),
        help="Listen address (default: all interfaces)"
    )
    parser.add_argument(
        "--username", "-u",
        default=os.environ.get("SFTP_USERNAME", os.environ.get("USER")),
        help="Login username (default: $USER)"
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SFTP_PASSWORD", DEFAULT_PASSWORD),
        help="Login password"
    )
    parser.add_argument(
        "--root", "-r",
        default=os.environ.get("SFTP_ROOT"),
        help="Directory to serve as / (default: the host filesystem)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    # Setup logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    if not args.debug:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)

    if not args.username:
        print("Error: no username given and $USER is not set", file=sys.stderr)
        sys.exit(1)

    ensure_host_key(args.key)

    server = SFTPFSServer(args.username, args.password, root=args.root)

    # Handle signals
    loop = asyncio.get_running_loop()

    if sys.platform != 'win32':
        def signal_handler():
            asyncio.create_task(server.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    logger.info(f"Starting SFTP server on port {args.port}")
    logger.info(f" - Key file in use is: {args.key}")
    logger.info(f" - Login username is: {args.username}")
    if args.root:
        logger.info(f" - Serving: {os.path.abspath(args.root)}")

    try:
        await server.run(args.key, args.host, args.port)
    except Exception as e:
        logging.exception(f"Server error: {e}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
