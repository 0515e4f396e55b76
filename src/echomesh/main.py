"""
EchoMesh - Command line entry point.

Small tools around the room crypto: create room credentials, compare key
fingerprints out of band, encrypt or decrypt single wire messages, and run
a two-peer loopback demo. Passwords are always read with getpass, never
taken from the command line.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .codec import WireCodec
from .config import Config
from .constants import APP_NAME, LOG_DATE_FORMAT, LOG_FORMAT
from .crypto import KdfParams, initialize
from .errors import DecryptionError, EchomeshError
from .room import generate_room
from .session import RoomSession, SessionSettings
from .transport import LoopbackHub

logger = logging.getLogger(__name__)
console = Console()


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for command line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def _read_password(room_id: str) -> str:
    return getpass.getpass(f"Password for {room_id}: ")


def cmd_new_room(args, config: Config) -> int:
    identity = generate_room()
    table = Table(title="New room")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Room ID", identity.room_id)
    table.add_row("Password", identity.password)
    console.print(table)
    console.print("[yellow]Save the password now. It is not stored anywhere.[/yellow]")
    return 0


def cmd_fingerprint(args, config: Config) -> int:
    provider = initialize(KdfParams.from_config(config))
    key = provider.derive_key(_read_password(args.room), args.room)
    console.print(f"{args.room}  [bold]{key.fingerprint()}[/bold]")
    return 0


def cmd_encrypt(args, config: Config) -> int:
    provider = initialize(KdfParams.from_config(config))
    codec = WireCodec(provider, SessionSettings.from_config(config).wire_fields)
    key = provider.derive_key(_read_password(args.room), args.room)
    print(codec.encrypt(args.text, key))
    return 0


def cmd_decrypt(args, config: Config) -> int:
    provider = initialize(KdfParams.from_config(config))
    codec = WireCodec(provider, SessionSettings.from_config(config).wire_fields)
    key = provider.derive_key(_read_password(args.room), args.room)
    try:
        print(codec.decrypt(args.wire, key))
    except DecryptionError as e:
        console.print(f"[red]{e}[/red]")
        return 2
    return 0


async def _run_demo(config: Config, text: str) -> List:
    provider = initialize(KdfParams.from_config(config))
    settings = SessionSettings.from_config(config)
    hub = LoopbackHub()

    alice = RoomSession(provider, hub, settings=settings)
    async with alice:
        identity = alice.create_room()

        async def provide_password(room_id: str) -> Optional[str]:
            return identity.password

        bob = RoomSession(provider, hub, password_provider=provide_password, settings=settings)
        async with bob:
            await bob.request_join(identity.room_id)
            await alice.send(text)
            return [("alice", m) for m in alice.messages] + [("bob", m) for m in bob.messages]


def cmd_demo(args, config: Config) -> int:
    rows = asyncio.run(_run_demo(config, args.text))
    table = Table(title="Loopback demo")
    table.add_column("Session", style="cyan")
    table.add_column("Sender")
    table.add_column("Text")
    for session_name, message in rows:
        table.add_row(session_name, message.sender, message.text)
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echomesh",
        description=f"{APP_NAME} - password-keyed encrypted rooms",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  echomesh new-room                         # Generate a room id and password
  echomesh fingerprint --room room-...      # Compare key fingerprints with a peer
  echomesh encrypt --room room-... "hello"  # Print one wire message
  echomesh demo                             # Two loopback peers exchange a message
        """,
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("new-room", help="Generate a new room id and password")
    p.set_defaults(func=cmd_new_room)

    p = sub.add_parser("fingerprint", help="Show the key fingerprint for a room")
    p.add_argument("--room", required=True, help="Room id")
    p.set_defaults(func=cmd_fingerprint)

    p = sub.add_parser("encrypt", help="Encrypt one message for a room")
    p.add_argument("--room", required=True, help="Room id")
    p.add_argument("text", help="Plaintext to encrypt")
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", help="Decrypt one wire message for a room")
    p.add_argument("--room", required=True, help="Room id")
    p.add_argument("wire", help="Wire message")
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("demo", help="Run two loopback peers in one process")
    p.add_argument("text", nargs="?", default="hello", help="Message alice sends")
    p.set_defaults(func=cmd_demo)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the echomesh command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
        if args.debug:
            config.set("logging", "level", "DEBUG")
        configure_logging(config.get("logging", "level", "INFO"))
        return args.func(args, config)
    except EchomeshError as e:
        console.print(f"[red]{e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
