import asyncio
import argparse
import logging
import os
import platform
import random
import socket

from rich.console import Console

from cli_adapter import CLIChatUI
from cli_shell import CommandShell
from command_parser import CommandInterpreter
from config_manager import Settings
from constants import DEFAULT_CONFIG_PATH
from core_services import NetworkEventOrchestrator, TransportEventBridge
from logger_config import setup_logging
from network_service import OfflineGateway
from state_manager import AppState, Peer
from utility import is_valid_nick

logger = logging.getLogger("Main")
console = Console()

def local_address():
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "127.0.0.1"

def build_local_peer(settings):
    nick = settings.user.nick
    if not is_valid_nick(nick):
        logger.warning(f"Configured nick '{nick}' is not valid, using a generated one")
        nick = f"Guest{random.randint(100, 999)}"
    return Peer(
        nick=nick,
        code=random.randint(10_000_000, 99_999_999),
        ip_address=local_address(),
        host_name=socket.gethostname(),
        private_chat_port=settings.user.private_chat_port,
        client=settings.user.client,
        operating_system=f"{platform.system()} {platform.release()}".strip(),
        me=True,
    )

def build_services(state, ui, settings, loop):
    """Wires the gateway, the interpreter and the event path around one state."""
    orchestrator = NetworkEventOrchestrator(state, ui, ui, settings, loop=loop)
    gateway = OfflineGateway(state.peers, events=TransportEventBridge(orchestrator))
    interpreter = CommandInterpreter(state, gateway, ui, ui, settings)
    return interpreter, orchestrator

async def main():
    args = parse_args()
    config_path = args.config

    if not os.path.exists(config_path):
        console.print(f"[red]❌ Error: Config file '{config_path}' not found.[/]")
        return

    try:
        settings = Settings(config_path)
    except ValueError as e:
        console.print(f"[red]❌ Error: {e}[/]")
        return

    setup_logging(
        log_filename=settings.logging.file_path,
        debug_mode=args.verbose or settings.logging.debug,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
    )

    state = AppState(build_local_peer(settings))
    ui = CLIChatUI(state, console=console)
    interpreter, _ = build_services(state, ui, settings, asyncio.get_running_loop())

    logger.info(f"Started as {state.me.nick} ({state.me.code}) with {config_path}")
    await CommandShell(interpreter, ui, state).run()
    logger.info("Shutting down")

def parse_args():
    parser = argparse.ArgumentParser(description="DropChat LAN chat")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-c", "--config", type=str, default=DEFAULT_CONFIG_PATH, help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})")
    return parser.parse_args()

def cli():
    try: asyncio.run(main())
    except KeyboardInterrupt: pass

if __name__ == "__main__":
    cli()
