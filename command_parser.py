# command_parser.py
import logging
import re
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from constants import APP_DESCRIPTION, APP_NAME, APP_VERSION, COMMAND_MARKER, HELP_VERB
from errors import CommandError
from state_manager import Topic
from transfer_manager import FileTransferCoordinator
from utility import format_bytes, format_topic_time, how_long_from_now, is_valid_nick

logger = logging.getLogger("CommandParser")

_TRANSFER_ID = re.compile(r"^[+-]?\d+$")

class Verb(Enum):
    TOPIC = "topic"
    AWAY = "away"
    BACK = "back"
    CLEAR = "clear"
    ABOUT = "about"
    HELP = "help"
    WHOIS = "whois"
    SEND = "send"
    RECEIVE = "receive"
    REJECT = "reject"
    CANCEL = "cancel"
    MSG = "msg"
    NICK = "nick"
    USERS = "users"
    TRANSFERS = "transfers"
    QUIT = "quit"

def split_args(args: str) -> List[str]:
    """Splits on every single whitespace character, dropping trailing empties.

    The raw argument string starts with the separator after the verb, so the
    first element is empty and real arguments start at index 1.
    """
    parts = re.split(r"\s", args)
    while parts and parts[-1] == "":
        parts.pop()
    return parts

def parse_transfer_id(argument: str) -> Optional[int]:
    if not _TRANSFER_ID.match(argument):
        return None
    return int(argument)

class CommandInterpreter:
    """Parses and executes chat commands.

    A command starts with the command marker and may carry arguments. Every
    command reports its outcome through the message sink; nothing raised by a
    command leaves ``parse``.
    """
    def __init__(self, state, gateway, ui, sink, settings=None):
        self.state = state
        self.gateway = gateway
        self.ui = ui
        self.sink = sink
        self.settings = settings
        self.coordinator = FileTransferCoordinator(state, gateway, ui, sink, settings)
        self.commands: Dict[Verb, dict] = {}

        self.register_command(Verb.ABOUT, self.cmd_about, f"/about - information about {APP_NAME}")
        self.register_command(Verb.AWAY, self.cmd_away, "/away <away message> - set status to away")
        self.register_command(Verb.BACK, self.cmd_back, "/back - set status to not away")
        self.register_command(Verb.CANCEL, self.cmd_cancel, "/cancel <nick> <id> - cancel an ongoing file transfer with a user")
        self.register_command(Verb.CLEAR, self.cmd_clear, "/clear - clear all the text from the chat")
        self.register_command(Verb.HELP, self.cmd_help, "/help - show this help message")
        self.register_command(Verb.MSG, self.cmd_msg, "/msg <nick> <msg> - send a private message to a user")
        self.register_command(Verb.NICK, self.cmd_nick, "/nick <new nick> - changes your nick name")
        self.register_command(Verb.QUIT, self.cmd_quit, "/quit - quit from the chat")
        self.register_command(Verb.RECEIVE, self.cmd_receive, "/receive <nick> <id> - accept a file transfer request from a user")
        self.register_command(Verb.REJECT, self.cmd_reject, "/reject <nick> <id> - reject a file transfer request from a user")
        self.register_command(Verb.SEND, self.cmd_send, "/send <nick> <file> - send a file to a user")
        self.register_command(Verb.TOPIC, self.cmd_topic, "/topic <optional new topic> - prints the current topic, or changes the topic")
        self.register_command(Verb.TRANSFERS, self.cmd_transfers, "/transfers - shows a list of all file transfers and their status")
        self.register_command(Verb.USERS, self.cmd_users, "/users - show the user list")
        self.register_command(Verb.WHOIS, self.cmd_whois, "/whois <nick> - show information about a user")

    def register_command(self, verb: Verb, func: Callable[[str], None], help_text: str):
        self.commands[verb] = {'func': func, 'help': help_text}

    @property
    def private_chat_disabled(self) -> bool:
        chat_cfg = getattr(self.settings, 'chat', None)
        return bool(getattr(chat_cfg, 'no_private_chat', False))

    # --- Entry points ---
    def parse(self, line: str):
        """Splits the command from its arguments and runs the matching handler."""
        start = len(COMMAND_MARKER)
        space = line.find(" ")
        command = line[start:space] if space != -1 else line[start:]

        if not command:
            self._run(self.cmd_unknown, command)
            return

        args = line[start + len(command):]
        try:
            verb = Verb(command)
        except ValueError:
            verb = None

        if verb is not None:
            self._run(self.commands[verb]['func'], args)
        elif command.startswith(COMMAND_MARKER):
            self._run(self.cmd_slash, line)
        else:
            self._run(self.cmd_unknown, command)

    def send_message(self, text: str):
        """Sends an ordinary chat line and echoes it locally."""
        self._run(self._send_chat, text)

    def send_file(self, peer, file_path):
        """Offers a file to a peer. Raises CommandError if that fails."""
        return self.coordinator.initiate_send(peer, file_path)

    def cancel_file_transfer(self, transfer):
        """Cancels a transfer, even one the other user has not answered yet."""
        try:
            self.coordinator.cancel(transfer)
        except CommandError as e:
            self.sink.show_system_line(str(e))

    def fix_topic(self, new_topic: str):
        """Changes the topic, or removes it when the new text is blank.

        Raises CommandError if the change could not be announced.
        """
        trimmed = new_topic.strip()
        if trimmed == self.state.topic.text.strip():
            return

        topic = Topic(trimmed, self.state.me.nick, time.time())
        self.gateway.announce_topic(topic)
        self.state.topic = topic
        logger.info(f"Topic changed to '{trimmed}'")

        if trimmed:
            self.sink.show_system_line(f"You changed the topic to: {trimmed}")
        else:
            self.sink.show_system_line("You removed the topic")
        self.ui.refresh_topic_display()

    def show_commands(self):
        lines = [f"{APP_NAME} commands:"]
        lines.extend(entry['help'] for _, entry in sorted(self.commands.items(), key=lambda kv: kv[0].value))
        lines.append("//<text> - send the text as a normal message, with a single slash")
        self.sink.show_system_line("\n".join(lines))

    def _run(self, func, argument):
        try:
            func(argument)
        except CommandError as e:
            logger.info(f"Command failed: {e}")
            self.sink.show_system_line(str(e))
        except Exception as e:
            logger.exception(f"Unexpected error while running '{argument}'")
            self.sink.show_system_line(f"Something went wrong: {e}")

    # --- Commands ---
    def cmd_topic(self, args):
        if len(args) == 0:
            topic = self.state.topic
            if topic.is_empty:
                self.sink.show_system_line("No topic set")
            else:
                self.sink.show_system_line(
                    f"Topic is: {topic.text} (set by {topic.nick} at {format_topic_time(topic.time)})")
        else:
            self.fix_topic(args)

    def cmd_away(self, args):
        me = self.state.me
        if me.away:
            self.sink.show_system_line(f"/away - you are already away: '{me.away_message}'")
        elif not args.strip():
            self.sink.show_system_line("/away - missing argument <away message>")
        else:
            message = args.strip()
            self.gateway.announce_away(message)
            self.state.peers.set_away(me.code, True, message)
            self.sink.show_system_line(f"You went away: {message}")

    def cmd_back(self, args):
        me = self.state.me
        if not me.away:
            self.sink.show_system_line("/back - you are not away")
            return
        self.gateway.announce_back()
        self.state.peers.set_away(me.code, False)
        self.sink.show_system_line("You came back")

    def cmd_clear(self, args):
        self.ui.clear_display()

    def cmd_about(self, args):
        self.sink.show_system_line(f"Information about {APP_NAME} v{APP_VERSION} - {APP_DESCRIPTION}")

    def cmd_help(self, args):
        self.show_commands()

    def cmd_quit(self, args):
        self.ui.request_shutdown()

    def cmd_whois(self, args):
        if not args.strip():
            self.sink.show_system_line("/whois - missing argument <nick>")
            return

        nick = split_args(args)[1].strip()
        peer = self.state.peers.resolve(nick)
        if peer is None:
            self.sink.show_system_line(f"/whois - no such user '{nick}'")
            return

        info = f"/whois - {peer.nick}"
        if peer.away:
            info += " (Away)"
        info += f":\nIP address: {peer.ip_address}"
        if peer.host_name:
            info += f"\nHost name: {peer.host_name}"
        info += (f"\nClient: {peer.client}"
                 f"\nOperating System: {peer.operating_system}"
                 f"\nOnline: {how_long_from_now(peer.logon_time)}")
        if peer.away:
            info += f"\nAway message: {peer.away_message}"
        self.sink.show_system_line(info)

    def cmd_send(self, args):
        parts = split_args(args)
        if len(parts) <= 2:
            self.sink.show_system_line("/send - missing arguments <nick> <file>")
            return

        nick = parts[1]
        peer = self.state.peers.resolve(nick)
        if peer is None:
            self.sink.show_system_line(f"/send - no such user '{nick}'")
            return
        if self.state.peers.is_me(peer):
            self.sink.show_system_line("/send - no point in doing that!")
            return

        file_name = " ".join(parts[2:]).strip()
        path = Path(file_name).expanduser()
        if not path.is_file():
            self.sink.show_system_line(f"/send - no such file '{file_name}'")
            return

        self.send_file(peer, path)

    def _transfer_target(self, name, args):
        """Validates ``<nick> <id>`` arguments; returns (peer, id) or None."""
        parts = split_args(args)
        if len(parts) != 3:
            self.sink.show_system_line(f"/{name} - wrong number of arguments: <nick> <id>")
            return None

        nick = parts[1]
        peer = self.state.peers.resolve(nick)
        if peer is None:
            self.sink.show_system_line(f"/{name} - no such user '{nick}'")
            return None
        if self.state.peers.is_me(peer):
            self.sink.show_system_line(f"/{name} - no point in doing that!")
            return None

        transfer_id = parse_transfer_id(parts[2])
        if transfer_id is None:
            self.sink.show_system_line(f"/{name} - invalid file id argument: '{parts[2]}'")
            return None
        return peer, transfer_id

    def _offered_transfer(self, name, args):
        target = self._transfer_target(name, args)
        if target is None:
            return None

        peer, transfer_id = target
        transfer = self.state.transfers.get_receiver(peer, transfer_id)
        if transfer is None:
            self.sink.show_system_line(f"/{name} - no file with id {transfer_id} offered by {peer.nick}")
            return None
        if transfer.accepted:
            self.sink.show_system_line(f"/{name} - already receiving '{transfer.file_name}' from {peer.nick}")
            return None
        return transfer

    def cmd_receive(self, args):
        transfer = self._offered_transfer("receive", args)
        if transfer is not None:
            self.coordinator.accept(transfer)

    def cmd_reject(self, args):
        transfer = self._offered_transfer("reject", args)
        if transfer is not None:
            self.coordinator.reject(transfer)

    def cmd_cancel(self, args):
        target = self._transfer_target("cancel", args)
        if target is None:
            return

        peer, transfer_id = target
        transfer = self.state.transfers.get(peer, transfer_id)
        if transfer is None:
            self.sink.show_system_line(f"/cancel - no file transfer with id {transfer_id} going on with {peer.nick}")
            return
        if not transfer.is_outbound and not transfer.accepted:
            self.sink.show_system_line(
                f"/cancel - transfer of '{transfer.file_name}' from {peer.nick} has not started yet")
            return

        self.coordinator.cancel(transfer)

    def cmd_msg(self, args):
        parts = split_args(args)
        if len(parts) <= 2:
            self.sink.show_system_line("/msg - missing arguments <nick> <msg>")
            return

        nick = parts[1]
        peer = self.state.peers.resolve(nick)
        if peer is None:
            self.sink.show_system_line(f"/msg - no such user '{nick}'")
        elif self.state.peers.is_me(peer):
            self.sink.show_system_line("/msg - no point in doing that!")
        elif self.private_chat_disabled:
            self.sink.show_system_line("/msg - can't send private chat message when private chat is disabled")
        elif peer.private_chat_port <= 0:
            self.sink.show_system_line(f"/msg - {peer.nick} can't receive private chat messages")
        else:
            text = " ".join(parts[2:]).strip()
            self.gateway.send_private(text, peer)
            self.sink.show_own_private(peer, text)

    def cmd_nick(self, args):
        if not args.strip():
            self.sink.show_system_line("/nick - missing argument <nick>")
            return

        nick = split_args(args)[1].strip()
        me = self.state.me
        if nick == me.nick:
            self.sink.show_system_line(f"/nick - you are already called '{nick}'")
        elif self.state.peers.is_nick_taken(nick):
            self.sink.show_system_line(f"/nick - '{nick}' is in use by someone else")
        elif not is_valid_nick(nick):
            self.sink.show_system_line(f"/nick - '{nick}' is not a valid nick name. (1-10 letters)")
        else:
            self._change_my_nick(me, nick)

    def _change_my_nick(self, me, nick):
        old_nick = me.nick
        # rename() repeats the in-use check under the directory lock
        self.state.peers.rename(me.code, nick)
        try:
            self.gateway.announce_nick(nick)
        except CommandError:
            self.state.peers.rename(me.code, old_nick)
            raise
        self.sink.show_system_line(f"You changed nick to {nick}")
        self.ui.refresh_topic_display()

    def cmd_users(self, args):
        nicks = ", ".join(peer.nick for peer in self.state.peers.all())
        self.sink.show_system_line(f"Users: {nicks}")

    def cmd_transfers(self, args):
        senders = self.state.transfers.senders()
        receivers = self.state.transfers.receivers()
        info = ""

        if senders:
            info += "\n- Sending:"
            for transfer in senders:
                info += self._transfer_line(transfer, "to")
        if receivers:
            info += "\n- Receiving:"
            for transfer in receivers:
                info += self._transfer_line(transfer, "from")
        if not info:
            info = " no active file transfers"

        self.sink.show_system_line(f"File transfers:{info}")

    @staticmethod
    def _transfer_line(transfer, direction):
        return (f"\n  #{transfer.id} {transfer.file_name}"
                f" [{format_bytes(transfer.file_size)}]"
                f" ({transfer.percent}%, {format_bytes(transfer.speed)}/s)"
                f" {direction} {transfer.peer.nick}")

    def cmd_slash(self, line):
        self._send_chat(line.replace(COMMAND_MARKER, "", 1))

    def _send_chat(self, text):
        self.gateway.send_chat(text)
        self.sink.show_own_chat(text)

    def cmd_unknown(self, command):
        self.sink.show_system_line(
            f"Unknown command '{command}'. Type {COMMAND_MARKER}{HELP_VERB} for a list of commands")
