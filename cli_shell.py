# cli_shell.py
import logging

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import NestedCompleter
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.styles import Style

from constants import APP_NAME, COMMAND_MARKER

logger = logging.getLogger("CommandShell")

class CommandShell:
    """Reads lines from the terminal and feeds them to the interpreter."""
    def __init__(self, interpreter, ui, state):
        self.interpreter = interpreter
        self.ui = ui
        self.state = state

    def _get_completer(self):
        nicks = {peer.nick: None for peer in self.state.peers.all() if not self.state.peers.is_me(peer)}
        nested = {}
        for verb in self.interpreter.commands:
            takes_nick = verb.value in ("whois", "send", "receive", "reject", "cancel", "msg")
            nested[f"{COMMAND_MARKER}{verb.value}"] = dict(nicks) if takes_nick else None
        return NestedCompleter.from_nested_dict(nested)

    def _prompt(self):
        me = self.state.me
        away = " <style fg='yellow'>(away)</style>" if me.away else ""
        pending = sum(1 for t in self.state.transfers.receivers() if t.is_waiting)
        notify = f" <style bg='red' fg='white'> {pending} Offers </style>" if pending > 0 else ""
        return HTML(f"<prompt> {APP_NAME} </prompt> (<identity>{me.nick}</identity>){away}{notify} > ")

    def handle_line(self, text):
        if not text.strip():
            return
        if text.startswith(COMMAND_MARKER):
            self.interpreter.parse(text)
        else:
            self.interpreter.send_message(text)

    async def run(self):
        style = Style.from_dict({'prompt': 'bg:#00aa00 #000000 bold', 'identity': '#00ff00 bold'})
        session = PromptSession(history=InMemoryHistory(), style=style)

        self.ui.print_banner()
        self.ui.refresh_topic_display()
        self.interpreter.parse(f"{COMMAND_MARKER}users")

        while not self.ui.shutdown_requested.is_set():
            try:
                with patch_stdout():
                    text = await session.prompt_async(self._prompt(), completer=self._get_completer())
                self.handle_line(text)
            except (KeyboardInterrupt, EOFError):
                break
            except Exception:
                logger.exception("Shell error")
                self.ui.show_system_line("Shell error, see the log for details")
