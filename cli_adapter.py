import threading
from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich import box

from constants import APP_NAME, APP_VERSION
from events import MessageSink, UserInterface
from utility import format_bytes

class CLIChatUI(MessageSink, UserInterface):
    """Terminal rendering of chat output on a rich Console."""
    def __init__(self, state, console=None):
        self.state = state
        self.console = console if console else Console()
        self.shutdown_requested = threading.Event()

    @staticmethod
    def _stamp():
        return datetime.now().strftime("%H:%M:%S")

    # --- MessageSink ---
    def show_system_line(self, text):
        self.console.print(f"[dim]{self._stamp()}[/] [bold cyan]***[/] {escape(text)}")

    def show_own_chat(self, text):
        me = self.state.me
        self.console.print(f"[dim]{self._stamp()}[/] [bold green]<{escape(me.nick)}>[/]: {escape(text)}")

    def show_own_private(self, peer, text):
        me = self.state.me
        self.console.print(
            f"[dim]{self._stamp()}[/] [bold magenta]<{escape(me.nick)} -> {escape(peer.nick)}>[/]: {escape(text)}")

    # --- UserInterface ---
    def refresh_topic_display(self):
        topic = self.state.topic
        me = self.state.me
        title = f"{APP_NAME} - Nick: {me.nick}"
        if me.away:
            title += " (Away)"
        if not topic.is_empty:
            title += f" - Topic: {topic.text} ({topic.nick})"
        # OSC 0 sets the terminal window title
        self.console.set_window_title(title)
        self.console.print(f"[bold yellow]{escape(title)}[/]")

    def clear_display(self):
        self.console.clear()

    def request_shutdown(self):
        self.console.print("[bold red]Bye![/]")
        self.shutdown_requested.set()

    def notify_transfer_created(self, transfer):
        arrow = "──▷" if transfer.is_outbound else "◁──"
        label = "📤 Sending" if transfer.is_outbound else "📨 Incoming"
        self.console.print(
            Panel(
                f"[bold cyan]{label}[/] #{transfer.id}  [dim]{arrow}[/]  "
                f"[bold yellow]{escape(transfer.file_name)}[/] ({format_bytes(transfer.file_size)}) "
                f"[dim]{escape(transfer.peer.nick)}[/]",
                border_style="dim cyan",
                box=box.ROUNDED,
                padding=(0, 2),
                expand=False
            )
        )

    def print_banner(self):
        art = f"""
      ( (
       ) )
    ........
    |      |]  [bold green]{APP_NAME}[/]
    \\      /   [dim]v{APP_VERSION}[/]
     `----'
    """
        self.console.print(Panel(art, border_style="green", expand=False))
