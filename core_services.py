# core_services.py
import logging
import time

from constants import DEFAULT_SAVE_PATH
from errors import CommandError
from state_manager import Peer, Topic
from transfer_manager import TransferDirection
from utility import format_bytes

logger = logging.getLogger("CoreService")

class NetworkEventOrchestrator:
    """Applies events reported by the transport to the shared state.

    ``key`` is the session code of the peer the event is about, ``data`` a
    dict of event fields. Events can arrive from any thread.
    """
    def __init__(self, state, ui, sink, settings=None, loop=None):
        self.state = state
        self.ui = ui
        self.sink = sink
        self.settings = settings
        self.loop = loop
        self._handlers = {
            "PEER_FOUND": self._on_peer_found,
            "PEER_LOST": self._on_peer_lost,
            "NICK_CHANGED": self._on_nick_changed,
            "AWAY_CHANGED": self._on_away_changed,
            "WRITING_CHANGED": self._on_writing_changed,
            "TOPIC_CHANGED": self._on_topic_changed,
            "FILE_OFFERED": self._on_file_offered,
            "FILE_ACCEPTED": self._on_file_accepted,
            "FILE_REJECTED": self._on_file_rejected,
            "FILE_ABORTED": self._on_file_aborted,
            "PROGRESS": self._on_progress,
            "COMPLETED": self._on_completed,
            "FAILED": self._on_failed,
        }

    @property
    def save_path(self):
        storage = getattr(self.settings, 'storage', None)
        return getattr(storage, 'save_path', DEFAULT_SAVE_PATH)

    def dispatch(self, event_type, key, data=None):
        # With a loop attached, state changes happen on the loop's thread
        if self.loop is not None:
            self.loop.call_soon_threadsafe(self._handle_event, event_type, key, data)
        else:
            self._handle_event(event_type, key, data)

    def _handle_event(self, event_type, key, data):
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning(f"Ignoring unknown event '{event_type}'")
            return
        try:
            if event_type == "PEER_FOUND":
                handler(key, data or {})
                return

            peer = self.state.peers.get(int(key))
            if peer is None:
                logger.warning(f"Event '{event_type}' for unknown peer {key}")
                return
            handler(peer, data or {})
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Malformed '{event_type}' event from {key}: {data} ({e})")
        except CommandError as e:
            logger.warning(f"Could not apply '{event_type}' from {key}: {e}")
        except Exception:
            logger.exception(f"Error handling event '{event_type}' for peer {key}")

    # --- Presence ---
    def _on_peer_found(self, code, data):
        code = int(code)
        if code == self.state.me.code:
            logger.warning(f"Ignoring announcement that claims the local code {code}")
            return

        existing = self.state.peers.get(code)
        if existing is not None:
            existing.ip_address = data.get('ip', existing.ip_address)
            existing.private_chat_port = int(data.get('private_chat_port', existing.private_chat_port))
            return

        peer = Peer(
            nick=data['nick'],
            code=code,
            ip_address=data.get('ip', ""),
            host_name=data.get('host_name'),
            private_chat_port=int(data.get('private_chat_port', 0)),
            client=data.get('client', ""),
            operating_system=data.get('os', ""),
            logon_time=float(data.get('logon_time', time.time())),
        )
        try:
            self.state.peers.add(peer)
        except ValueError as e:
            logger.warning(f"Ignoring peer {code} from {peer.ip_address}: {e}")
            return
        self.sink.show_system_line(f"{peer.nick} logged on from {peer.ip_address}")

    def _on_peer_lost(self, peer, data):
        self.state.peers.remove(peer.code)
        for transfer in self.state.transfers.remove_for_peer(peer):
            transfer.fail()
        self.sink.show_system_line(f"{peer.nick} logged off")

    def _on_nick_changed(self, peer, data):
        old_nick = peer.nick
        self.state.peers.rename(peer.code, data['nick'])
        self.sink.show_system_line(f"{old_nick} changed nick to {peer.nick}")

    def _on_away_changed(self, peer, data):
        away = bool(data['away'])
        self.state.peers.set_away(peer.code, away, data.get('message', ""))
        if away:
            self.sink.show_system_line(f"{peer.nick} went away: {peer.away_message}")
        else:
            self.sink.show_system_line(f"{peer.nick} came back")

    def _on_writing_changed(self, peer, data):
        self.state.peers.set_writing(peer.code, bool(data['writing']))

    def _on_topic_changed(self, peer, data):
        topic = Topic(data['text'], peer.nick, float(data.get('time', time.time())))
        if topic.text == self.state.topic.text:
            return
        self.state.topic = topic
        if topic.is_empty:
            self.sink.show_system_line(f"{peer.nick} removed the topic")
        else:
            self.sink.show_system_line(f"{peer.nick} changed the topic to: {topic.text}")
        self.ui.refresh_topic_display()

    # --- File transfers ---
    def _on_file_offered(self, peer, data):
        transfer = self.state.transfers.add_receiver(
            peer, data['file_name'], int(data['file_size']), self.save_path, int(data.get('file_hash', 0)))
        self.ui.notify_transfer_created(transfer)
        self.sink.show_system_line(
            f"{peer.nick} is trying to send the file {transfer.file_name} (#{transfer.id}) "
            f"[{format_bytes(transfer.file_size)}]. Use /receive or /reject")

    def _on_file_accepted(self, peer, data):
        transfer = self.state.transfers.find_by_hash(peer, int(data['file_hash']), TransferDirection.SEND)
        if transfer is None or transfer.is_cancelled:
            return
        transfer.accept()
        self.sink.show_system_line(f"{peer.nick} accepted the file {transfer.file_name}")

    def _on_file_rejected(self, peer, data):
        transfer = self.state.transfers.find_by_hash(peer, int(data['file_hash']), TransferDirection.SEND)
        if transfer is None:
            return
        transfer.reject()
        self.state.transfers.remove(transfer)
        self.sink.show_system_line(f"{peer.nick} rejected the file {transfer.file_name}")

    def _on_file_aborted(self, peer, data):
        transfer = self.state.transfers.find_by_hash(peer, int(data['file_hash']), TransferDirection.RECEIVE)
        if transfer is None:
            return
        transfer.cancel()
        self.state.transfers.remove(transfer)
        self.sink.show_system_line(f"{peer.nick} aborted sending of {transfer.file_name}")

    def _on_progress(self, peer, data):
        transfer = self.state.transfers.get(peer, int(data['transfer_id']))
        if transfer is not None:
            transfer.update_progress(data['percent'], data.get('speed', 0))

    def _on_completed(self, peer, data):
        transfer = self.state.transfers.get(peer, int(data['transfer_id']))
        if transfer is None:
            return
        transfer.complete()
        self.state.transfers.remove(transfer)
        if transfer.is_outbound:
            self.sink.show_system_line(f"{transfer.file_name} successfully sent to {peer.nick}")
        else:
            self.sink.show_system_line(f"Successfully received {transfer.file_name} from {peer.nick}")

    def _on_failed(self, peer, data):
        transfer = self.state.transfers.get(peer, int(data['transfer_id']))
        if transfer is None:
            return
        transfer.fail()
        self.state.transfers.remove(transfer)
        reason = data.get('reason', "")
        suffix = f": {reason}" if reason else ""
        if transfer.is_outbound:
            self.sink.show_system_line(f"Failed to send {transfer.file_name} to {peer.nick}{suffix}")
        else:
            self.sink.show_system_line(f"Failed to receive {transfer.file_name} from {peer.nick}{suffix}")

class TransportEventBridge:
    """Callable handed to a transport, delegating to the orchestrator."""
    def __init__(self, orchestrator):
        self.orch = orchestrator

    def __call__(self, *args):
        if not args: return
        event_type = args[0]
        key = args[1] if len(args) > 1 else None
        data = args[2] if len(args) > 2 else None
        self.orch.dispatch(event_type, key, data)
