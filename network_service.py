import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Tuple

from errors import CommandError

logger = logging.getLogger("Network")

class NetworkGateway(ABC):
    """Outgoing network actions. Every method raises CommandError on failure."""
    @abstractmethod
    def offer_file(self, peer, transfer): pass
    @abstractmethod
    def abort_file(self, peer, file_hash, file_name): pass
    @abstractmethod
    def send_chat(self, text): pass
    @abstractmethod
    def send_private(self, text, peer): pass
    @abstractmethod
    def announce_topic(self, topic): pass
    @abstractmethod
    def announce_nick(self, nick): pass
    @abstractmethod
    def announce_away(self, text): pass
    @abstractmethod
    def announce_back(self): pass

class OfflineGateway(NetworkGateway):
    """Gateway used when no transport is attached.

    Broadcasts always succeed and are only logged. Actions aimed at a single
    peer fail once that peer has left the directory. ``events`` is the
    callback a transport reports incoming traffic to.
    """
    def __init__(self, peers, events=None):
        self.peers = peers
        self.events = events
        self.history: List[Tuple] = []
        self._lock = threading.Lock()

    def _record(self, *action):
        with self._lock:
            self.history.append(action)
        logger.info(f"Offline gateway: {action[0]} {action[1:]}")

    def _require_online(self, peer, what):
        if self.peers.get(peer.code) is None:
            raise CommandError(f"Failed to {what} - {peer.nick} is no longer online")

    def offer_file(self, peer, transfer):
        self._require_online(peer, f"send the file {transfer.file_name}")
        self._record("offer_file", peer.nick, transfer.file_hash, transfer.file_name, transfer.file_size)

    def abort_file(self, peer, file_hash, file_name):
        self._require_online(peer, f"cancel the file {file_name}")
        self._record("abort_file", peer.nick, file_hash, file_name)

    def send_chat(self, text):
        self._record("send_chat", text)

    def send_private(self, text, peer):
        self._require_online(peer, "send the private message")
        self._record("send_private", peer.nick, text)

    def announce_topic(self, topic):
        self._record("announce_topic", topic.text, topic.nick, topic.time)

    def announce_nick(self, nick):
        self._record("announce_nick", nick)

    def announce_away(self, text):
        self._record("announce_away", text)

    def announce_back(self):
        self._record("announce_back")
