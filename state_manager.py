# state_manager.py
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import CommandError
from transfer_manager import TransferRegistry

logger = logging.getLogger("StateManager")

@dataclass(eq=False)
class Peer:
    """A chat participant, remote or local, and its session metadata."""
    nick: str
    code: int
    ip_address: str = ""
    host_name: Optional[str] = None
    away: bool = False
    away_message: str = ""
    writing: bool = False
    private_chat_port: int = 0
    client: str = ""
    operating_system: str = ""
    logon_time: float = field(default_factory=time.time)
    last_idle: float = 0.0
    me: bool = False

    # Nicks change, the session code does not
    def __eq__(self, other):
        if not isinstance(other, Peer):
            return NotImplemented
        return self.code == other.code

    def __hash__(self):
        return hash(self.code)

    def __lt__(self, other):
        return self.nick.lower() < other.nick.lower()

    def __str__(self):
        return self.nick

@dataclass(frozen=True)
class Topic:
    text: str = ""
    nick: str = ""
    time: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, 'text', self.text.strip())

    @classmethod
    def empty(cls):
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.text == ""

class PeerRegistry:
    """Manages known peers, including the local user.

    Every method takes the registry lock, so the UI thread and the network
    event thread can both use it without coordination. Readers get snapshots.
    """
    def __init__(self, me: Optional[Peer] = None):
        self._lock = threading.RLock()
        self._peers: Dict[int, Peer] = {}
        self._me_code: Optional[int] = None
        if me is not None:
            self.add(me)

    def add(self, peer: Peer):
        with self._lock:
            if peer.me and self._me_code is not None and self._me_code != peer.code:
                raise ValueError("The local user is already registered")
            if not peer.me and peer.code == self._me_code:
                raise ValueError(f"Code {peer.code} belongs to the local user")
            # Nicks are unique at any instant
            if any(p.nick == peer.nick and p.code != peer.code for p in self._peers.values()):
                raise ValueError(f"Nick '{peer.nick}' is already in use")
            if peer.me:
                self._me_code = peer.code

            if peer.code not in self._peers:
                logger.info(f"New Peer: {peer.nick} ({peer.ip_address})")
            self._peers[peer.code] = peer

    update = add

    def remove(self, code: int) -> Optional[Peer]:
        with self._lock:
            if code == self._me_code:
                logger.warning("Refusing to remove the local user from the directory")
                return None
            peer = self._peers.pop(code, None)
        if peer:
            logger.info(f"Peer Lost: {peer.nick}")
        return peer

    def get(self, code: int) -> Optional[Peer]:
        with self._lock:
            return self._peers.get(code)

    def resolve(self, nick: str) -> Optional[Peer]:
        with self._lock:
            for peer in self._peers.values():
                if peer.nick == nick:
                    return peer
        return None

    def is_nick_taken(self, nick: str) -> bool:
        with self._lock:
            return any(p.nick == nick and p.code != self._me_code for p in self._peers.values())

    def local_user(self) -> Peer:
        with self._lock:
            if self._me_code is None:
                raise LookupError("No local user registered")
            return self._peers[self._me_code]

    @property
    def me(self) -> Peer:
        return self.local_user()

    def is_me(self, peer: Optional[Peer]) -> bool:
        return peer is not None and self._me_code is not None and peer.code == self._me_code

    def all(self) -> List[Peer]:
        with self._lock:
            return list(self._peers.values())

    def __len__(self):
        with self._lock:
            return len(self._peers)

    def rename(self, code: int, new_nick: str):
        with self._lock:
            peer = self._peers.get(code)
            if peer is None:
                raise CommandError(f"No user with code {code} is online")
            if any(p.nick == new_nick and p.code != code for p in self._peers.values()):
                raise CommandError(f"/nick - '{new_nick}' is in use by someone else")
            old_nick, peer.nick = peer.nick, new_nick
        logger.info(f"Nick changed: {old_nick} -> {new_nick}")

    def set_away(self, code: int, away: bool, message: str = ""):
        with self._lock:
            peer = self._peers.get(code)
            if peer is None:
                return
            peer.away = away
            peer.away_message = message if away else ""

    def set_writing(self, code: int, writing: bool):
        with self._lock:
            peer = self._peers.get(code)
            if peer is not None:
                peer.writing = writing

class AppState:
    """Single source of truth for application state."""
    def __init__(self, me: Peer):
        self.peers = PeerRegistry(me)
        self.transfers = TransferRegistry()
        self._topic_lock = threading.Lock()
        self._topic = Topic.empty()

    @property
    def me(self) -> Peer:
        return self.peers.local_user()

    @property
    def topic(self) -> Topic:
        with self._topic_lock:
            return self._topic

    @topic.setter
    def topic(self, topic: Topic):
        with self._topic_lock:
            self._topic = topic
