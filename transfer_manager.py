import itertools
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from errors import CommandError
from utility import file_identifier, format_bytes, get_file_with_incremented_name

if TYPE_CHECKING:
    from state_manager import Peer

logger = logging.getLogger("TransferManager")

class TransferDirection(Enum):
    SEND = "send"
    RECEIVE = "receive"

class TransferStatus(Enum):
    OFFERED = "offered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

@dataclass(eq=False)
class FileTransfer:
    """One file exchange with a remote peer, in a single direction.

    The id only means something together with the peer that offered the
    file. ``accepted`` stays true after a cancel so the transport can tell
    an aborted offer from an aborted transfer.
    """
    id: int
    direction: TransferDirection
    peer: "Peer"
    file_path: Path
    file_size: int
    file_hash: int = 0
    percent: int = 0
    speed: float = 0.0
    status: TransferStatus = TransferStatus.OFFERED
    accepted: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _answered: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name

    @property
    def is_outbound(self) -> bool:
        return self.direction is TransferDirection.SEND

    @property
    def is_waiting(self) -> bool:
        """True while the offer has not been answered."""
        return self.status is TransferStatus.OFFERED

    @property
    def is_cancelled(self) -> bool:
        return self.status is TransferStatus.CANCELLED

    def accept(self, file_path: Optional[Path] = None):
        """Accepts the offer, optionally saving under another name."""
        with self._lock:
            if self.status is not TransferStatus.OFFERED:
                raise CommandError(f"Transfer of '{self.file_name}' can not be accepted, it is {self.status.value}")
            if file_path is not None:
                self.file_path = Path(file_path)
            self.status = TransferStatus.ACCEPTED
            self.accepted = True
        self._answered.set()

    def reject(self):
        with self._lock:
            if self.status is not TransferStatus.OFFERED:
                raise CommandError(f"Transfer of '{self.file_name}' can not be rejected, it is {self.status.value}")
            self.status = TransferStatus.REJECTED
        self._answered.set()

    def cancel(self):
        with self._lock:
            if self.status is not TransferStatus.REJECTED:
                self.status = TransferStatus.CANCELLED
        self._answered.set()

    def complete(self):
        with self._lock:
            if self.status is TransferStatus.ACCEPTED:
                self.status = TransferStatus.COMPLETED
                self.percent = 100

    def fail(self):
        with self._lock:
            if self.status in (TransferStatus.OFFERED, TransferStatus.ACCEPTED):
                self.status = TransferStatus.FAILED
        self._answered.set()

    def update_progress(self, percent: int, speed: float):
        with self._lock:
            self.percent = max(0, min(100, int(percent)))
            self.speed = max(0.0, float(speed))

    def wait_for_answer(self, timeout: Optional[float] = None) -> bool:
        """Blocks the caller until the offer is answered; True means accepted."""
        self._answered.wait(timeout)
        return self.status is TransferStatus.ACCEPTED

class TransferRegistry:
    """Owns every offered or running file transfer.

    Safe to use from the UI thread and the network thread at the same time.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._senders: List[FileTransfer] = []
        self._receivers: List[FileTransfer] = []

    def add_sender(self, peer, file_path, file_size: Optional[int] = None) -> FileTransfer:
        path = Path(file_path)
        if file_size is None:
            file_size = os.path.getsize(path)
        with self._lock:
            transfer = FileTransfer(next(self._ids), TransferDirection.SEND, peer, path,
                                    file_size, file_identifier(path))
            self._senders.append(transfer)
        logger.info(f"Registered outgoing transfer #{transfer.id} {transfer.file_name} to {peer.nick}")
        return transfer

    def add_receiver(self, peer, file_name: str, file_size: int, save_dir, file_hash: int = 0) -> FileTransfer:
        # Only the base name is trusted, the sender controls the rest
        target = Path(save_dir) / os.path.basename(file_name)
        with self._lock:
            transfer = FileTransfer(next(self._ids), TransferDirection.RECEIVE, peer, target,
                                    int(file_size), file_hash)
            self._receivers.append(transfer)
        logger.info(f"Registered incoming transfer #{transfer.id} {transfer.file_name} from {peer.nick}")
        return transfer

    def get_sender(self, peer, transfer_id: int) -> Optional[FileTransfer]:
        with self._lock:
            return self._find(self._senders, peer, transfer_id)

    def get_receiver(self, peer, transfer_id: int) -> Optional[FileTransfer]:
        with self._lock:
            return self._find(self._receivers, peer, transfer_id)

    def get(self, peer, transfer_id: int) -> Optional[FileTransfer]:
        with self._lock:
            return self._find(self._senders, peer, transfer_id) or self._find(self._receivers, peer, transfer_id)

    def find_by_hash(self, peer, file_hash: int, direction: TransferDirection) -> Optional[FileTransfer]:
        with self._lock:
            pool = self._senders if direction is TransferDirection.SEND else self._receivers
            for transfer in pool:
                if transfer.peer.code == peer.code and transfer.file_hash == file_hash:
                    return transfer
        return None

    @staticmethod
    def _find(pool, peer, transfer_id):
        for transfer in pool:
            if transfer.id == transfer_id and transfer.peer.code == peer.code:
                return transfer
        return None

    def senders(self) -> List[FileTransfer]:
        with self._lock:
            return list(self._senders)

    def receivers(self) -> List[FileTransfer]:
        with self._lock:
            return list(self._receivers)

    def all(self) -> List[FileTransfer]:
        with self._lock:
            return self._senders + self._receivers

    def remove(self, transfer: FileTransfer) -> bool:
        with self._lock:
            pool = self._senders if transfer.is_outbound else self._receivers
            if transfer not in pool:
                return False
            pool.remove(transfer)
        logger.info(f"Removed transfer #{transfer.id} {transfer.file_name} ({transfer.status.value})")
        return True

    def remove_for_peer(self, peer) -> List[FileTransfer]:
        with self._lock:
            gone = [t for t in self._senders + self._receivers if t.peer.code == peer.code]
            self._senders[:] = [t for t in self._senders if t.peer.code != peer.code]
            self._receivers[:] = [t for t in self._receivers if t.peer.code != peer.code]
        return gone

    def __len__(self):
        with self._lock:
            return len(self._senders) + len(self._receivers)

class FileTransferCoordinator:
    """Drives the offer / accept / reject / cancel lifecycle of transfers."""
    def __init__(self, state, gateway, ui, sink, settings=None):
        self.state = state
        self.gateway = gateway
        self.ui = ui
        self.sink = sink
        self.settings = settings

    @property
    def rollback_failed_offers(self) -> bool:
        transfer_cfg = getattr(self.settings, 'transfer', None)
        return bool(getattr(transfer_cfg, 'rollback_failed_offers', False))

    def initiate_send(self, peer, file_path) -> FileTransfer:
        if self.state.peers.is_me(peer):
            raise CommandError("/send - no point in doing that!")

        path = Path(file_path)
        if not path.is_file():
            raise CommandError(f"/send - no such file '{file_path}'")

        try:
            transfer = self.state.transfers.add_sender(peer, path)
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            raise CommandError(f"/send - no such file '{file_path}'") from e
        self.ui.notify_transfer_created(transfer)

        try:
            self.gateway.offer_file(peer, transfer)
        except CommandError:
            if self.rollback_failed_offers:
                transfer.fail()
                self.state.transfers.remove(transfer)
            logger.warning(f"Offer of #{transfer.id} {transfer.file_name} to {peer.nick} failed")
            raise

        self.sink.show_system_line(
            f"Trying to send the file {transfer.file_name} (#{transfer.id}) "
            f"[{format_bytes(transfer.file_size)}] to {peer.nick}")
        return transfer

    def accept(self, transfer: FileTransfer):
        target = Path(transfer.file_path)
        renamed = get_file_with_incremented_name(target) if target.exists() else None
        # Raises before anything is renamed or shown if the offer is gone
        transfer.accept(renamed)

        if renamed is not None:
            self.sink.show_system_line(
                f"/receive - file '{target.name}' already exists - renaming to '{renamed.name}'")
        else:
            self.sink.show_system_line(f"Receiving {transfer.file_name} from {transfer.peer.nick}")
        logger.info(f"Accepted #{transfer.id} into {transfer.file_path}")

    def reject(self, transfer: FileTransfer):
        transfer.reject()
        self.state.transfers.remove(transfer)
        self.sink.show_system_line(f"You rejected {transfer.file_name} from {transfer.peer.nick}")

    def cancel(self, transfer: FileTransfer):
        transfer.cancel()
        peer = transfer.peer

        if not transfer.is_outbound:
            self.sink.show_system_line(f"You cancelled receiving of {transfer.file_name} from {peer.nick}")
            return

        # Unanswered offers are retracted with an abort notice
        if not transfer.accepted:
            if self.state.transfers.remove(transfer):
                self.gateway.abort_file(peer, transfer.file_hash, transfer.file_name)

        self.sink.show_system_line(f"You cancelled sending of {transfer.file_name} to {peer.nick}")
