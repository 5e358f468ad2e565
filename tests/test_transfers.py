import threading
from types import SimpleNamespace

import pytest

from errors import CommandError
from state_manager import Peer
from transfer_manager import (FileTransferCoordinator, TransferDirection, TransferRegistry,
                              TransferStatus)
from utility import file_identifier

@pytest.fixture
def bob():
    return Peer("bob", 2000)

@pytest.fixture
def sample_file(tmp_path):
    f = tmp_path / "report.pdf"
    f.write_bytes(b"x" * 2048)
    return f

@pytest.fixture
def coordinator(state, gateway, ui, sink, settings):
    return FileTransferCoordinator(state, gateway, ui, sink, settings)

def test_registry_assigns_increasing_ids(bob, sample_file, tmp_path):
    registry = TransferRegistry()
    sent = registry.add_sender(bob, sample_file)
    received = registry.add_receiver(bob, "photo.png", 10, tmp_path)

    assert (sent.id, received.id) == (1, 2)
    assert sent.file_size == 2048
    assert sent.file_hash == file_identifier(sample_file)
    assert received.direction is TransferDirection.RECEIVE
    assert received.file_path == tmp_path / "photo.png"

def test_registry_lookup_needs_peer_and_id(bob, tmp_path):
    registry = TransferRegistry()
    carol = Peer("Carol", 3000)
    transfer = registry.add_receiver(bob, "a.txt", 1, tmp_path)

    assert registry.get_receiver(bob, transfer.id) is transfer
    assert registry.get_receiver(carol, transfer.id) is None
    assert registry.get_sender(bob, transfer.id) is None
    assert registry.get(bob, transfer.id) is transfer

def test_registry_keeps_only_the_base_name_of_offers(bob, tmp_path):
    registry = TransferRegistry()
    transfer = registry.add_receiver(bob, "../../etc/passwd", 1, tmp_path)
    assert transfer.file_path == tmp_path / "passwd"

def test_registry_remove(bob, sample_file):
    registry = TransferRegistry()
    transfer = registry.add_sender(bob, sample_file)

    assert registry.remove(transfer) is True
    assert registry.remove(transfer) is False
    assert registry.senders() == []

def test_registry_remove_for_peer(bob, sample_file, tmp_path):
    registry = TransferRegistry()
    carol = Peer("Carol", 3000)
    registry.add_sender(bob, sample_file)
    registry.add_receiver(bob, "a.txt", 1, tmp_path)
    kept = registry.add_receiver(carol, "b.txt", 1, tmp_path)

    gone = registry.remove_for_peer(bob)
    assert len(gone) == 2
    assert registry.all() == [kept]

def test_transfer_state_machine(bob, tmp_path):
    registry = TransferRegistry()
    transfer = registry.add_receiver(bob, "a.txt", 1, tmp_path)

    transfer.accept()
    assert transfer.status is TransferStatus.ACCEPTED and transfer.accepted
    with pytest.raises(CommandError):
        transfer.reject()
    with pytest.raises(CommandError):
        transfer.accept()

    transfer.cancel()
    transfer.cancel()
    assert transfer.status is TransferStatus.CANCELLED
    assert transfer.accepted

def test_rejected_transfer_stays_rejected(bob, tmp_path):
    transfer = TransferRegistry().add_receiver(bob, "a.txt", 1, tmp_path)
    transfer.reject()
    transfer.cancel()
    assert transfer.status is TransferStatus.REJECTED
    with pytest.raises(CommandError):
        transfer.accept()

def test_progress_is_clamped(bob, tmp_path):
    transfer = TransferRegistry().add_receiver(bob, "a.txt", 1, tmp_path)
    transfer.update_progress(150, -3)
    assert transfer.percent == 100 and transfer.speed == 0.0

def test_wait_for_answer_unblocks_on_accept(bob, tmp_path):
    transfer = TransferRegistry().add_receiver(bob, "a.txt", 1, tmp_path)
    result = {}

    worker = threading.Thread(target=lambda: result.setdefault('accepted', transfer.wait_for_answer(5)))
    worker.start()
    transfer.accept()
    worker.join(5)

    assert result == {'accepted': True}

def test_wait_for_answer_times_out(bob, tmp_path):
    transfer = TransferRegistry().add_receiver(bob, "a.txt", 1, tmp_path)
    assert transfer.wait_for_answer(0.01) is False

def test_concurrent_insert_during_lookup(bob, tmp_path):
    registry = TransferRegistry()
    errors = []
    start = threading.Barrier(2)

    def writer():
        start.wait()
        for i in range(300):
            registry.add_receiver(bob, f"f{i}.bin", i, tmp_path)

    def reader():
        start.wait()
        try:
            for i in range(300):
                registry.get_receiver(bob, i)
                for transfer in registry.receivers():
                    assert transfer.peer is bob
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads: t.start()
    for t in threads: t.join()

    assert errors == []
    assert len(registry) == 300
    assert sorted(t.id for t in registry.receivers()) == list(range(1, 301))

# --- Coordinator ---

def test_initiate_send_registers_and_offers(coordinator, state, gateway, ui, lines, sample_file):
    bob = state.peers.resolve("bob")
    transfer = coordinator.initiate_send(bob, sample_file)

    assert state.transfers.get_sender(bob, transfer.id) is transfer
    gateway.offer_file.assert_called_once_with(bob, transfer)
    ui.notify_transfer_created.assert_called_once_with(transfer)
    assert lines() == [f"Trying to send the file report.pdf (#{transfer.id}) [2.00 KB] to bob"]

def test_initiate_send_refuses_local_user(coordinator, state, gateway, sample_file):
    with pytest.raises(CommandError):
        coordinator.initiate_send(state.me, sample_file)
    gateway.offer_file.assert_not_called()
    assert len(state.transfers) == 0

def test_initiate_send_refuses_missing_file(coordinator, state, gateway, tmp_path):
    with pytest.raises(CommandError):
        coordinator.initiate_send(state.peers.resolve("bob"), tmp_path / "nope.txt")
    gateway.offer_file.assert_not_called()
    assert len(state.transfers) == 0

def test_failed_offer_stays_registered_by_default(coordinator, state, gateway, sample_file):
    gateway.offer_file.side_effect = CommandError("Failed to send the file")
    with pytest.raises(CommandError):
        coordinator.initiate_send(state.peers.resolve("bob"), sample_file)

    [transfer] = state.transfers.senders()
    assert transfer.status is TransferStatus.OFFERED

def test_failed_offer_rolled_back_when_configured(state, gateway, ui, sink, sample_file):
    settings = SimpleNamespace(transfer=SimpleNamespace(rollback_failed_offers=True))
    coordinator = FileTransferCoordinator(state, gateway, ui, sink, settings)
    gateway.offer_file.side_effect = CommandError("Failed to send the file")

    with pytest.raises(CommandError):
        coordinator.initiate_send(state.peers.resolve("bob"), sample_file)
    assert state.transfers.senders() == []

def test_cancel_unanswered_offer_purges_and_aborts_once(coordinator, state, gateway, sample_file):
    bob = state.peers.resolve("bob")
    transfer = coordinator.initiate_send(bob, sample_file)

    coordinator.cancel(transfer)
    coordinator.cancel(transfer)

    assert transfer.status is TransferStatus.CANCELLED
    assert state.transfers.senders() == []
    gateway.abort_file.assert_called_once_with(bob, transfer.file_hash, "report.pdf")

def test_cancel_accepted_send_stays_registered(coordinator, state, gateway, sample_file):
    bob = state.peers.resolve("bob")
    transfer = coordinator.initiate_send(bob, sample_file)
    transfer.accept()

    coordinator.cancel(transfer)

    assert transfer.status is TransferStatus.CANCELLED
    assert state.transfers.senders() == [transfer]
    gateway.abort_file.assert_not_called()

def test_accept_renames_existing_target(coordinator, state, lines, tmp_path):
    bob = state.peers.resolve("bob")
    existing = tmp_path / "notes.txt"
    existing.write_text("keep me")
    transfer = state.transfers.add_receiver(bob, "notes.txt", 7, tmp_path)

    coordinator.accept(transfer)

    assert transfer.file_path == tmp_path / "notes_1.txt"
    assert transfer.status is TransferStatus.ACCEPTED
    assert existing.read_text() == "keep me"
    assert lines() == ["/receive - file 'notes.txt' already exists - renaming to 'notes_1.txt'"]

def test_reject_removes_transfer(coordinator, state, tmp_path):
    bob = state.peers.resolve("bob")
    transfer = state.transfers.add_receiver(bob, "notes.txt", 7, tmp_path)

    coordinator.reject(transfer)

    assert transfer.status is TransferStatus.REJECTED
    assert state.transfers.get_receiver(bob, transfer.id) is None

class InterleavingLock:
    """Runs ``before`` the first time the lock is taken, outside of it."""
    def __init__(self, real, before):
        self.real = real
        self.before = before

    def __enter__(self):
        if self.before is not None:
            before, self.before = self.before, None
            before()
        return self.real.__enter__()

    def __exit__(self, *exc):
        return self.real.__exit__(*exc)

def test_remove_while_another_peer_is_purged(bob, sample_file, tmp_path):
    registry = TransferRegistry()
    carol = Peer("Carol", 3000)
    registry.add_receiver(carol, "b.txt", 1, tmp_path)
    transfer = registry.add_sender(bob, sample_file)

    registry._lock = InterleavingLock(registry._lock, lambda: registry.remove_for_peer(carol))

    assert registry.remove(transfer) is True
    assert registry.senders() == []
    assert len(registry) == 0

def test_accept_of_withdrawn_offer_changes_nothing(coordinator, state, lines, tmp_path):
    bob = state.peers.resolve("bob")
    (tmp_path / "notes.txt").write_text("keep me")
    transfer = state.transfers.add_receiver(bob, "notes.txt", 7, tmp_path)
    # The sender aborts after /receive validated the offer
    transfer.cancel()

    with pytest.raises(CommandError):
        coordinator.accept(transfer)

    assert transfer.status is TransferStatus.CANCELLED
    assert transfer.file_path == tmp_path / "notes.txt"
    assert lines() == []

def test_initiate_send_file_vanishing_before_registration(coordinator, state, gateway, sample_file, monkeypatch):
    def gone(path):
        raise FileNotFoundError(path)
    monkeypatch.setattr("transfer_manager.os.path.getsize", gone)

    with pytest.raises(CommandError, match="no such file"):
        coordinator.initiate_send(state.peers.resolve("bob"), sample_file)
    gateway.offer_file.assert_not_called()
    assert len(state.transfers) == 0
