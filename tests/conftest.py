from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from command_parser import CommandInterpreter
from events import MessageSink, UserInterface
from network_service import NetworkGateway
from state_manager import AppState, Peer

@pytest.fixture
def state():
    me = Peer("Alice", 1000, ip_address="10.0.0.1", me=True)
    app_state = AppState(me)
    app_state.peers.add(Peer("bob", 2000, ip_address="10.0.0.2", private_chat_port=5001))
    app_state.peers.add(Peer("Carol", 3000, ip_address="10.0.0.3"))
    return app_state

@pytest.fixture
def settings(tmp_path):
    return SimpleNamespace(
        chat=SimpleNamespace(no_private_chat=False),
        storage=SimpleNamespace(save_path=str(tmp_path / "downloads")),
        transfer=SimpleNamespace(rollback_failed_offers=False),
    )

@pytest.fixture
def gateway():
    return MagicMock(spec=NetworkGateway)

@pytest.fixture
def ui():
    return MagicMock(spec=UserInterface)

@pytest.fixture
def sink():
    return MagicMock(spec=MessageSink)

@pytest.fixture
def interpreter(state, gateway, ui, sink, settings):
    return CommandInterpreter(state, gateway, ui, sink, settings)

@pytest.fixture
def lines(sink):
    """Returns the system lines shown so far."""
    return lambda: [c.args[0] for c in sink.show_system_line.call_args_list]
