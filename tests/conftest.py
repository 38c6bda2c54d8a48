"""
pytest fixtures shared by the chatdesk tests.
"""
import pytest

from chatdesk.services.chat_service import ChatService
from chatdesk.services.realtime_bridge import RealtimeBridge
from chatdesk.utils.realtime_bus import LocalBus
from fakes import FakeConversationRepository, FakeMessageRepository, FakeUserRepository


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def bridge(bus):
    return RealtimeBridge(bus)


@pytest.fixture
def conversation_repo():
    return FakeConversationRepository()


@pytest.fixture
def message_repo(bridge):
    return FakeMessageRepository(bridge)


@pytest.fixture
def user_repo():
    return FakeUserRepository({"user-42": "Camille"})


@pytest.fixture
def service(message_repo, conversation_repo, user_repo):
    return ChatService(message_repo, conversation_repo, user_repo)
