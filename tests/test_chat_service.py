import pytest

from chatdesk.exceptions import EmptyMessageError
from chatdesk.schemas.chat import SenderRole


async def test_empty_content_is_rejected_before_the_store(service, message_repo):
    with pytest.raises(EmptyMessageError):
        await service.send_message("c1", " \n ", SenderRole.GUEST)
    assert message_repo.append_calls == 0


async def test_content_is_trimmed_and_guest_sender_dropped(service):
    message = await service.send_message("c1", "  Bonjour  ", SenderRole.GUEST, sender_id="ignored")
    assert message.content == "Bonjour"
    assert message.sender_id is None


async def test_history_is_ascending(service, message_repo):
    message_repo.seed("c1", "premier")
    message_repo.seed("c2", "ailleurs")
    message_repo.seed("c1", "second")
    assert [m.content for m in await service.get_history("c1")] == ["premier", "second"]


async def test_ensure_twice_keeps_one_row(service, conversation_repo):
    assert await service.ensure_conversation("c1") is True
    assert await service.ensure_conversation("c1") is True
    assert list(conversation_repo.rows) == ["c1"]


async def test_inbox_row_for_unknown_conversation_is_none(service):
    assert await service.inbox_row("nobody") is None


async def test_user_conversations_include_bound_and_sent(service, conversation_repo, message_repo):
    await conversation_repo.ensure("bound", user_id="user-42")
    await conversation_repo.ensure("guest-then-signed-in")
    await conversation_repo.ensure("someone-else")
    message_repo.seed("bound", "Bonjour", SenderRole.USER, "user-42")
    message_repo.seed("guest-then-signed-in", "Visite possible ?", SenderRole.USER, "user-42")
    message_repo.seed("someone-else", "Salut")

    rows = await service.list_for_user("user-42")

    assert [r.conversation_id for r in rows] == ["guest-then-signed-in", "bound"]
    assert rows[1].display_name == "Camille"
    assert rows[0].display_name == "Visitor guest-th"


async def test_user_without_conversations(service):
    assert await service.list_for_user("user-0") == []


async def test_get_conversation_only_finds_confirmed_rows(service, conversation_repo):
    await conversation_repo.ensure("c1")
    assert (await service.get_conversation("c1")).id == "c1"
    assert await service.get_conversation("ghost") is None


async def test_can_read_bound_or_participated_conversations(service, conversation_repo, message_repo):
    await conversation_repo.ensure("bound", user_id="user-42")
    await conversation_repo.ensure("other")
    message_repo.seed("other", "Salut")

    assert await service.can_read("user-42", "bound") is True
    assert await service.can_read("user-42", "other") is False
    message_repo.seed("other", "Moi aussi", SenderRole.USER, "user-42")
    assert await service.can_read("user-42", "other") is True
