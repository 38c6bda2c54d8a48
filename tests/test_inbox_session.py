import asyncio

import pytest

from chatdesk.schemas.chat import SenderRole
from chatdesk.services.inbox_session import InboxSession
from chatdesk.services.realtime_bridge import ALL_MESSAGES_CHANNEL
from fakes import drain, eventually, settle, unavailable


@pytest.fixture
async def inbox(service, bridge):
    session = InboxSession(service, bridge, admin_id="admin-1")
    yield session
    session.close()


@pytest.fixture
def seeded(conversation_repo, message_repo):
    async def seed():
        await conversation_repo.ensure("g1")
        await conversation_repo.ensure("u1", user_id="user-42")
        message_repo.seed("g1", "Bonjour")
        message_repo.seed("g1", "Vous êtes là ?")
        message_repo.seed("g1", "Oui", SenderRole.ADMIN, "admin-1")
        message_repo.seed("g1", "Déjà lu", is_read=True)
        message_repo.seed("u1", "Je cherche un T3", SenderRole.USER, "user-42")
    return seed


async def test_unread_counts_exclude_admin_and_read_messages(inbox, seeded):
    await seeded()
    await inbox.start()
    assert inbox.rows["g1"].unread_count == 2
    assert inbox.rows["u1"].unread_count == 1


async def test_rows_are_ranked_by_recency_with_display_names(inbox, seeded):
    await seeded()
    await inbox.start()
    ranked = inbox.ranked()
    assert [r.conversation_id for r in ranked] == ["u1", "g1"]
    assert ranked[0].display_name == "Camille"
    assert ranked[1].display_name == "Visitor g1"
    assert ranked[1].last_message == "Déjà lu"


async def test_opening_marks_visitor_messages_read(inbox, seeded, message_repo):
    await seeded()
    await inbox.start()

    assert await inbox.open_conversation("g1") is True

    assert message_repo.unread("g1") == []
    assert inbox.rows["g1"].unread_count == 0
    assert [m.content for m in inbox.thread] == ["Bonjour", "Vous êtes là ?", "Oui", "Déjà lu"]
    # other conversations are untouched
    assert inbox.rows["u1"].unread_count == 1


async def test_mark_read_failure_does_not_block_viewing(inbox, seeded, message_repo):
    await seeded()
    await inbox.start()
    message_repo.mark_read_error = unavailable()

    assert await inbox.open_conversation("g1") is True
    assert len(inbox.thread) == 4
    assert inbox.rows["g1"].unread_count == 2


async def test_visitor_message_in_open_conversation_appears_once(inbox, seeded, service, bridge):
    await seeded()
    await inbox.start()
    await inbox.open_conversation("g1")
    drain(inbox.events)

    merci = await service.send_message("g1", "Merci", SenderRole.GUEST)
    # a second copy, as if another subscription had delivered it too
    await bridge.publish_insert(merci)
    await eventually(lambda: inbox.rows["g1"].last_message == "Merci")
    await settle()

    assert [m.id for m in inbox.thread].count(merci.id) == 1
    events = drain(inbox.events)
    assert len([e for e in events if e.type == "message"]) == 1
    assert inbox.rows["g1"].unread_count == 1


async def test_message_elsewhere_notifies_and_updates_that_row(inbox, seeded, service):
    await seeded()
    await inbox.start()
    await inbox.open_conversation("g1")
    drain(inbox.events)

    await service.send_message("u1", "Disponible samedi ?", SenderRole.USER, "user-42")
    await eventually(lambda: inbox.rows["u1"].unread_count == 2)

    assert inbox.rows["u1"].last_message == "Disponible samedi ?"
    assert all(m.conversation_id == "g1" for m in inbox.thread)
    events = drain(inbox.events)
    notices = [e for e in events if e.type == "notice"]
    assert notices[0].data["code"] == "new_message"
    assert notices[0].data["conversation_id"] == "u1"


async def test_new_conversation_row_appears_without_full_reload(inbox, service, conversation_repo):
    await inbox.start()
    assert inbox.rows == {}

    await conversation_repo.ensure("fresh")
    await service.send_message("fresh", "Bonjour", SenderRole.GUEST)
    await eventually(lambda: "fresh" in inbox.rows)
    assert inbox.rows["fresh"].unread_count == 1


async def test_admin_reply_is_not_counted_unread(inbox, seeded, message_repo):
    await seeded()
    await inbox.start()
    await inbox.open_conversation("g1")

    reply = await inbox.send("Je vous rappelle")
    await settle()

    assert reply.sender_role is SenderRole.ADMIN
    assert reply.sender_id == "admin-1"
    assert inbox.thread.ids.count(reply.id) == 1
    assert inbox.rows["g1"].unread_count == 0
    assert inbox.rows["g1"].last_message == "Je vous rappelle"
    assert message_repo.append_calls == 1


async def test_send_requires_an_open_conversation(inbox, message_repo):
    await inbox.start()
    assert await inbox.send("Bonjour") is None
    assert await inbox.send("") is None
    assert message_repo.append_calls == 0


async def test_switching_conversation_discards_stale_history(inbox, seeded, service):
    await seeded()
    await inbox.start()
    original = service.get_history

    async def slow_history(conversation_id):
        if conversation_id == "g1":
            await asyncio.sleep(0.05)
        return await original(conversation_id)

    service.get_history = slow_history
    slow = asyncio.create_task(inbox.open_conversation("g1"))
    await asyncio.sleep(0)
    assert await inbox.open_conversation("u1") is True
    assert await slow is False

    assert inbox.open_conversation_id == "u1"
    assert [m.content for m in inbox.thread] == ["Je cherche un T3"]


async def test_unread_recompute_failure_is_not_fatal(inbox, seeded, message_repo, service):
    await seeded()
    await inbox.start()
    message_repo.summary_error = unavailable()

    await service.send_message("g1", "Allô", SenderRole.GUEST)
    await settle()

    assert inbox.rows["g1"].unread_count == 2
    message_repo.summary_error = None
    await inbox.recompute("g1")
    assert inbox.rows["g1"].unread_count == 3


async def test_start_failure_is_reported(service, bridge, message_repo):
    message_repo.summary_error = unavailable()
    session = InboxSession(service, bridge, admin_id="admin-1")
    assert await session.start() is False
    notice = [e for e in drain(session.events) if e.type == "notice"][0]
    assert notice.data["blocking"] is True
    session.close()


async def test_close_releases_global_subscription(service, bridge, bus):
    session = InboxSession(service, bridge, admin_id="admin-1")
    await session.start()
    assert bus.subscriber_count(ALL_MESSAGES_CHANNEL) == 1
    session.close()
    assert bus.subscriber_count(ALL_MESSAGES_CHANNEL) == 0


async def test_unknown_conversation_cannot_be_opened_or_replied_to(inbox, message_repo, conversation_repo):
    await inbox.start()
    drain(inbox.events)

    assert await inbox.open_conversation("ghost") is False

    assert inbox.open_conversation_id is None
    assert inbox.thread is None
    notice = [e for e in drain(inbox.events) if e.type == "notice"][0]
    assert notice.data["code"] == "no_conversation"

    assert await inbox.send("hello?") is None
    assert message_repo.append_calls == 0
    assert conversation_repo.rows == {}


async def test_failed_history_load_leaves_no_open_thread(inbox, seeded, message_repo, service):
    await seeded()
    await inbox.start()
    message_repo.history_error = unavailable()

    assert await inbox.open_conversation("g1") is False
    assert inbox.open_conversation_id is None
    assert inbox.thread is None
    message_repo.history_error = None
    drain(inbox.events)

    assert await inbox.send("reply into unloaded thread") is None
    assert message_repo.append_calls == 0

    # later pushes for that conversation are announced, not rendered
    await service.send_message("g1", "Toujours là ?", SenderRole.GUEST)
    await eventually(lambda: inbox.rows["g1"].last_message == "Toujours là ?")
    notices = [e.data for e in drain(inbox.events) if e.type == "notice" and e.data["code"] == "new_message"]
    assert [n["conversation_id"] for n in notices] == ["g1"]

    assert await inbox.open_conversation("g1") is True
    assert [m.content for m in inbox.thread][0] == "Bonjour"
