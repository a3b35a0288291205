import asyncio

import pytest

from conftest import ALICE, BOB, CAROL, ITEM
from wardrobe_chat.repositories.memory_repository import InMemoryConversationRepository
from wardrobe_chat.schemas.chat import ItemInfo
from wardrobe_chat.services.conversation_service import ConversationService, RequestNote
from wardrobe_chat.repositories.base import DuplicateConversation
from wardrobe_chat.services.errors import Forbidden, InactiveConversation, InvalidOperation, NotFound


# every test here runs against the in-memory store and against MongoDB
@pytest.fixture
def store(any_store):
    return any_store


@pytest.mark.asyncio
async def test_find_or_create_is_order_independent(service):
    first = await service.find_or_create(ALICE, BOB)
    second = await service.find_or_create(BOB, ALICE)
    again = await service.find_or_create(ALICE, BOB)
    assert first.id == second.id == again.id
    assert first.participants == sorted([ALICE, BOB])
    assert first.unread_counts == {ALICE: 0, BOB: 0}


@pytest.mark.asyncio
async def test_find_or_create_keeps_related_item_from_creation(service):
    convo = await service.find_or_create(ALICE, BOB, related_item=ITEM)
    reused = await service.find_or_create(BOB, ALICE, related_item="64b7f0c2a1b2c3d4e5f6bbbb")
    assert reused.id == convo.id
    assert reused.related_item == ITEM


@pytest.mark.asyncio
async def test_find_or_create_rejects_self_conversation(service):
    with pytest.raises(InvalidOperation):
        await service.find_or_create(ALICE, ALICE)


class YieldingStore(InMemoryConversationRepository):
    """Suspends inside lookups so two first contacts interleave."""

    async def find_by_pair(self, user_a, user_b):
        found = await super().find_by_pair(user_a, user_b)
        await asyncio.sleep(0)
        return found


@pytest.mark.asyncio
async def test_concurrent_first_contact_creates_one_conversation(clock):
    store = YieldingStore()
    service = ConversationService(store, clock=clock)

    a, b = await asyncio.gather(service.find_or_create(ALICE, BOB), service.find_or_create(BOB, ALICE))

    assert a.id == b.id
    assert len(await store.list_for_user(ALICE)) == 1


@pytest.mark.asyncio
async def test_concurrent_first_contact_on_store(store, service):
    results = await asyncio.gather(*(service.find_or_create(ALICE, BOB) for _ in range(5)))

    assert len({c.id for c in results}) == 1
    assert len(await store.list_for_user(BOB)) == 1


@pytest.mark.asyncio
async def test_insert_rejects_duplicate_pair(store, clock):
    await store.insert(ALICE, BOB, None, True, clock())
    with pytest.raises(DuplicateConversation):
        await store.insert(BOB, ALICE, None, True, clock())


@pytest.mark.asyncio
async def test_append_returns_canonical_message(service):
    convo = await service.find_or_create(ALICE, BOB)
    message = await service.append_message(convo.id, ALICE, "  hello  ", temp_id="t1")

    assert message.content == "hello"
    assert message.status == "sent"
    assert message.message_type == "text"
    assert message.temp_id == "t1"
    assert message.id != "t1"

    stored = await service.get_for_participant(convo.id, BOB)
    assert [m.id for m in stored.messages] == [message.id]
    assert stored.last_message_at == message.timestamp
    assert stored.unread_counts[BOB] == 1
    assert stored.unread_counts[ALICE] == 0


@pytest.mark.asyncio
async def test_append_validation(service):
    convo = await service.find_or_create(ALICE, BOB)
    with pytest.raises(InvalidOperation):
        await service.append_message(convo.id, ALICE, "   ")
    with pytest.raises(Forbidden):
        await service.append_message(convo.id, CAROL, "hi")
    with pytest.raises(NotFound):
        await service.append_message("64b7f0c2a1b2c3d4e5f6ffff", ALICE, "hi")
    with pytest.raises(InvalidOperation):
        await service.append_message(convo.id, ALICE, "hi", message_type="request")
    with pytest.raises(InvalidOperation):
        await service.append_message(convo.id, ALICE, "hi", message_type="system")


@pytest.mark.asyncio
async def test_unread_counts_track_messages_since_last_mark_read(service):
    convo = await service.find_or_create(ALICE, BOB)
    senders = [ALICE, BOB, ALICE, ALICE, BOB, ALICE]
    for i, sender in enumerate(senders):
        await service.append_message(convo.id, sender, f"m{i}")

    state = await service.get_for_participant(convo.id, ALICE)
    assert state.unread_counts[BOB] == 4
    assert state.unread_counts[ALICE] == 2

    assert await service.mark_read(convo.id, BOB) == 4
    await service.append_message(convo.id, ALICE, "after")
    state = await service.get_for_participant(convo.id, ALICE)
    assert state.unread_counts[BOB] == 1
    assert state.unread_counts[ALICE] == 2


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_and_only_flips_other_side(service):
    convo = await service.find_or_create(ALICE, BOB)
    mine = await service.append_message(convo.id, BOB, "from bob")
    theirs = await service.append_message(convo.id, ALICE, "from alice")

    assert await service.mark_read(convo.id, BOB) == 1
    assert await service.mark_read(convo.id, BOB) == 0

    state = await service.get_for_participant(convo.id, BOB)
    by_id = {m.id: m for m in state.messages}
    assert by_id[theirs.id].is_read is True
    assert by_id[theirs.id].status == "read"
    assert by_id[theirs.id].read_at is not None
    assert by_id[mine.id].is_read is False
    assert by_id[mine.id].status == "sent"
    assert state.unread_counts[BOB] == 0


@pytest.mark.asyncio
async def test_delete_message_recomputes_last_message_at(service):
    convo = await service.find_or_create(ALICE, BOB)
    first = await service.append_message(convo.id, ALICE, "one")
    second = await service.append_message(convo.id, ALICE, "two")

    await service.delete_message(convo.id, ALICE, second.id)
    state = await service.get_for_participant(convo.id, ALICE)
    assert [m.id for m in state.messages] == [first.id]
    assert state.last_message_at == first.timestamp

    await service.delete_message(convo.id, ALICE, first.id)
    state = await service.get_for_participant(convo.id, ALICE)
    assert state.messages == []
    assert state.last_message_at == state.created_at


@pytest.mark.asyncio
async def test_delete_message_by_non_author_is_rejected(service):
    convo = await service.find_or_create(ALICE, BOB)
    message = await service.append_message(convo.id, ALICE, "mine")

    with pytest.raises(Forbidden):
        await service.delete_message(convo.id, BOB, message.id)
    with pytest.raises(NotFound):
        await service.delete_message(convo.id, ALICE, "64b7f0c2a1b2c3d4e5f6ffff")

    state = await service.get_for_participant(convo.id, ALICE)
    assert len(state.messages) == 1


@pytest.mark.asyncio
async def test_delete_and_clear_leave_unread_counts(service):
    convo = await service.find_or_create(ALICE, BOB)
    message = await service.append_message(convo.id, ALICE, "one")
    await service.append_message(convo.id, ALICE, "two")

    await service.delete_message(convo.id, ALICE, message.id)
    assert (await service.get_for_participant(convo.id, BOB)).unread_counts[BOB] == 2

    await service.clear_conversation(convo.id, BOB)
    state = await service.get_for_participant(convo.id, BOB)
    assert state.messages == []
    assert state.last_message_at == state.created_at
    assert state.unread_counts[BOB] == 2


@pytest.mark.asyncio
async def test_clear_requires_participant(service):
    convo = await service.find_or_create(ALICE, BOB)
    with pytest.raises(Forbidden):
        await service.clear_conversation(convo.id, CAROL)


@pytest.mark.asyncio
async def test_inactive_conversation_rejects_both_participants(service):
    item = ItemInfo(item_id=ITEM, item_name="Denim jacket")
    convo = await service.open_request(ALICE, BOB, item)
    assert convo.is_active is False
    assert convo.related_item == ITEM

    for sender in (ALICE, BOB):
        with pytest.raises(InactiveConversation):
            await service.append_message(convo.id, sender, "hi")
    state = await service.get_for_participant(convo.id, ALICE)
    assert state.messages == []


@pytest.mark.asyncio
async def test_activate_posts_request_and_notice(service):
    item = ItemInfo(item_id=ITEM, item_name="Denim jacket", item_image="jacket.png")
    convo = await service.open_request(ALICE, BOB, item)

    activated = await service.activate(convo.id, request=RequestNote(ALICE, "I'd like to rent this.", item))

    assert activated.is_active is True
    request, notice = activated.messages
    assert request.message_type == "request"
    assert request.sender == ALICE
    assert request.item.item_name == "Denim jacket"
    assert notice.message_type == "system"
    assert notice.sender is None
    # the notice does not count as unread for anyone
    assert activated.unread_counts == {ALICE: 0, BOB: 1}

    assert await service.mark_read(convo.id, ALICE) == 0
    await service.append_message(convo.id, BOB, "Sure!")


@pytest.mark.asyncio
async def test_activate_twice_posts_once(service):
    item = ItemInfo(item_id=ITEM)
    convo = await service.open_request(ALICE, BOB, item)
    note = RequestNote(ALICE, "Still available?", item)

    first = await service.activate(convo.id, request=note)
    again = await service.activate(convo.id, request=note)

    assert len(first.messages) == 2
    assert [m.id for m in again.messages] == [m.id for m in first.messages]
    assert again.unread_counts == first.unread_counts


@pytest.mark.asyncio
async def test_activate_unknown_conversation(service):
    with pytest.raises(NotFound):
        await service.activate("64b7f0c2a1b2c3d4e5f6ffff")


@pytest.mark.asyncio
async def test_typing_expires_lazily(service, clock):
    convo = await service.find_or_create(ALICE, BOB)

    assert await service.set_typing(convo.id, ALICE, True) == []
    assert await service.active_typists(convo.id, BOB) == [ALICE]
    assert await service.active_typists(convo.id, ALICE) == []

    clock.advance(11)
    assert await service.active_typists(convo.id, BOB) == []


@pytest.mark.asyncio
async def test_typing_stop_and_send_clear_entry(service):
    convo = await service.find_or_create(ALICE, BOB)
    await service.set_typing(convo.id, ALICE, True)
    assert await service.set_typing(convo.id, BOB, True) == [ALICE]

    await service.set_typing(convo.id, ALICE, False)
    assert await service.active_typists(convo.id, BOB) == []

    await service.append_message(convo.id, BOB, "done typing")
    assert await service.active_typists(convo.id, ALICE) == []


@pytest.mark.asyncio
async def test_list_orders_by_last_message_and_sums_unread(service):
    with_bob = await service.find_or_create(ALICE, BOB)
    with_carol = await service.find_or_create(ALICE, CAROL)
    await service.append_message(with_bob.id, BOB, "hi")
    await service.append_message(with_carol.id, CAROL, "hey")
    await service.append_message(with_carol.id, CAROL, "you there?")

    listed = await service.list_for_user(ALICE)
    assert [c.id for c in listed] == [with_carol.id, with_bob.id]
    assert await service.unread_total(ALICE) == 3

    await service.append_message(with_bob.id, BOB, "ping")
    assert [c.id for c in await service.list_for_user(ALICE)] == [with_bob.id, with_carol.id]


@pytest.mark.asyncio
async def test_views_populate_summaries(service):
    convo = await service.find_or_create(ALICE, BOB, related_item=ITEM)
    await service.append_message(convo.id, BOB, "hi")

    (view,) = await service.views([await service.get_for_participant(convo.id, ALICE)], ALICE)

    names = {p.id: p.name for p in view.participants}
    assert names == {ALICE: "Alice", BOB: "Bob"}
    assert view.related_item.name == "Denim jacket"
    assert view.unread_count == 1


@pytest.mark.asyncio
async def test_get_for_participant_guards(service):
    convo = await service.find_or_create(ALICE, BOB)
    with pytest.raises(Forbidden):
        await service.get_for_participant(convo.id, CAROL)
    with pytest.raises(NotFound):
        await service.get_for_participant("not-an-id", ALICE)
