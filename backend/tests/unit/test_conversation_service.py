import pytest

from app.domain.messaging import events
from app.domain.messaging.direct import DirectMessageService
from app.domain.messaging.exceptions import (
	ConversationNotFound,
	InvalidParticipants,
	MessageNotFound,
	MessagingNotAllowed,
	MissingField,
	NotParticipant,
	ParticipantsNotAllowed,
	ProfileNotFound,
	ValidationFailed,
)
from app.domain.messaging.service import ConversationService
from app.domain.profiles.models import ProfileRef


def _emitted(transport, event):
	return [call for call in transport.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_employee_to_hr_message_is_persisted_and_delivered(profiles, presence_engine, transport):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, created = await service.create_conversation(e1, [h1.ref])
	assert created

	message = await service.send_message(conversation.conversation_id, e1, "Hello")
	assert message.sender.ref == ProfileRef.employee("e1")
	assert message.receiver == ProfileRef.hr("h1")
	assert message.is_approved
	assert not message.requires_approval

	# Nobody is connected, so both events fall back to personal rooms.
	received = _emitted(transport, events.MESSAGE_RECEIVED)
	assert received[0].kwargs["room"] == "user_h1"
	assert received[0].args[1]["content"] == "Hello"
	sent = _emitted(transport, events.MESSAGE_SENT)
	assert sent[0].kwargs["room"] == "user_e1"

	stored = await service.get_conversation(conversation.conversation_id, h1)
	assert stored.conversation.message_count == 1
	assert stored.conversation.last_message_id == message.message_id
	assert stored.profiles[ProfileRef.employee("e1")].display_name == "Eli Engineer"


@pytest.mark.asyncio
async def test_direct_conversation_is_reused_for_same_pair(profiles, presence_engine):
	service = ConversationService()
	first, created = await service.create_conversation(profiles["e1"], [profiles["h1"].ref])
	second, created_again = await service.create_conversation(profiles["h1"], [profiles["e1"].ref])
	assert created
	assert not created_again
	assert second.conversation_id == first.conversation_id


@pytest.mark.asyncio
async def test_create_conversation_validation(profiles, presence_engine):
	service = ConversationService()
	e1 = profiles["e1"]
	with pytest.raises(InvalidParticipants):
		await service.create_conversation(e1, [e1.ref])
	with pytest.raises(InvalidParticipants):
		await service.create_conversation(e1, [profiles["e2"].ref, profiles["h1"].ref])
	with pytest.raises(MessagingNotAllowed):
		await service.create_conversation(e1, [profiles["a1"].ref])
	with pytest.raises(ProfileNotFound):
		await service.create_conversation(e1, [ProfileRef.hr("ghost")])
	with pytest.raises(ValidationFailed):
		await service.create_conversation(e1, [profiles["h1"].ref], conversation_type="broadcast")


@pytest.mark.asyncio
async def test_group_dedupes_participants_and_defaults_title(profiles, presence_engine):
	service = ConversationService()
	h1 = profiles["h1"]
	conversation, _ = await service.create_conversation(
		h1,
		[profiles["e1"].ref, profiles["e2"].ref, profiles["e1"].ref],
		conversation_type="group",
	)
	assert len(conversation.participants) == 3
	assert conversation.title == "Conversation with 3 participants"
	assert conversation.settings.allow_new_participants


@pytest.mark.asyncio
async def test_send_validation(profiles, presence_engine):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, _ = await service.create_conversation(e1, [h1.ref])
	with pytest.raises(MissingField):
		await service.send_message(conversation.conversation_id, e1, "   ")
	with pytest.raises(MissingField):
		await service.send_message("", e1, "hello")
	with pytest.raises(ValidationFailed):
		await service.send_message(conversation.conversation_id, e1, "hello", priority="critical")
	with pytest.raises(ConversationNotFound):
		await service.send_message("missing", e1, "hello")
	with pytest.raises(NotParticipant):
		await service.send_message(conversation.conversation_id, profiles["e2"], "hello")
	with pytest.raises(MessageNotFound):
		await service.send_message(conversation.conversation_id, e1, "hello", reply_to="nope")


@pytest.mark.asyncio
async def test_removed_participant_cannot_send(profiles, presence_engine, transport):
	service = ConversationService()
	h1, e1, e2 = profiles["h1"], profiles["e1"], profiles["e2"]
	conversation, _ = await service.create_conversation(h1, [e1.ref, e2.ref], conversation_type="group")

	updated = await service.remove_participant(conversation.conversation_id, h1, e2.ref)
	assert not updated.is_active_participant(e2.ref)
	notified = [call.kwargs["room"] for call in _emitted(transport, events.CONVERSATION_UPDATED)]
	assert "user_e2" in notified

	with pytest.raises(NotParticipant):
		await service.send_message(conversation.conversation_id, e2, "still here?")
	message = await service.send_message(conversation.conversation_id, e1, "carry on")
	assert message.receiver == h1.ref

	with pytest.raises(NotParticipant):
		await service.remove_participant(conversation.conversation_id, h1, e2.ref)


@pytest.mark.asyncio
async def test_only_self_or_moderator_removes(profiles, presence_engine):
	service = ConversationService()
	h1, e1, e2 = profiles["h1"], profiles["e1"], profiles["e2"]
	conversation, _ = await service.create_conversation(h1, [e1.ref, e2.ref], conversation_type="group")
	with pytest.raises(NotParticipant):
		await service.remove_participant(conversation.conversation_id, e1, e2.ref)
	left = await service.remove_participant(conversation.conversation_id, e1, e1.ref)
	assert not left.is_active_participant(e1.ref)


@pytest.mark.asyncio
async def test_add_participant_rules(profiles, presence_engine):
	service = ConversationService()
	h1, e1, e2, a1 = profiles["h1"], profiles["e1"], profiles["e2"], profiles["a1"]
	direct, _ = await service.create_conversation(h1, [e1.ref])
	with pytest.raises(ParticipantsNotAllowed):
		await service.add_participant(direct.conversation_id, h1, e2.ref)

	group, _ = await service.create_conversation(e1, [e2.ref, h1.ref], conversation_type="group")
	with pytest.raises(MessagingNotAllowed):
		await service.add_participant(group.conversation_id, e1, a1.ref)
	with pytest.raises(NotParticipant):
		await service.add_participant(group.conversation_id, a1, e1.ref)

	updated = await service.add_participant(group.conversation_id, h1, a1.ref)
	assert updated.is_active_participant(a1.ref)
	again = await service.add_participant(group.conversation_id, h1, a1.ref)
	assert len(again.participants) == 4


@pytest.mark.asyncio
async def test_mark_as_read_is_idempotent(profiles, presence_engine, transport):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, _ = await service.create_conversation(e1, [h1.ref])
	message = await service.send_message(conversation.conversation_id, e1, "Hello")

	first = await service.mark_as_read(message.message_id, h1)
	second = await service.mark_as_read(message.message_id, h1)
	assert first.is_read
	assert len(second.read_by) == 1
	assert second.read_by[0].read_at == first.read_by[0].read_at
	reads = _emitted(transport, events.MESSAGE_READ)
	assert len(reads) == 1
	assert reads[0].kwargs["room"] == "user_e1"

	with pytest.raises(NotParticipant):
		await service.mark_as_read(message.message_id, profiles["e2"])
	with pytest.raises(MessageNotFound):
		await service.mark_as_read("missing", h1)


@pytest.mark.asyncio
async def test_list_messages_paginates_newest_first(profiles, presence_engine):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, _ = await service.create_conversation(e1, [h1.ref])
	for index in range(5):
		await service.send_message(conversation.conversation_id, e1, f"message {index}")

	page_one = await service.list_conversation_messages(conversation.conversation_id, h1, page=1, limit=2)
	assert [m.content for m in page_one.items] == ["message 4", "message 3"]
	assert page_one.has_more
	page_three = await service.list_conversation_messages(conversation.conversation_id, h1, page=3, limit=2)
	assert [m.content for m in page_three.items] == ["message 0"]
	assert not page_three.has_more

	with pytest.raises(NotParticipant):
		await service.list_conversation_messages(conversation.conversation_id, profiles["e2"])


@pytest.mark.asyncio
async def test_conversation_history_merges_legacy_thread(profiles, presence_engine):
	conversations = ConversationService()
	direct = DirectMessageService()
	e1, e2 = profiles["e1"], profiles["e2"]

	await direct.send_direct(e2, e1.ref, "from e2 first")
	await direct.send_direct(e1, e2.ref, "then e1")
	conversation, _ = await conversations.create_conversation(e1, [e2.ref])
	await conversations.send_message(conversation.conversation_id, e2, "in the conversation")

	for reader in (e1, e2):
		page = await conversations.list_conversation_messages(conversation.conversation_id, reader)
		assert [m.content for m in page.items] == ["in the conversation", "then e1", "from e2 first"]


@pytest.mark.asyncio
async def test_mark_conversation_seen(profiles, presence_engine):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, _ = await service.create_conversation(e1, [h1.ref])
	await service.send_message(conversation.conversation_id, e1, "one")
	await service.send_message(conversation.conversation_id, e1, "two")
	await service.send_message(conversation.conversation_id, h1, "reply")

	assert await service.mark_conversation_seen(conversation.conversation_id, h1) == 2
	assert await service.mark_conversation_seen(conversation.conversation_id, h1) == 0
	view = await service.get_conversation(conversation.conversation_id, h1)
	assert view.conversation.participant(h1.ref).last_seen_at is not None


@pytest.mark.asyncio
async def test_list_conversations_orders_by_activity(profiles, presence_engine):
	service = ConversationService()
	h1, e1, e2 = profiles["h1"], profiles["e1"], profiles["e2"]
	older, _ = await service.create_conversation(h1, [e1.ref])
	newer, _ = await service.create_conversation(h1, [e2.ref])
	await service.send_message(older.conversation_id, h1, "bump")

	items, total = await service.list_conversations(h1)
	assert total == 2
	assert [c.conversation_id for c in items] == [older.conversation_id, newer.conversation_id]

	items, total = await service.list_conversations(e2)
	assert total == 1
	items, total = await service.list_conversations(h1, conversation_type="group")
	assert total == 0


@pytest.mark.asyncio
async def test_archive_message(profiles, presence_engine):
	service = ConversationService()
	e1, h1 = profiles["e1"], profiles["h1"]
	conversation, _ = await service.create_conversation(e1, [h1.ref])
	message = await service.send_message(conversation.conversation_id, e1, "file this")
	with pytest.raises(NotParticipant):
		await service.archive_message(message.message_id, profiles["e2"])
	archived = await service.archive_message(message.message_id, h1)
	assert archived.is_archived
	page = await service.list_conversation_messages(conversation.conversation_id, h1)
	assert page.items == []


@pytest.mark.asyncio
async def test_reopening_direct_conversation_reactivates_leaver(profiles, presence_engine, transport):
	service = ConversationService()
	h1, e1 = profiles["h1"], profiles["e1"]
	conversation, created = await service.create_conversation(e1, [h1.ref])
	assert created
	await service.remove_participant(conversation.conversation_id, e1, e1.ref)
	transport.emit.reset_mock()

	reopened, created = await service.create_conversation(e1, [h1.ref])
	assert not created
	assert reopened.conversation_id == conversation.conversation_id
	assert reopened.is_active_participant(e1.ref)
	assert [p.profile_id for p in reopened.participants].count("e1") == 1
	notified = {call.kwargs["room"] for call in _emitted(transport, events.CONVERSATION_UPDATED)}
	assert notified == {"user_e1", "user_h1"}

	message = await service.send_message(conversation.conversation_id, e1, "back again")
	assert message.receiver == h1.ref
	page = await service.list_conversation_messages(conversation.conversation_id, e1)
	assert [item.message_id for item in page.items] == [message.message_id]
