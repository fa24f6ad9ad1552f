from datetime import datetime, timedelta, timezone

from app.domain.messaging.models import (
	Conversation,
	ConversationSettings,
	InboxSummary,
	Message,
	Participant,
	SenderSnapshot,
)
from app.domain.profiles.models import ProfileRef, Role

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

EMPLOYEE = ProfileRef.employee("e1")
ADMIN = ProfileRef.admin("a1")
HR = ProfileRef.hr("h1")


def _message(sender: ProfileRef, receiver: ProfileRef, **overrides) -> Message:
	fields = dict(
		message_id="m1",
		conversation_id="c1",
		sender=SenderSnapshot(sender.profile_id, sender.role, "Sender", "sender@corp.example"),
		receiver_id=receiver.profile_id,
		receiver_role=receiver.role,
		content="hi",
		created_at=NOW,
	)
	fields.update(overrides)
	return Message(**fields)


def test_unapproved_message_is_visible_to_sender_only():
	message = _message(EMPLOYEE, ADMIN, requires_approval=True, is_approved=False)
	assert message.visible_in_inbox(EMPLOYEE)
	assert not message.visible_in_inbox(ADMIN)
	assert not message.visible_in_inbox(HR)

	assert message.approve(ADMIN, NOW)
	assert message.visible_in_inbox(ADMIN)
	assert message.approved_by == "a1"
	assert not message.approve(ADMIN, NOW)


def test_read_receipt_is_idempotent():
	message = _message(HR, EMPLOYEE)
	assert message.record_read(EMPLOYEE, NOW)
	assert not message.record_read(EMPLOYEE, NOW + timedelta(minutes=5))
	assert message.is_read
	assert message.status == "read"
	assert [receipt.ref for receipt in message.read_by] == [EMPLOYEE]
	assert message.read_by[0].read_at == NOW


def test_non_receiver_read_does_not_flip_read_flag():
	message = _message(HR, EMPLOYEE)
	assert message.record_read(ADMIN, NOW)
	assert not message.is_read
	assert message.status == "sent"


def test_inbox_summary_counts():
	summary = InboxSummary()
	summary.count(_message(HR, EMPLOYEE, priority="urgent"), EMPLOYEE)
	summary.count(_message(EMPLOYEE, HR, is_read=True), EMPLOYEE)
	summary.count(_message(EMPLOYEE, ADMIN, requires_approval=True, is_approved=False), EMPLOYEE)
	summary.count(_message(HR, EMPLOYEE, is_archived=True), EMPLOYEE)
	assert summary.to_dict() == {
		"total": 3,
		"unread": 1,
		"sent": 2,
		"received": 1,
		"urgent": 1,
		"awaiting_approval": 1,
		"approved": 2,
	}


def test_inbox_summary_hides_pending_messages_from_receiver():
	summary = InboxSummary()
	summary.count(_message(EMPLOYEE, ADMIN, requires_approval=True, is_approved=False), ADMIN)
	assert summary.total == 0


def _conversation(conversation_type: str, *refs: ProfileRef) -> Conversation:
	return Conversation(
		conversation_id="c1",
		participants=[Participant(ref.profile_id, ref.role, NOW) for ref in refs],
		conversation_type=conversation_type,
		created_at=NOW,
		updated_at=NOW,
		settings=ConversationSettings(allow_new_participants=conversation_type != "direct"),
	)


def test_direct_key_ignores_participant_order():
	one = _conversation("direct", HR, EMPLOYEE)
	two = _conversation("direct", EMPLOYEE, HR)
	assert one.direct_key == two.direct_key == "HR:h1|Employee:e1"
	assert _conversation("group", HR, EMPLOYEE).direct_key is None


def test_add_participant_reactivates_instead_of_duplicating():
	conversation = _conversation("group", HR, EMPLOYEE)
	assert conversation.deactivate_participant(EMPLOYEE)
	assert not conversation.deactivate_participant(EMPLOYEE)
	assert not conversation.is_active_participant(EMPLOYEE)

	conversation.add_participant(EMPLOYEE, NOW)
	assert len(conversation.participants) == 2
	assert conversation.is_active_participant(EMPLOYEE)


def test_record_message_updates_summary_fields():
	conversation = _conversation("group", HR, EMPLOYEE)
	later = NOW + timedelta(minutes=1)
	conversation.record_message(_message(HR, EMPLOYEE, message_id="m9", created_at=later))
	assert conversation.message_count == 1
	assert conversation.last_message_id == "m9"
	assert conversation.last_message_at == later
	assert conversation.to_dict()["participants"][0]["role"] == Role.HR.value
