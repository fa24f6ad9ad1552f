from datetime import datetime, timedelta, timezone

import pytest

from app.domain.messaging.exceptions import InvalidParticipants
from app.domain.messaging.keys import (
	LegacyConversationKey,
	derive_conversation_key,
	is_legacy_key,
	normalize_conversation_key,
)
from app.domain.messaging.models import Message, SenderSnapshot
from app.domain.messaging.repo import MessagingRepository
from app.domain.profiles.models import ProfileRef, Role
from app.maintenance.conversation_keys import normalize_historical_keys


def test_key_is_order_independent():
	hr = ProfileRef.hr("h1")
	employee = ProfileRef.employee("e1")
	assert derive_conversation_key(hr, employee) == derive_conversation_key(employee, hr)


def test_mixed_roles_order_by_rank():
	assert derive_conversation_key(ProfileRef.employee("a"), ProfileRef.admin("z")) == "Admin:z|Employee:a"
	assert derive_conversation_key(ProfileRef.employee("e1"), ProfileRef.hr("h1")) == "HR:h1|Employee:e1"


def test_same_role_orders_by_profile_id():
	assert derive_conversation_key(ProfileRef.employee("e9"), ProfileRef.employee("e1")) == "Employee:e1|Employee:e9"


def test_self_conversation_is_rejected():
	with pytest.raises(InvalidParticipants):
		derive_conversation_key(ProfileRef.hr("h1"), ProfileRef.hr("h1"))


def test_parse_accepts_legacy_order():
	key = LegacyConversationKey.parse("employee:e1|hr:h1")
	assert key.first == ProfileRef.hr("h1")
	assert key.peer_of(ProfileRef.hr("h1")) == ProfileRef.employee("e1")
	with pytest.raises(InvalidParticipants):
		key.peer_of(ProfileRef.admin("a1"))


@pytest.mark.parametrize("value", ["", "HR:h1", "HR:h1|", "HR:h1|Boss:b1", "HR:h1|Employee:", "a|b|c"])
def test_malformed_keys(value):
	assert not is_legacy_key(value)
	with pytest.raises((ValueError, InvalidParticipants)):
		normalize_conversation_key(value)


def test_normalize_is_idempotent():
	once = normalize_conversation_key("Employee:e1|Admin:a1")
	assert once == "Admin:a1|Employee:e1"
	assert normalize_conversation_key(once) == once


def _legacy_message(message_id: str, conversation_id: str, sender: ProfileRef, receiver: ProfileRef, minutes: int) -> Message:
	return Message(
		message_id=message_id,
		conversation_id=conversation_id,
		sender=SenderSnapshot(sender.profile_id, sender.role, sender.profile_id, f"{sender.profile_id}@corp.example"),
		receiver_id=receiver.profile_id,
		receiver_role=receiver.role,
		content="hello",
		created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
	)


@pytest.mark.asyncio
async def test_normalization_job_rewrites_sender_first_keys():
	repo = MessagingRepository()
	employee = ProfileRef.employee("e1")
	hr = ProfileRef.hr("h1")
	await repo.append_message(_legacy_message("m1", "Employee:e1|HR:h1", employee, hr, 0))
	await repo.append_message(_legacy_message("m2", "HR:h1|Employee:e1", hr, employee, 1))
	await repo.append_message(_legacy_message("m3", "not-a-pair", hr, employee, 2))
	await repo.append_message(_legacy_message("m4", "HR:h1|Ghost:g1", hr, employee, 3))

	preview = await normalize_historical_keys(repo, dry_run=True)
	assert preview == {"scanned": 3, "rewritten": 1, "messages_moved": 0, "skipped": 1}
	assert (await repo.get_message("m1")).conversation_id == "Employee:e1|HR:h1"

	report = await normalize_historical_keys(repo)
	assert report["messages_moved"] == 1
	assert (await repo.get_message("m1")).conversation_id == "HR:h1|Employee:e1"
	assert (await repo.get_message("m3")).conversation_id == "not-a-pair"

	again = await normalize_historical_keys(repo)
	assert again["rewritten"] == 0


def test_role_rank_ordering():
	assert [role.rank for role in (Role.ADMIN, Role.HR, Role.EMPLOYEE)] == [0, 1, 2]
