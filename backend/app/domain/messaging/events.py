"""Event names and payload builders for real-time messaging.

Payload keys are camelCase; clients consume them directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from .models import Conversation, Message
from app.domain.profiles.models import ProfileRef, ResolvedProfile

MESSAGE_SENT = "message_sent"
MESSAGE_RECEIVED = "message_received"
MESSAGE_READ = "message_read"
MESSAGE_APPROVED = "message_approved"
CONVERSATION_CREATED = "conversation_created"
CONVERSATION_UPDATED = "conversation_updated"
TYPING_INDICATOR = "typing_indicator"
TYPING_STOPPED = "typing_stopped"


def message_payload(message: Message) -> Dict[str, Any]:
	return {
		"messageId": message.message_id,
		"conversationId": message.conversation_id,
		"sender": {
			"profileId": message.sender.profile_id,
			"role": message.sender.role.value,
			"name": message.sender.name,
			"email": message.sender.email,
		},
		"receiver": {"profileId": message.receiver_id, "role": message.receiver_role.value},
		"content": message.content,
		"messageType": message.message_type,
		"priority": message.priority,
		"status": message.status,
		"replyTo": message.reply_to,
		"requiresApproval": message.requires_approval,
		"isApproved": message.is_approved,
		"createdAt": message.created_at,
	}


def message_read_payload(message: Message, reader: ProfileRef, read_at: datetime) -> Dict[str, Any]:
	return {
		"messageId": message.message_id,
		"conversationId": message.conversation_id,
		"readBy": {"profileId": reader.profile_id, "role": reader.role.value},
		"readAt": read_at,
	}


def message_approved_payload(message: Message) -> Dict[str, Any]:
	return {
		"messageId": message.message_id,
		"conversationId": message.conversation_id,
		"approvedBy": message.approved_by,
		"approvedAt": message.approved_at,
	}


def conversation_payload(conversation: Conversation) -> Dict[str, Any]:
	return {
		"conversationId": conversation.conversation_id,
		"conversationType": conversation.conversation_type,
		"title": conversation.title,
		"status": conversation.status,
		"participants": [
			{
				"profileId": participant.profile_id,
				"role": participant.role.value,
				"isActive": participant.is_active,
			}
			for participant in conversation.participants
		],
		"lastMessageAt": conversation.last_message_at,
		"updatedAt": conversation.updated_at,
	}


def typing_payload(conversation_id: str, profile: ResolvedProfile) -> Dict[str, Any]:
	return {
		"conversationId": conversation_id,
		"profileId": profile.profile_id,
		"role": profile.role.value if profile.role else None,
		"name": profile.display_name,
	}
