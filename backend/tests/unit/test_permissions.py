import pytest

from app.domain.messaging.exceptions import MessagingNotAllowed
from app.domain.messaging.permissions import can_message, ensure_can_message_all, requires_approval
from app.domain.profiles.models import ProfileRef


@pytest.mark.parametrize(
	"sender,receiver,expected",
	[
		("Admin", "Admin", True),
		("Admin", "HR", True),
		("Admin", "Employee", True),
		("HR", "Admin", True),
		("HR", "HR", True),
		("HR", "Employee", True),
		("Employee", "HR", True),
		("Employee", "Employee", True),
		("Employee", "Admin", False),
	],
)
def test_matrix(sender, receiver, expected):
	assert can_message(sender, receiver) is expected


def test_matrix_is_directional():
	assert can_message("Admin", "Employee")
	assert not can_message("Employee", "Admin")


def test_role_tags_are_case_insensitive():
	assert can_message("hr", "employee")
	assert not can_message("EMPLOYEE", "admin")


def test_unknown_roles_are_refused():
	assert not can_message("Contractor", "HR")
	assert not can_message("HR", None)


def test_only_employee_to_admin_requires_approval():
	assert requires_approval("Employee", "Admin")
	assert not requires_approval("Employee", "HR")
	assert not requires_approval("Admin", "Employee")
	assert not requires_approval("HR", "Admin")


def test_ensure_can_message_all_rejects_whole_set():
	sender = ProfileRef.employee("e1")
	recipients = [ProfileRef.hr("h1"), ProfileRef.admin("a1")]
	with pytest.raises(MessagingNotAllowed) as excinfo:
		ensure_can_message_all(sender, recipients)
	assert excinfo.value.to_detail()["receiver_role"] == "Admin"


def test_ensure_can_message_all_skips_sender():
	sender = ProfileRef.hr("h1")
	ensure_can_message_all(sender, [sender, ProfileRef.employee("e1"), ProfileRef.admin("a1")])
