"""模型集合。"""

from .audit_log import AuditLog, SecurityFlag
from .caretaker_assignment import AssignmentNote, AssignmentSchedule, CaretakerAssignment
from .mentor_authorization import AccessSchedule, MentorAuthorization
from .permission import RolePermission
from .profile import Organization, Profile

DOCUMENT_MODELS = [RolePermission, Profile, Organization, CaretakerAssignment, MentorAuthorization, AuditLog]

__all__ = [
    "AccessSchedule",
    "AssignmentNote",
    "AssignmentSchedule",
    "AuditLog",
    "CaretakerAssignment",
    "DOCUMENT_MODELS",
    "MentorAuthorization",
    "Organization",
    "Profile",
    "RolePermission",
    "SecurityFlag",
]
