"""
Canonical permissions matrix for SchoolHub.

IMPORTANT: This is the single source of truth for all permissions.
All permission checks MUST reference these constants.
UI permission gating is UX only - server-side enforcement is security.

Role Hierarchy (strict, used to prevent privilege escalation on
role-assignment endpoints):
    SUPERADMIN (5) > ADMIN (4) > HOD (3) > TEACHER (2) > STUDENT (1)

HOD (head of department) is normally held as an *additional* role on top of
a teacher's primary role; its permissions are unioned in by
get_permissions_for_roles().
"""

from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Role(str, Enum):
    """
    Primary user roles.

    Keep in sync with the role column of shared.users and
    shared.user_roles.role_name.
    """
    STUDENT = "student"
    TEACHER = "teacher"
    HOD = "hod"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# Additional-role name that marks a department head
DEPARTMENT_HEAD_ROLE = Role.HOD.value


# Numeric privilege levels; no two roles share a level
ROLE_LEVELS: dict[Role, int] = {
    Role.SUPERADMIN: 5,
    Role.ADMIN: 4,
    Role.HOD: 3,
    Role.TEACHER: 2,
    Role.STUDENT: 1,
}


class Permission(str, Enum):
    """
    All permissions in the system.

    Naming convention: RESOURCE_ACTION
    """
    DASHBOARD_VIEW = "dashboard:view"

    # Attendance
    ATTENDANCE_MANAGE = "attendance:manage"
    ATTENDANCE_VIEW = "attendance:view"
    ATTENDANCE_MARK = "attendance:mark"
    ATTENDANCE_VIEW_OWN_CLASS = "attendance:view_own_class"

    # Exams and grades
    EXAMS_MANAGE = "exams:manage"
    EXAMS_VIEW = "exams:view"
    GRADES_MANAGE = "grades:manage"
    GRADES_ENTER = "grades:enter"
    GRADES_EDIT = "grades:edit"
    GRADES_VIEW_OWN_CLASS = "grades:view_own_class"

    # Fees and billing
    FEES_MANAGE = "fees:manage"
    FEES_VIEW = "fees:view"
    FEES_VIEW_SELF = "fees:view_self"
    BILLING_VIEW = "billing:view"
    BILLING_MANAGE = "billing:manage"

    # Users and people
    USERS_INVITE = "users:invite"
    USERS_MANAGE = "users:manage"
    STUDENTS_MANAGE = "students:manage"
    STUDENTS_VIEW_OWN_CLASS = "students:view_own_class"
    STUDENTS_VIEW_SELF = "students:view_self"
    TEACHERS_MANAGE = "teachers:manage"
    PROFILE_VIEW_SELF = "profile:view_self"

    # Tenant / school administration
    TENANTS_MANAGE = "tenants:manage"
    SCHOOL_MANAGE = "school:manage"
    SETTINGS_BRANDING = "settings:branding"
    SETTINGS_TERMS = "settings:terms"
    SETTINGS_CLASSES = "settings:classes"

    # Reporting
    DEPARTMENT_ANALYTICS = "department-analytics"
    REPORTS_VIEW = "reports:view"
    REPORTS_MANAGE = "reports:manage"
    PERFORMANCE_CHARTS = "performance:charts"
    PERFORMANCE_GENERATE = "performance:generate"

    # Messaging and resources
    MESSAGES_SEND = "messages:send"
    MESSAGES_RECEIVE = "messages:receive"
    RESOURCES_UPLOAD = "resources:upload"
    ANNOUNCEMENTS_POST = "announcements:post"
    ANNOUNCEMENTS_MANAGE = "announcements:manage"
    NOTIFICATIONS_SEND = "notifications:send"

    # Support desk
    SUPPORT_RAISE = "support:raise"
    SUPPORT_VIEW = "support:view"
    SUPPORT_MANAGE = "support:manage"
    KB_MANAGE = "kb:manage"
    STATUS_VIEW = "status:view"
    STATUS_MANAGE = "status:manage"

    # Platform (superuser) administration
    SUBSCRIPTIONS_MANAGE = "subscriptions:manage"
    SUBSCRIPTIONS_VIEW = "subscriptions:view"
    SUBSCRIPTIONS_UPDATE = "subscriptions:update"
    OVERRIDES_MANAGE = "overrides:manage"
    OVERRIDES_VIEW = "overrides:view"
    OVERRIDES_CREATE = "overrides:create"
    OVERRIDES_REVOKE = "overrides:revoke"
    PERMISSION_OVERRIDES_MANAGE = "permission_overrides:manage"
    PERMISSION_OVERRIDES_VIEW = "permission_overrides:view"


# Permission matrix: Role -> Set of Permissions
# This is the canonical source of truth for RBAC
ROLE_PERMISSIONS: dict[Role, FrozenSet[Permission]] = {
    Role.STUDENT: frozenset([
        Permission.DASHBOARD_VIEW,
        Permission.ATTENDANCE_VIEW,
        Permission.EXAMS_VIEW,
        Permission.FEES_VIEW,
        Permission.FEES_VIEW_SELF,
        Permission.MESSAGES_RECEIVE,
        Permission.STUDENTS_VIEW_SELF,
        Permission.PROFILE_VIEW_SELF,
        Permission.SUPPORT_RAISE,
    ]),

    Role.TEACHER: frozenset([
        Permission.DASHBOARD_VIEW,
        Permission.ATTENDANCE_MARK,
        Permission.ATTENDANCE_VIEW,
        Permission.ATTENDANCE_VIEW_OWN_CLASS,
        Permission.GRADES_ENTER,
        Permission.GRADES_EDIT,
        Permission.GRADES_VIEW_OWN_CLASS,
        Permission.PERFORMANCE_GENERATE,
        Permission.MESSAGES_SEND,
        Permission.MESSAGES_RECEIVE,
        Permission.STUDENTS_VIEW_OWN_CLASS,
        Permission.RESOURCES_UPLOAD,
        Permission.ANNOUNCEMENTS_POST,
    ]),

    # Granted on top of the teacher role; HOD does NOT get users:manage or
    # teachers:manage unless explicitly overridden.
    Role.HOD: frozenset([
        Permission.DASHBOARD_VIEW,
        Permission.ATTENDANCE_VIEW,
        Permission.EXAMS_VIEW,
        Permission.GRADES_MANAGE,
        Permission.DEPARTMENT_ANALYTICS,
        Permission.REPORTS_VIEW,
        Permission.PERFORMANCE_CHARTS,
        Permission.MESSAGES_SEND,
    ]),

    Role.ADMIN: frozenset([
        Permission.DASHBOARD_VIEW,
        Permission.BILLING_VIEW,
        Permission.BILLING_MANAGE,
        Permission.ATTENDANCE_MANAGE,
        Permission.ATTENDANCE_VIEW,
        Permission.EXAMS_MANAGE,
        Permission.EXAMS_VIEW,
        Permission.GRADES_MANAGE,
        Permission.FEES_MANAGE,
        Permission.FEES_VIEW,
        Permission.USERS_INVITE,
        Permission.USERS_MANAGE,
        Permission.SETTINGS_BRANDING,
        Permission.SETTINGS_TERMS,
        Permission.SETTINGS_CLASSES,
        Permission.STUDENTS_MANAGE,
        Permission.STUDENTS_VIEW_OWN_CLASS,
        Permission.TEACHERS_MANAGE,
        Permission.REPORTS_VIEW,
        Permission.PERFORMANCE_GENERATE,
        Permission.MESSAGES_SEND,
        Permission.MESSAGES_RECEIVE,
        Permission.SCHOOL_MANAGE,
        Permission.SUPPORT_RAISE,
        Permission.SUPPORT_VIEW,
        Permission.SUPPORT_MANAGE,
        Permission.ANNOUNCEMENTS_MANAGE,
        Permission.KB_MANAGE,
        Permission.STATUS_VIEW,
        Permission.STATUS_MANAGE,
    ]),

    Role.SUPERADMIN: frozenset([
        Permission.DASHBOARD_VIEW,
        Permission.ATTENDANCE_MANAGE,
        Permission.ATTENDANCE_VIEW,
        Permission.EXAMS_MANAGE,
        Permission.EXAMS_VIEW,
        Permission.GRADES_MANAGE,
        Permission.FEES_MANAGE,
        Permission.FEES_VIEW,
        Permission.USERS_INVITE,
        Permission.USERS_MANAGE,
        Permission.TENANTS_MANAGE,
        Permission.SETTINGS_BRANDING,
        Permission.SETTINGS_TERMS,
        Permission.SETTINGS_CLASSES,
        Permission.STUDENTS_MANAGE,
        Permission.STUDENTS_VIEW_OWN_CLASS,
        Permission.TEACHERS_MANAGE,
        Permission.REPORTS_VIEW,
        Permission.REPORTS_MANAGE,
        Permission.PERFORMANCE_GENERATE,
        Permission.MESSAGES_SEND,
        Permission.MESSAGES_RECEIVE,
        Permission.SCHOOL_MANAGE,
        Permission.SUPPORT_RAISE,
        Permission.SUPPORT_VIEW,
        Permission.SUPPORT_MANAGE,
        Permission.ANNOUNCEMENTS_MANAGE,
        Permission.KB_MANAGE,
        Permission.STATUS_VIEW,
        Permission.STATUS_MANAGE,
        Permission.NOTIFICATIONS_SEND,
        Permission.SUBSCRIPTIONS_MANAGE,
        Permission.SUBSCRIPTIONS_VIEW,
        Permission.SUBSCRIPTIONS_UPDATE,
        Permission.OVERRIDES_MANAGE,
        Permission.OVERRIDES_VIEW,
        Permission.OVERRIDES_CREATE,
        Permission.OVERRIDES_REVOKE,
        Permission.PERMISSION_OVERRIDES_MANAGE,
        Permission.PERMISSION_OVERRIDES_VIEW,
    ]),
}


def parse_role(role_name: Optional[str]) -> Optional[Role]:
    """Parse a role name, returning None for unknown or empty values."""
    if not role_name:
        return None
    try:
        return Role(str(role_name).strip().lower())
    except ValueError:
        return None


def get_permissions_for_role(role: Role) -> FrozenSet[Permission]:
    """Get all permissions for a single role."""
    return ROLE_PERMISSIONS.get(role, frozenset())


def get_permissions_for_roles(roles: Iterable[str]) -> set[Permission]:
    """
    Get union of all permissions for a list of role names.

    Handles invalid role names gracefully (ignores them).
    """
    permissions: set[Permission] = set()
    for role_name in roles:
        role = parse_role(role_name)
        if role is None:
            continue
        permissions.update(ROLE_PERMISSIONS.get(role, frozenset()))
    return permissions


def has_permission(role_name: Optional[str], permission: Permission) -> bool:
    """Check if a (primary) role grants a specific permission."""
    role = parse_role(role_name)
    if role is None:
        return False
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def get_role_level(role_name: Optional[str]) -> Optional[int]:
    """Return the hierarchy level of a role, or None if it is not a known role."""
    role = parse_role(role_name)
    if role is None:
        return None
    return ROLE_LEVELS[role]
