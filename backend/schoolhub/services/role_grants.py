"""
Additional role grant lookups.

Used by collaborator code that needs a user's full role set (primary role
plus grants such as head of department).
"""

import logging
from typing import Optional

from sqlalchemy import select

from schoolhub.auth.identity import Identity
from schoolhub.constants.permissions import DEPARTMENT_HEAD_ROLE
from schoolhub.models.user_role import AdditionalRoleGrant, user_roles_table

logger = logging.getLogger(__name__)


async def load_additional_roles(connection, user_id: str) -> list[AdditionalRoleGrant]:
    """Fetch every additional role granted to a user, oldest first."""
    ur = user_roles_table
    query = (
        select(ur.c.role_name, ur.c.assigned_at, ur.c.assigned_by, ur.c["metadata"])
        .where(ur.c.user_id == user_id)
        .order_by(ur.c.assigned_at)
    )
    result = await connection.execute(query)
    return [AdditionalRoleGrant.from_row(row) for row in result.mappings().all()]


async def with_additional_roles(connection, identity: Identity) -> Identity:
    """Return a copy of identity carrying its additional role grants."""
    grants = await load_additional_roles(connection, identity.id)
    logger.debug(
        "Loaded additional roles",
        extra={"user_id": identity.id, "grant_count": len(grants)},
    )
    return identity.with_grants(grants)


def get_department_head_grant(identity: Identity) -> Optional[AdditionalRoleGrant]:
    for grant in identity.additional_roles:
        if grant.role == DEPARTMENT_HEAD_ROLE:
            return grant
    return None


def get_department_id(identity: Identity) -> Optional[str]:
    """Department a head of department is assigned to, if any."""
    grant = get_department_head_grant(identity)
    if grant is None:
        return None
    department_id = grant.metadata.get("department_id") or grant.metadata.get("departmentId")
    return str(department_id) if department_id else None
