"""
Lookup services over the shared schema.
"""

from schoolhub.services.tenant_directory import TenantDirectory
from schoolhub.services.role_grants import load_additional_roles, with_additional_roles

__all__ = ["TenantDirectory", "load_additional_roles", "with_additional_roles"]
