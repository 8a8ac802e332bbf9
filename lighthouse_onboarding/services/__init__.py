"""Adapters for Azure Resource Manager and Microsoft Graph."""

from .protocols import (
    DirectoryService,
    ManagedIdentityStore,
    ResourceGroupStore,
    RoleAssignmentStore,
)

__all__ = [
    "DirectoryService",
    "ManagedIdentityStore",
    "ResourceGroupStore",
    "RoleAssignmentStore",
]
