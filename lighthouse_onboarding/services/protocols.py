"""
Capability protocols for the external services the workflow talks to.

Philosophy:
- One narrow interface per resource kind
- Return our own models, never SDK objects
- "Not found" is None, never an exception

The Azure adapters in this package implement them; tests use an in-memory
implementation.
"""

from datetime import datetime
from typing import List, Optional, Protocol

from ..models import (
    AppRole,
    AppRoleGrant,
    ApplicationRegistration,
    IssuedSecret,
    ManagedIdentity,
    RoleAssignment,
    ServicePrincipal,
)


class ResourceGroupStore(Protocol):
    """Resource groups in one subscription."""

    def get_resource_group(self, name: str) -> Optional[str]:
        """
        Look up a resource group.

        Returns:
            The resource group's location, or None if it does not exist
        """
        ...

    def create_resource_group(self, name: str, region: str) -> str:
        """Create the resource group and return its location."""
        ...


class ManagedIdentityStore(Protocol):
    """User-assigned managed identities in one subscription."""

    def get_identity(self, resource_group: str, name: str) -> Optional[ManagedIdentity]:
        ...

    def create_identity(
        self, resource_group: str, name: str, region: str
    ) -> ManagedIdentity:
        ...


class RoleAssignmentStore(Protocol):
    """Azure RBAC role assignments and definitions."""

    def list_role_assignments(
        self, scope: str, principal_id: str
    ) -> List[RoleAssignment]:
        """List assignments held by principal_id at exactly scope."""
        ...

    def create_role_assignment(
        self, scope: str, principal_id: str, role_definition_id: str
    ) -> Optional[RoleAssignment]:
        """
        Create an assignment.

        Returns:
            The new assignment, or None if the service reported it already exists
        """
        ...

    def role_definition_exists(self, scope: str, role_definition_id: str) -> bool:
        ...


class DirectoryService(Protocol):
    """Microsoft Graph objects used by the workflow."""

    async def get_service_principal(self, object_id: str) -> Optional[ServicePrincipal]:
        ...

    async def find_application(
        self, display_name: str
    ) -> Optional[ApplicationRegistration]:
        ...

    async def create_application(self, display_name: str) -> ApplicationRegistration:
        ...

    async def find_service_principal_by_app_id(
        self, app_id: str
    ) -> Optional[ServicePrincipal]:
        ...

    async def create_service_principal(self, app_id: str) -> Optional[ServicePrincipal]:
        """Returns None when the application already has a service principal."""
        ...

    async def add_password(
        self,
        application_object_id: str,
        display_name: str,
        end_date_time: datetime,
    ) -> IssuedSecret:
        ...

    async def list_app_roles(self, resource_sp_id: str) -> List[AppRole]:
        ...

    async def list_app_role_grants(self, principal_id: str) -> List[AppRoleGrant]:
        ...

    async def grant_app_role(
        self, principal_id: str, resource_id: str, app_role_id: str
    ) -> Optional[AppRoleGrant]:
        """
        Assign an application permission.

        Returns:
            The new grant, or None if the service reported it already exists
        """
        ...

    async def list_application_owners(self, application_object_id: str) -> List[str]:
        """Return the object ids of the application's owners."""
        ...

    async def add_application_owner(
        self, application_object_id: str, principal_id: str
    ) -> bool:
        """
        Add an owner.

        Returns:
            True if added, False if the service reported it already present
        """
        ...
