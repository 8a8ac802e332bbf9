"""
Azure Resource Manager adapter.

Implements ResourceGroupStore, ManagedIdentityStore and RoleAssignmentStore
for a single subscription on top of the azure-mgmt SDKs. Clients are created
lazily so the SDK module preflight can run before anything is imported.
"""

import logging
import uuid
from typing import Any, List, Optional

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from ..exceptions import is_conflict, wrap_azure_exception
from ..models import ManagedIdentity, RoleAssignment, role_guid

logger = logging.getLogger(__name__)


class ArmService:
    """Resource groups, managed identities and role assignments in one subscription."""

    def __init__(self, credential: Any, subscription_id: str) -> None:
        self.credential = credential
        self.subscription_id = subscription_id
        self._resource_client: Optional[Any] = None
        self._msi_client: Optional[Any] = None
        self._authorization_client: Optional[Any] = None

    # ------------------------------------------------------------------
    # Lazy clients
    # ------------------------------------------------------------------

    def _get_resource_client(self) -> Any:
        """Get or create Azure Resource Management client."""
        if self._resource_client is None:
            from azure.mgmt.resource import ResourceManagementClient

            self._resource_client = ResourceManagementClient(
                self.credential, self.subscription_id
            )
        return self._resource_client

    def _get_msi_client(self) -> Any:
        """Get or create Managed Service Identity client."""
        if self._msi_client is None:
            from azure.mgmt.msi import ManagedServiceIdentityClient

            self._msi_client = ManagedServiceIdentityClient(
                credential=self.credential, subscription_id=self.subscription_id
            )
        return self._msi_client

    def _get_authorization_client(self) -> Any:
        """Get or create Authorization Management client."""
        if self._authorization_client is None:
            from azure.mgmt.authorization import AuthorizationManagementClient

            self._authorization_client = AuthorizationManagementClient(
                self.credential, self.subscription_id
            )
        return self._authorization_client

    def _role_definition_path(self, role_definition_id: str) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/providers/"
            f"Microsoft.Authorization/roleDefinitions/{role_guid(role_definition_id)}"
        )

    # ------------------------------------------------------------------
    # Resource groups
    # ------------------------------------------------------------------

    def get_resource_group(self, name: str) -> Optional[str]:
        try:
            resource_group = self._get_resource_client().resource_groups.get(name)
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, operation="get resource group", context={"resource_group": name}
            ) from e
        return resource_group.location

    def create_resource_group(self, name: str, region: str) -> str:
        logger.debug(f"Creating resource group {name} in {region}")
        try:
            resource_group = self._get_resource_client().resource_groups.create_or_update(
                resource_group_name=name,
                parameters={"location": region},
            )
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, operation="create resource group", context={"resource_group": name}
            ) from e
        return resource_group.location

    # ------------------------------------------------------------------
    # Managed identities
    # ------------------------------------------------------------------

    @staticmethod
    def _identity_from_sdk(identity: Any, resource_group: str) -> ManagedIdentity:
        return ManagedIdentity(
            name=identity.name,
            resource_group=resource_group,
            region=identity.location,
            principal_id=str(identity.principal_id),
            client_id=str(identity.client_id) if identity.client_id else None,
            resource_id=identity.id,
        )

    def get_identity(self, resource_group: str, name: str) -> Optional[ManagedIdentity]:
        try:
            identity = self._get_msi_client().user_assigned_identities.get(
                resource_group_name=resource_group, resource_name=name
            )
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, operation="get managed identity", context={"identity": name}
            ) from e
        return self._identity_from_sdk(identity, resource_group)

    def create_identity(
        self, resource_group: str, name: str, region: str
    ) -> ManagedIdentity:
        from azure.mgmt.msi.models import Identity

        logger.debug(f"Creating managed identity {name} in {resource_group}")
        try:
            identity = self._get_msi_client().user_assigned_identities.create_or_update(
                resource_group_name=resource_group,
                resource_name=name,
                parameters=Identity(location=region),
            )
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, operation="create managed identity", context={"identity": name}
            ) from e
        return self._identity_from_sdk(identity, resource_group)

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def list_role_assignments(
        self, scope: str, principal_id: str
    ) -> List[RoleAssignment]:
        client = self._get_authorization_client()
        try:
            assignments = list(
                client.role_assignments.list_for_scope(
                    scope=scope, filter=f"principalId eq '{principal_id}'"
                )
            )
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, operation="list role assignments", context={"scope": scope}
            ) from e

        # list_for_scope also returns inherited assignments from parent scopes
        normalized_scope = scope.rstrip("/").lower()
        result = []
        for ra in assignments:
            if (ra.scope or "").rstrip("/").lower() != normalized_scope:
                continue
            result.append(
                RoleAssignment(
                    principal_id=str(ra.principal_id),
                    role_definition_id=ra.role_definition_id,
                    scope=ra.scope,
                    assignment_id=ra.id,
                )
            )
        return result

    def create_role_assignment(
        self, scope: str, principal_id: str, role_definition_id: str
    ) -> Optional[RoleAssignment]:
        from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

        client = self._get_authorization_client()
        try:
            ra = client.role_assignments.create(
                scope=scope,
                role_assignment_name=str(uuid.uuid4()),
                parameters=RoleAssignmentCreateParameters(
                    role_definition_id=self._role_definition_path(role_definition_id),
                    principal_id=principal_id,
                    principal_type="ServicePrincipal",
                ),
            )
        except HttpResponseError as e:
            if is_conflict(e):
                logger.debug(
                    f"Role assignment {role_guid(role_definition_id)} for {principal_id} already exists"
                )
                return None
            raise wrap_azure_exception(
                e,
                operation="create role assignment",
                context={"role_definition_id": role_guid(role_definition_id)},
            ) from e
        return RoleAssignment(
            principal_id=str(ra.principal_id),
            role_definition_id=ra.role_definition_id,
            scope=ra.scope,
            assignment_id=ra.id,
        )

    def role_definition_exists(self, scope: str, role_definition_id: str) -> bool:
        client = self._get_authorization_client()
        try:
            client.role_definitions.get(
                scope=scope, role_definition_id=role_guid(role_definition_id)
            )
        except ResourceNotFoundError:
            return False
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e,
                operation="get role definition",
                context={"role_definition_id": role_guid(role_definition_id)},
            ) from e
        return True
