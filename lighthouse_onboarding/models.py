"""Data models for Lighthouse onboarding.

Models:
    ProvisioningRequest: Validated inputs plus the resource names derived from them
    AuthorizationEntry: One Lighthouse authorization (principal + role)
    ManagedIdentity: User-assigned managed identity in the customer subscription
    ApplicationRegistration / ServicePrincipal: Directory objects of the ingestion app
    RoleAssignment / RoleRequirement: Azure RBAC assignments and the roles we need
    AppRoleGrant: Microsoft Graph application permission held by a principal
    IssuedSecret: Client secret returned exactly once per run
    ChangeSummary: Immutable record of what a run created versus found
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .constants import (
    GUID_PATTERN,
    MIN_CUSTOMER_PREFIX_LENGTH,
    MIN_SUBSCRIPTION_ID_LENGTH,
    SUPPORTED_REGIONS,
)
from .exceptions import InvalidInputError


def is_guid(value: Any) -> bool:
    """Validate GUID format (8-4-4-4-12)."""
    if not value or not isinstance(value, str):
        return False
    return bool(re.match(GUID_PATTERN, value))


def role_guid(role_definition_id: str) -> str:
    """Reduce a role definition id to its lower-cased trailing GUID.

    ARM returns fully-qualified ids
    (/subscriptions/.../providers/Microsoft.Authorization/roleDefinitions/<guid>)
    while configuration uses bare GUIDs; both compare equal after this.
    """
    return role_definition_id.rstrip("/").split("/")[-1].lower()


@dataclass(frozen=True)
class ProvisioningRequest:
    """Inputs for one provisioning run."""

    customer_prefix: str
    subscription_id: str
    region: str
    skip_module_install: bool = False

    @classmethod
    def create(
        cls,
        customer_prefix: Optional[str],
        subscription_id: Optional[str],
        region: Optional[str],
        skip_module_install: bool = False,
    ) -> "ProvisioningRequest":
        """Validate raw inputs and build a request.

        Raises:
            InvalidInputError: If any input is missing or malformed
        """
        prefix = (customer_prefix or "").strip()
        if len(prefix) < MIN_CUSTOMER_PREFIX_LENGTH:
            raise InvalidInputError(
                f"Customer prefix must be at least {MIN_CUSTOMER_PREFIX_LENGTH} characters, got {prefix!r}",
                parameter="customer_prefix",
            )
        if not re.match(r"^[A-Za-z0-9][A-Za-z0-9-]*$", prefix):
            raise InvalidInputError(
                f"Customer prefix may only contain letters, digits and hyphens: {prefix!r}",
                parameter="customer_prefix",
            )

        subscription = (subscription_id or "").strip()
        if len(subscription) < MIN_SUBSCRIPTION_ID_LENGTH:
            raise InvalidInputError(
                f"Subscription id must be at least {MIN_SUBSCRIPTION_ID_LENGTH} characters, got {len(subscription)}",
                parameter="subscription_id",
            )
        if not is_guid(subscription):
            raise InvalidInputError(
                f"Subscription id must be a GUID: {subscription}",
                parameter="subscription_id",
            )

        location = (region or "").strip().lower()
        if location not in SUPPORTED_REGIONS:
            raise InvalidInputError(
                f"Unsupported region: {region!r}",
                parameter="region",
                recovery_suggestion=f"Use one of: {', '.join(SUPPORTED_REGIONS)}",
            )

        return cls(
            customer_prefix=prefix,
            subscription_id=subscription.lower(),
            region=location,
            skip_module_install=skip_module_install,
        )

    @property
    def subscription_scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"

    @property
    def resource_group_name(self) -> str:
        return f"rg-{self.customer_prefix.lower()}-sentinel-ingestion"

    @property
    def identity_name(self) -> str:
        return f"umi-{self.customer_prefix.lower()}-sentinel-ingestion"

    @property
    def application_display_name(self) -> str:
        return f"{self.customer_prefix}-Sentinel-Ingestion"


@dataclass(frozen=True)
class AuthorizationEntry:
    """Azure Lighthouse authorization granted to a managing-tenant principal.

    Attributes:
        principal_id: Object id of the managing tenant's group
        role_definition_id: Built-in role granted over the customer subscription
        principal_id_display_name: Label shown in the customer's portal
        delegated_role_definition_ids: Roles the principal may assign to managed
            identities in the customer tenant (User Access Administrator only)
    """

    principal_id: str
    role_definition_id: str
    principal_id_display_name: str
    delegated_role_definition_ids: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationEntry":
        delegated = data.get("delegatedRoleDefinitionIds") or ()
        return cls(
            principal_id=str(data.get("principalId") or ""),
            role_definition_id=str(data.get("roleDefinitionId") or ""),
            principal_id_display_name=str(data.get("principalIdDisplayName") or ""),
            delegated_role_definition_ids=tuple(str(d) for d in delegated),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the Lighthouse ARM schema keys."""
        result: Dict[str, Any] = {
            "principalId": self.principal_id,
            "roleDefinitionId": self.role_definition_id,
            "principalIdDisplayName": self.principal_id_display_name,
        }
        if self.delegated_role_definition_ids:
            result["delegatedRoleDefinitionIds"] = list(
                self.delegated_role_definition_ids
            )
        return result


@dataclass(frozen=True)
class ManagedIdentity:
    """User-assigned managed identity.

    principal_id is the object id of the identity's service principal in the
    directory; it is what role assignments and Graph grants target.
    """

    name: str
    resource_group: str
    region: str
    principal_id: str
    client_id: Optional[str] = None
    resource_id: Optional[str] = None


@dataclass(frozen=True)
class ApplicationRegistration:
    display_name: str
    app_id: str
    object_id: str


@dataclass(frozen=True)
class ServicePrincipal:
    display_name: str
    app_id: str
    object_id: str


@dataclass(frozen=True)
class RoleRequirement:
    name: str
    role_definition_id: str


@dataclass(frozen=True)
class RoleAssignment:
    """Azure RBAC assignment; unique per (principal_id, role, scope)."""

    principal_id: str
    role_definition_id: str
    scope: str
    assignment_id: Optional[str] = None

    def key(self) -> Tuple[str, str, str]:
        return (
            self.principal_id.lower(),
            role_guid(self.role_definition_id),
            self.scope.rstrip("/").lower(),
        )


@dataclass(frozen=True)
class AppRole:
    """Application permission exposed by a resource service principal."""

    id: str
    value: str
    allowed_member_types: Tuple[str, ...] = ("Application",)
    is_enabled: bool = True


@dataclass(frozen=True)
class AppRoleGrant:
    """Application permission assigned to a principal."""

    principal_id: str
    resource_id: str
    app_role_id: str

    def key(self) -> Tuple[str, str]:
        return (self.app_role_id.lower(), self.resource_id.lower())


@dataclass(frozen=True)
class IssuedSecret:
    """Client secret issued on the application. Never persisted."""

    key_id: Optional[str]
    secret_text: str = field(repr=False)
    display_name: str
    end_date_time: datetime

    def masked(self) -> str:
        if len(self.secret_text) <= 6:
            return "*" * len(self.secret_text)
        return self.secret_text[:3] + "*" * (len(self.secret_text) - 3)


@dataclass(frozen=True)
class ChangeSummary:
    """What a provisioning run created versus found already present.

    Every workflow step returns a new summary; nothing is mutated in place.
    """

    resource_group_created: bool = False
    resource_group_found: bool = False
    umi_created: bool = False
    umi_found: bool = False
    role_assignments: Tuple[str, ...] = ()
    roles_already_assigned: Tuple[str, ...] = ()
    application_created: bool = False
    application_found: bool = False
    service_principal_created: bool = False
    service_principal_found: bool = False
    secret_created: bool = False
    graph_permissions: Tuple[str, ...] = ()
    graph_permissions_already_assigned: Tuple[str, ...] = ()
    ownership_added: bool = False
    ownership_already_present: bool = False
    warnings: Tuple[str, ...] = ()

    identity: Optional[ManagedIdentity] = field(default=None, compare=False)
    application: Optional[ApplicationRegistration] = field(
        default=None, compare=False
    )
    service_principal: Optional[ServicePrincipal] = field(
        default=None, compare=False
    )
    secret: Optional[IssuedSecret] = field(default=None, compare=False, repr=False)

    def update(self, **changes: Any) -> "ChangeSummary":
        return replace(self, **changes)

    def with_warning(self, message: str) -> "ChangeSummary":
        return replace(self, warnings=self.warnings + (message,))

    def creation_count(self) -> int:
        """Number of idempotent creations; the always-issued secret is excluded."""
        return (
            int(self.resource_group_created)
            + int(self.umi_created)
            + len(self.role_assignments)
            + int(self.application_created)
            + int(self.service_principal_created)
            + len(self.graph_permissions)
            + int(self.ownership_added)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Operator-facing summary keyed the way the end-of-run report reads."""
        return {
            "ResourceGroupCreated": self.resource_group_created,
            "ResourceGroupFound": self.resource_group_found,
            "UmiCreated": self.umi_created,
            "UmiFound": self.umi_found,
            "RoleAssignments": list(self.role_assignments),
            "RolesAlreadyAssigned": list(self.roles_already_assigned),
            "ApplicationCreated": self.application_created,
            "ApplicationFound": self.application_found,
            "ServicePrincipalCreated": self.service_principal_created,
            "ServicePrincipalFound": self.service_principal_found,
            "SecretCreated": self.secret_created,
            "GraphPermissions": list(self.graph_permissions),
            "GraphPermissionsAlreadyAssigned": list(
                self.graph_permissions_already_assigned
            ),
            "OwnershipAdded": self.ownership_added,
            "OwnershipAlreadyPresent": self.ownership_already_present,
            "Warnings": list(self.warnings),
        }
