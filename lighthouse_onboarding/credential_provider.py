"""
Credential Provider Module

Builds the authenticated session a provisioning run works through: one
azure-identity credential, verified against both Azure Resource Manager and
Microsoft Graph before any resource is touched, plus the adapters bound to
the target subscription.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import CredentialUnavailableError, DefaultAzureCredential

from .config_manager import AzureConfig
from .constants import ARM_SCOPE, GRAPH_SCOPE
from .exceptions import AzureAuthenticationError
from .models import ProvisioningRequest
from .services.arm_service import ArmService
from .services.graph_service import GraphDirectoryService
from .services.protocols import (
    DirectoryService,
    ManagedIdentityStore,
    ResourceGroupStore,
    RoleAssignmentStore,
)
from .utils import mask_identifier

logger = logging.getLogger(__name__)


@dataclass
class AzureSession:
    """
    Capabilities available to one provisioning run.

    Attributes:
        resource_groups: Resource group lookups and creation
        identities: User-assigned managed identity lookups and creation
        role_assignments: RBAC assignments and role definitions
        directory: Microsoft Graph objects
        tenant_id: Directory the session is authenticated against, if known
    """

    resource_groups: ResourceGroupStore
    identities: ManagedIdentityStore
    role_assignments: RoleAssignmentStore
    directory: DirectoryService
    tenant_id: Optional[str] = None


def create_credential(config: AzureConfig) -> Any:
    """Create the azure-identity credential for the configured tenant."""
    kwargs = {}
    if config.tenant_id:
        kwargs["additionally_allowed_tenants"] = [config.tenant_id]
        kwargs["interactive_browser_tenant_id"] = config.tenant_id
    if config.authority_host:
        kwargs["authority"] = config.authority_host
    return DefaultAzureCredential(**kwargs)


def verify_credential(credential: Any, tenant_id: Optional[str] = None) -> None:
    """
    Acquire a token for each API the workflow calls.

    Raises:
        AzureAuthenticationError: If either token cannot be acquired
    """
    for scope in (ARM_SCOPE, GRAPH_SCOPE):
        try:
            if tenant_id:
                credential.get_token(scope, tenant_id=tenant_id)
            else:
                credential.get_token(scope)
        except (ClientAuthenticationError, CredentialUnavailableError) as e:
            raise AzureAuthenticationError(
                f"Could not acquire a token for {scope}",
                tenant_id=tenant_id,
                cause=e,
            ) from e
        logger.debug(f"Token acquired for {scope}")


def establish_session(
    request: ProvisioningRequest,
    config: AzureConfig,
    credential: Optional[Any] = None,
) -> AzureSession:
    """
    Authenticate and build the adapters for the request's subscription.

    Args:
        request: Validated provisioning request
        config: Azure settings (tenant, authority host)
        credential: Optional pre-built credential; DefaultAzureCredential otherwise

    Returns:
        AzureSession bound to request.subscription_id

    Raises:
        AzureAuthenticationError: If no usable credential is available
    """
    if credential is None:
        credential = create_credential(config)
    verify_credential(credential, config.tenant_id)
    logger.info(
        f"Authenticated session established (tenant: {config.get_safe_tenant_id()}, "
        f"subscription: {mask_identifier(request.subscription_id)})"
    )

    arm = ArmService(credential, request.subscription_id)
    return AzureSession(
        resource_groups=arm,
        identities=arm,
        role_assignments=arm,
        directory=GraphDirectoryService(credential=credential),
        tenant_id=config.tenant_id,
    )
