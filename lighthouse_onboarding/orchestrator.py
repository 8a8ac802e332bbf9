"""Provisioning Orchestrator for the Sentinel ingestion identity.

Philosophy:
- Every step queries live state first and creates only what is missing
- Every step returns a new ChangeSummary; nothing is mutated in place
- Directory objects are polled until visible before anything depends on them

Public API:
    ProvisioningOrchestrator: Runs the workflow against an AzureSession
    provision: Validate inputs, prepare the environment, run the workflow

Steps, in order:
    1. Resource group
    2. User-assigned managed identity (polled until its service principal exists)
    3. Subscription-scope role assignments for the identity
    4. Application registration and service principal (polled)
    5. Bootstrap client secret (issued on every run)
    6. Microsoft Graph application permissions for the identity
    7. Identity as owner of the application registration

Failures on a single role assignment, permission grant or the ownership add
are recorded as warnings and the run continues. Anything else stops the run;
completed steps are not rolled back and a re-run resumes from live state.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

import structlog

from .config_manager import OnboardingConfig, create_config_from_env
from .constants import (
    BUILTIN_ROLE_DEFINITIONS,
    INGESTION_GRAPH_PERMISSIONS,
    INGESTION_IDENTITY_ROLES,
    MICROSOFT_GRAPH_APP_ID,
)
from .exceptions import AzureError, ResourceConflictError
from .models import (
    ChangeSummary,
    ManagedIdentity,
    ProvisioningRequest,
    RoleRequirement,
    role_guid,
)
from .polling import poll_until
from .utils import mask_identifier
from .utils.module_installer import ensure_sdk_modules

if TYPE_CHECKING:
    from .credential_provider import AzureSession

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

REQUIRED_IDENTITY_ROLES = tuple(
    RoleRequirement(name=name, role_definition_id=BUILTIN_ROLE_DEFINITIONS[name])
    for name in INGESTION_IDENTITY_ROLES
)


class ProvisioningOrchestrator:
    """Idempotent provisioning workflow for one customer subscription."""

    def __init__(
        self,
        session: "AzureSession",
        config: OnboardingConfig,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.session = session
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._now = now

    async def _wait_for(self, probe, description: str):
        return await poll_until(
            probe,
            description=description,
            interval=self.config.polling.interval_seconds,
            max_attempts=self.config.polling.max_attempts,
            sleep=self._sleep,
            clock=self._clock,
        )

    def _warn(
        self, summary: ChangeSummary, step: str, message: str, error: Optional[Exception] = None
    ) -> ChangeSummary:
        text = f"{message}: {error.message}" if isinstance(error, AzureError) else message
        logger.warning(text, step=step, outcome="warning")
        return summary.with_warning(text)

    async def run(self, request: ProvisioningRequest) -> ChangeSummary:
        """Run every step in order and return the final summary."""
        logger.info(
            "Provisioning started",
            customer=request.customer_prefix,
            subscription=mask_identifier(request.subscription_id),
            region=request.region,
        )
        summary = ChangeSummary()
        summary = self.ensure_resource_group(request, summary)
        summary = await self.ensure_managed_identity(request, summary)
        summary = self.ensure_role_assignments(request, summary)
        summary = await self.ensure_application_and_service_principal(request, summary)
        summary = await self.issue_secret(summary)
        summary = await self.ensure_graph_permissions(summary)
        summary = await self.ensure_ownership(summary)
        logger.info(
            "Provisioning finished",
            created=summary.creation_count(),
            warnings=len(summary.warnings),
        )
        return summary

    # ------------------------------------------------------------------
    # Resource group
    # ------------------------------------------------------------------

    def ensure_resource_group(
        self, request: ProvisioningRequest, summary: ChangeSummary
    ) -> ChangeSummary:
        name = request.resource_group_name
        store = self.session.resource_groups

        location = store.get_resource_group(name)
        if location is None:
            try:
                store.create_resource_group(name, request.region)
            except ResourceConflictError:
                location = store.get_resource_group(name)
            else:
                logger.info("Resource group created", step="resource_group", resource=name, outcome="created")
                return summary.update(resource_group_created=True)

        logger.info("Resource group found", step="resource_group", resource=name, outcome="found")
        summary = summary.update(resource_group_found=True)
        if location and location.replace(" ", "").lower() != request.region:
            summary = self._warn(
                summary,
                "resource_group",
                f"Resource group {name} is in {location}, not {request.region}; "
                f"new resources are still created in {request.region}",
            )
        return summary

    # ------------------------------------------------------------------
    # Managed identity
    # ------------------------------------------------------------------

    async def ensure_managed_identity(
        self, request: ProvisioningRequest, summary: ChangeSummary
    ) -> ChangeSummary:
        name = request.identity_name
        resource_group = request.resource_group_name
        store = self.session.identities

        identity = store.get_identity(resource_group, name)
        created = False
        if identity is None:
            try:
                identity = store.create_identity(resource_group, name, request.region)
                created = True
            except ResourceConflictError:
                identity = store.get_identity(resource_group, name)
                if identity is None:
                    raise

        principal_id = identity.principal_id
        await self._wait_for(
            lambda: self.session.directory.get_service_principal(principal_id),
            f"service principal of managed identity {name}",
        )

        if created:
            logger.info("Managed identity created", step="managed_identity", resource=name, outcome="created")
            return summary.update(umi_created=True, identity=identity)
        logger.info("Managed identity found", step="managed_identity", resource=name, outcome="found")
        return summary.update(umi_found=True, identity=identity)

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def ensure_role_assignments(
        self, request: ProvisioningRequest, summary: ChangeSummary
    ) -> ChangeSummary:
        identity = self._require_identity(summary)
        scope = request.subscription_scope
        store = self.session.role_assignments

        try:
            existing = {
                role_guid(ra.role_definition_id)
                for ra in store.list_role_assignments(scope, identity.principal_id)
            }
        except AzureError as e:
            # Nothing is submitted without the current assignment list
            return self._warn(
                summary, "role_assignment", f"Could not read role assignments at {scope}", e
            )

        created = list(summary.role_assignments)
        already = list(summary.roles_already_assigned)
        for requirement in REQUIRED_IDENTITY_ROLES:
            if role_guid(requirement.role_definition_id) in existing:
                logger.info("Role already assigned", step="role_assignment", resource=requirement.name, outcome="found")
                already.append(requirement.name)
                continue
            try:
                assignment = store.create_role_assignment(
                    scope, identity.principal_id, requirement.role_definition_id
                )
            except AzureError as e:
                summary = self._warn(
                    summary, "role_assignment", f"Could not assign {requirement.name} at {scope}", e
                )
                continue
            if assignment is None:
                logger.info("Role already assigned", step="role_assignment", resource=requirement.name, outcome="found")
                already.append(requirement.name)
            else:
                logger.info("Role assigned", step="role_assignment", resource=requirement.name, outcome="created")
                created.append(requirement.name)

        return summary.update(
            role_assignments=tuple(created), roles_already_assigned=tuple(already)
        )

    # ------------------------------------------------------------------
    # Application registration and service principal
    # ------------------------------------------------------------------

    async def ensure_application_and_service_principal(
        self, request: ProvisioningRequest, summary: ChangeSummary
    ) -> ChangeSummary:
        directory = self.session.directory
        display_name = request.application_display_name

        application = await directory.find_application(display_name)
        if application is None:
            application = await directory.create_application(display_name)
            logger.info("Application created", step="application", resource=display_name, outcome="created")
            summary = summary.update(application_created=True, application=application)
        else:
            logger.info("Application found", step="application", resource=display_name, outcome="found")
            summary = summary.update(application_found=True, application=application)

        service_principal = await directory.find_service_principal_by_app_id(application.app_id)
        if service_principal is not None:
            logger.info("Service principal found", step="service_principal", resource=application.app_id, outcome="found")
            return summary.update(
                service_principal_found=True, service_principal=service_principal
            )

        app_id = application.app_id
        service_principal = await directory.create_service_principal(app_id)
        if service_principal is None:
            # Another run created it between the lookup and the create
            service_principal = await self._wait_for(
                lambda: directory.find_service_principal_by_app_id(app_id),
                f"service principal of application {display_name}",
            )
            logger.info("Service principal found", step="service_principal", resource=app_id, outcome="found")
            return summary.update(
                service_principal_found=True, service_principal=service_principal
            )

        object_id = service_principal.object_id
        await self._wait_for(
            lambda: directory.get_service_principal(object_id),
            f"service principal of application {display_name}",
        )
        logger.info("Service principal created", step="service_principal", resource=application.app_id, outcome="created")
        return summary.update(
            service_principal_created=True, service_principal=service_principal
        )

    # ------------------------------------------------------------------
    # Client secret
    # ------------------------------------------------------------------

    async def issue_secret(self, summary: ChangeSummary) -> ChangeSummary:
        application = summary.application
        if application is None:
            raise RuntimeError("Application must be ensured before issuing a secret")

        secret_config = self.config.secret
        end_date_time = self._now() + timedelta(days=secret_config.lifetime_days)
        secret = await self.session.directory.add_password(
            application.object_id, secret_config.display_name, end_date_time
        )
        logger.info(
            "Client secret issued",
            step="secret",
            resource=application.display_name,
            outcome="created",
            expires=end_date_time.isoformat(),
        )
        return summary.update(secret_created=True, secret=secret)

    # ------------------------------------------------------------------
    # Microsoft Graph application permissions
    # ------------------------------------------------------------------

    async def ensure_graph_permissions(self, summary: ChangeSummary) -> ChangeSummary:
        identity = self._require_identity(summary)
        directory = self.session.directory

        try:
            graph_sp = await directory.find_service_principal_by_app_id(MICROSOFT_GRAPH_APP_ID)
            if graph_sp is None:
                return self._warn(
                    summary, "graph_permission", "Microsoft Graph service principal not found in tenant"
                )
            role_ids: Dict[str, str] = {
                role.value: role.id
                for role in await directory.list_app_roles(graph_sp.object_id)
                if role.is_enabled and "Application" in role.allowed_member_types
            }
            existing = {
                grant.key() for grant in await directory.list_app_role_grants(identity.principal_id)
            }
        except AzureError as e:
            return self._warn(summary, "graph_permission", "Could not read Microsoft Graph permissions", e)

        granted = list(summary.graph_permissions)
        already = list(summary.graph_permissions_already_assigned)
        for permission in INGESTION_GRAPH_PERMISSIONS:
            app_role_id = role_ids.get(permission)
            if app_role_id is None:
                summary = self._warn(
                    summary, "graph_permission", f"Unknown Microsoft Graph permission {permission}"
                )
                continue
            if (app_role_id.lower(), graph_sp.object_id.lower()) in existing:
                logger.info("Permission already granted", step="graph_permission", resource=permission, outcome="found")
                already.append(permission)
                continue
            try:
                grant = await directory.grant_app_role(
                    identity.principal_id, graph_sp.object_id, app_role_id
                )
            except AzureError as e:
                summary = self._warn(summary, "graph_permission", f"Could not grant {permission}", e)
                continue
            if grant is None:
                logger.info("Permission already granted", step="graph_permission", resource=permission, outcome="found")
                already.append(permission)
            else:
                logger.info("Permission granted", step="graph_permission", resource=permission, outcome="created")
                granted.append(permission)

        return summary.update(
            graph_permissions=tuple(granted),
            graph_permissions_already_assigned=tuple(already),
        )

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def ensure_ownership(self, summary: ChangeSummary) -> ChangeSummary:
        identity = self._require_identity(summary)
        application = summary.application
        if application is None:
            raise RuntimeError("Application must be ensured before ownership")
        directory = self.session.directory
        principal_id = identity.principal_id.lower()

        try:
            owners = {owner.lower() for owner in await directory.list_application_owners(application.object_id)}
            if principal_id in owners:
                added = False
            else:
                added = await directory.add_application_owner(
                    application.object_id, identity.principal_id
                )
        except AzureError as e:
            return self._warn(
                summary, "ownership", f"Could not make {identity.name} an owner of {application.display_name}", e
            )

        if added:
            logger.info("Owner added", step="ownership", resource=application.display_name, outcome="created")
            return summary.update(ownership_added=True)
        logger.info("Owner already present", step="ownership", resource=application.display_name, outcome="found")
        return summary.update(ownership_already_present=True)

    @staticmethod
    def _require_identity(summary: ChangeSummary) -> ManagedIdentity:
        if summary.identity is None:
            raise RuntimeError("Managed identity must be ensured first")
        return summary.identity


async def provision(
    customer_prefix: str,
    subscription_id: str,
    region: str,
    skip_module_install: bool = False,
    *,
    config: Optional[OnboardingConfig] = None,
    session: Optional["AzureSession"] = None,
    sleep: Sleep = asyncio.sleep,
) -> ChangeSummary:
    """
    Provision the Sentinel ingestion identity in a customer subscription.

    Args:
        customer_prefix: Short customer name, at least 3 characters
        subscription_id: Target subscription GUID
        region: Azure region for the resource group and identity
        skip_module_install: Do not check or install the Azure SDK modules
        config: Configuration; read from the environment when omitted
        session: Pre-built Azure session; established from config when omitted
        sleep: Awaitable sleep used between polls

    Returns:
        ChangeSummary of what was created and what was already present

    Raises:
        ConfigurationError: Invalid input, raised before any external call
        ProvisioningTimeoutError: A directory object never became visible
        AzureError: A critical step failed
    """
    request = ProvisioningRequest.create(
        customer_prefix, subscription_id, region, skip_module_install
    )
    if config is None:
        config = create_config_from_env()

    ensure_sdk_modules(
        skip=request.skip_module_install,
        timeout=config.azure.module_install_timeout,
    )

    if session is None:
        # SDK imports happen here, after the module check
        from .credential_provider import establish_session

        session = establish_session(request, config.azure)

    orchestrator = ProvisioningOrchestrator(session, config, sleep=sleep)
    return await orchestrator.run(request)
