from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from msgraph.generated.models.o_data_errors.main_error import MainError
from msgraph.generated.models.o_data_errors.o_data_error import ODataError

from conftest import ACME_SUBSCRIPTION, GRAPH_SP_OBJECT_ID
from lighthouse_onboarding.constants import BUILTIN_ROLE_DEFINITIONS, MICROSOFT_GRAPH_APP_ID
from lighthouse_onboarding.credential_provider import AzureSession
from lighthouse_onboarding.exceptions import (
    AzurePermissionError,
    ConfigurationError,
    ProvisioningTimeoutError,
    ResourceConflictError,
)
from lighthouse_onboarding.models import (
    AppRoleGrant,
    ChangeSummary,
    ProvisioningRequest,
    RoleAssignment,
    ServicePrincipal,
)
from lighthouse_onboarding.orchestrator import ProvisioningOrchestrator, provision
from lighthouse_onboarding.services.graph_service import GraphDirectoryService

ALL_ROLES = [
    "Contributor",
    "Monitoring Metrics Publisher",
    "Storage Blob Data Contributor",
    "Microsoft Sentinel Contributor",
]
GRAPH_PERMISSIONS = ["Application.ReadWrite.OwnedBy", "Directory.Read.All"]
SCOPE = f"/subscriptions/{ACME_SUBSCRIPTION}"


async def run_acme(session, config, sleep, **kwargs):
    return await provision(
        "ACME",
        ACME_SUBSCRIPTION,
        "eastus",
        skip_module_install=True,
        config=config,
        session=session,
        sleep=sleep,
        **kwargs,
    )


def graph_error(status, message):
    error = ODataError()
    error.response_status_code = status
    error.error = MainError(code="Authorization_RequestDenied", message=message)
    return error


# ============================================================================
# End-to-end scenarios
# ============================================================================


@pytest.mark.asyncio
async def test_first_run_creates_everything(cloud, session, config, fake_sleep):
    summary = await run_acme(session, config, fake_sleep)

    assert summary.resource_group_created is True
    assert summary.resource_group_found is False
    assert summary.umi_created is True
    assert list(summary.role_assignments) == ALL_ROLES
    assert summary.roles_already_assigned == ()
    assert summary.application_created is True
    assert summary.service_principal_created is True
    assert summary.secret_created is True
    assert list(summary.graph_permissions) == GRAPH_PERMISSIONS
    assert summary.ownership_added is True
    assert summary.warnings == ()

    assert cloud.resource_groups == {"rg-acme-sentinel-ingestion": "eastus"}
    assert ("rg-acme-sentinel-ingestion", "umi-acme-sentinel-ingestion") in cloud.identities
    assert [a.display_name for a in cloud.applications.values()] == ["ACME-Sentinel-Ingestion"]
    assert len(cloud.role_assignments) == 4
    assert len(cloud.grants) == 2
    assert all(g.resource_id == GRAPH_SP_OBJECT_ID for g in cloud.grants)


@pytest.mark.asyncio
async def test_second_run_finds_everything(cloud, session, config, fake_sleep):
    await run_acme(session, config, fake_sleep)
    summary = await run_acme(session, config, fake_sleep)

    assert summary.to_dict() == {
        "ResourceGroupCreated": False,
        "ResourceGroupFound": True,
        "UmiCreated": False,
        "UmiFound": True,
        "RoleAssignments": [],
        "RolesAlreadyAssigned": ALL_ROLES,
        "ApplicationCreated": False,
        "ApplicationFound": True,
        "ServicePrincipalCreated": False,
        "ServicePrincipalFound": True,
        "SecretCreated": True,
        "GraphPermissions": [],
        "GraphPermissionsAlreadyAssigned": GRAPH_PERMISSIONS,
        "OwnershipAdded": False,
        "OwnershipAlreadyPresent": True,
        "Warnings": [],
    }


@pytest.mark.asyncio
async def test_rerun_is_idempotent(cloud, session, config, fake_sleep):
    first = await run_acme(session, config, fake_sleep)
    state = (
        dict(cloud.resource_groups),
        dict(cloud.identities),
        list(cloud.role_assignments),
        dict(cloud.applications),
        list(cloud.grants),
        {k: list(v) for k, v in cloud.owners.items()},
    )

    second = await run_acme(session, config, fake_sleep)

    assert first.creation_count() == 11
    assert second.creation_count() == 0
    assert second.secret_created is True
    assert state == (
        cloud.resource_groups,
        cloud.identities,
        cloud.role_assignments,
        cloud.applications,
        cloud.grants,
        cloud.owners,
    )
    # Only the secret is issued again
    assert len(cloud.secrets) == 2
    assert second.secret.secret_text != first.secret.secret_text


# ============================================================================
# Input validation
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("prefix", ["", "A", "AC", "  AC  "])
async def test_short_prefix_rejected_before_any_call(prefix, cloud, session, config, fake_sleep):
    with pytest.raises(ConfigurationError):
        await provision(
            prefix, ACME_SUBSCRIPTION, "eastus", True, config=config, session=session, sleep=fake_sleep
        )
    assert cloud.external_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "subscription_id",
    ["", "1111", "11111111-1111-1111-1111-11111111111", "not-a-guid-but-still-thirty-six-chars"],
)
async def test_malformed_subscription_rejected_before_any_call(
    subscription_id, cloud, session, config, fake_sleep
):
    with pytest.raises(ConfigurationError):
        await provision(
            "ACME", subscription_id, "eastus", True, config=config, session=session, sleep=fake_sleep
        )
    assert cloud.external_calls == 0


@pytest.mark.asyncio
async def test_unsupported_region_rejected(cloud, session, config, fake_sleep):
    with pytest.raises(ConfigurationError, match="Unsupported region"):
        await provision(
            "ACME", ACME_SUBSCRIPTION, "moon-1", True, config=config, session=session, sleep=fake_sleep
        )
    assert cloud.external_calls == 0


@pytest.mark.asyncio
async def test_module_check_runs_unless_skipped(monkeypatch, session, config, fake_sleep):
    seen = []
    monkeypatch.setattr(
        "lighthouse_onboarding.orchestrator.ensure_sdk_modules",
        lambda skip, timeout: seen.append((skip, timeout)) or [],
    )

    await provision("ACME", ACME_SUBSCRIPTION, "eastus", False, config=config, session=session, sleep=fake_sleep)
    await provision("ACME", ACME_SUBSCRIPTION, "eastus", True, config=config, session=session, sleep=fake_sleep)

    assert seen == [(False, 300), (True, 300)]


# ============================================================================
# Polling
# ============================================================================


@pytest.mark.asyncio
async def test_identity_never_visible_times_out_and_stops(cloud, session, config, sleeps, fake_sleep):
    cloud.hidden_on_create.add("identity")

    with pytest.raises(ProvisioningTimeoutError) as exc_info:
        await run_acme(session, config, fake_sleep)

    assert isinstance(exc_info.value, TimeoutError)
    assert "umi-acme-sentinel-ingestion" in str(exc_info.value)
    assert cloud.sp_lookups == 10
    assert sleeps == [10] * 9
    assert cloud.mutations("create_role_assignment") == []
    assert cloud.mutations("find_application") == []
    assert cloud.secrets == []


@pytest.mark.asyncio
async def test_service_principal_never_visible_times_out_before_secret(cloud, session, config, fake_sleep):
    cloud.hidden_on_create.add("service_principal")

    with pytest.raises(ProvisioningTimeoutError, match="ACME-Sentinel-Ingestion"):
        await run_acme(session, config, fake_sleep)

    assert len(cloud.mutations("create_service_principal")) == 1
    assert cloud.mutations("add_password") == []
    assert cloud.mutations("grant_app_role") == []


@pytest.mark.asyncio
async def test_replication_lag_is_waited_out(cloud, session, config, sleeps, fake_sleep):
    cloud.lag_on_create = {"identity": 3, "service_principal": 2}

    summary = await run_acme(session, config, fake_sleep)

    assert summary.umi_created and summary.service_principal_created
    assert sleeps == [10] * 5


@pytest.mark.asyncio
async def test_polling_settings_come_from_config(cloud, session, config, sleeps, fake_sleep):
    config.polling.interval_seconds = 2
    config.polling.max_attempts = 3
    cloud.hidden_on_create.add("identity")

    with pytest.raises(ProvisioningTimeoutError):
        await run_acme(session, config, fake_sleep)

    assert sleeps == [2, 2]


# ============================================================================
# No re-submission of existing grants
# ============================================================================


@pytest.mark.asyncio
async def test_existing_role_assignment_not_resubmitted(cloud, session, config, fake_sleep):
    identity = cloud.create_identity("rg-acme-sentinel-ingestion", "umi-acme-sentinel-ingestion", "eastus")
    cloud.resource_groups["rg-acme-sentinel-ingestion"] = "eastus"
    contributor = BUILTIN_ROLE_DEFINITIONS["Contributor"]
    cloud.role_assignments.append(
        RoleAssignment(
            principal_id=identity.principal_id,
            role_definition_id=f"{SCOPE}/providers/Microsoft.Authorization/roleDefinitions/{contributor}",
            scope=SCOPE,
        )
    )
    cloud.calls.clear()

    summary = await run_acme(session, config, fake_sleep)

    submitted = [call[3] for call in cloud.mutations("create_role_assignment")]
    assert contributor not in submitted
    assert len(submitted) == 3
    assert summary.roles_already_assigned == ("Contributor",)
    assert summary.umi_found is True


@pytest.mark.asyncio
async def test_assignment_at_other_scope_does_not_count(cloud, session, config, fake_sleep):
    identity = cloud.create_identity("rg-acme-sentinel-ingestion", "umi-acme-sentinel-ingestion", "eastus")
    cloud.role_assignments.append(
        RoleAssignment(
            principal_id=identity.principal_id,
            role_definition_id=BUILTIN_ROLE_DEFINITIONS["Contributor"],
            scope=f"{SCOPE}/resourceGroups/rg-acme-sentinel-ingestion",
        )
    )

    summary = await run_acme(session, config, fake_sleep)

    assert "Contributor" in summary.role_assignments


@pytest.mark.asyncio
async def test_existing_graph_grant_not_resubmitted(cloud, session, config, fake_sleep):
    identity = cloud.create_identity("rg-acme-sentinel-ingestion", "umi-acme-sentinel-ingestion", "eastus")
    directory_read = "7ab1d382-f21e-4acd-a863-ba3e13f7da61"
    cloud.grants.append(
        AppRoleGrant(
            principal_id=identity.principal_id,
            resource_id=GRAPH_SP_OBJECT_ID.upper(),
            app_role_id=directory_read.upper(),
        )
    )

    summary = await run_acme(session, config, fake_sleep)

    granted_roles = [call[3] for call in cloud.mutations("grant_app_role")]
    assert directory_read not in granted_roles
    assert summary.graph_permissions == ("Application.ReadWrite.OwnedBy",)
    assert summary.graph_permissions_already_assigned == ("Directory.Read.All",)


# ============================================================================
# Non-fatal and fatal failures
# ============================================================================


@pytest.mark.asyncio
async def test_role_assignment_permission_error_is_warning(cloud, session, config, fake_sleep, permission_denied):
    contributor = BUILTIN_ROLE_DEFINITIONS["Contributor"]
    cloud.failures[f"create_role_assignment:{contributor}"] = permission_denied

    summary = await run_acme(session, config, fake_sleep)

    assert "Contributor" not in summary.role_assignments
    assert len(summary.role_assignments) == 3
    assert len(summary.warnings) == 1
    assert "Could not assign Contributor" in summary.warnings[0]
    # The run carried on to the end
    assert summary.ownership_added is True


@pytest.mark.asyncio
async def test_role_assignment_listing_failure_is_warning(cloud, session, config, fake_sleep, permission_denied):
    cloud.failures["list_role_assignments"] = permission_denied

    summary = await run_acme(session, config, fake_sleep)

    assert summary.role_assignments == ()
    assert summary.roles_already_assigned == ()
    assert summary.warnings == (
        f"Could not read role assignments at {SCOPE}: Permission denied: AuthorizationFailed",
    )
    assert cloud.mutations("create_role_assignment") == []
    assert summary.secret_created is True
    assert summary.ownership_added is True


@pytest.mark.asyncio
async def test_graph_grant_failure_is_warning(cloud, session, config, fake_sleep, permission_denied):
    cloud.failures["grant_app_role:18a4783c-866b-4cc7-a460-3d5e5662c884"] = permission_denied

    summary = await run_acme(session, config, fake_sleep)

    assert summary.graph_permissions == ("Directory.Read.All",)
    assert any("Application.ReadWrite.OwnedBy" in w for w in summary.warnings)


@pytest.mark.asyncio
async def test_unknown_graph_permission_is_warning(cloud, session, config, fake_sleep):
    cloud.app_roles[GRAPH_SP_OBJECT_ID] = [
        r for r in cloud.app_roles[GRAPH_SP_OBJECT_ID] if r.value != "Directory.Read.All"
    ]

    summary = await run_acme(session, config, fake_sleep)

    assert summary.graph_permissions == ("Application.ReadWrite.OwnedBy",)
    assert summary.warnings == ("Unknown Microsoft Graph permission Directory.Read.All",)


@pytest.mark.asyncio
async def test_ownership_failure_is_warning(cloud, session, config, fake_sleep, permission_denied):
    cloud.failures["add_application_owner"] = permission_denied

    summary = await run_acme(session, config, fake_sleep)

    assert summary.ownership_added is False
    assert summary.ownership_already_present is False
    assert len(summary.warnings) == 1


def graph_backed_session(cloud, graph_client):
    return AzureSession(
        resource_groups=cloud,
        identities=cloud,
        role_assignments=cloud,
        directory=GraphDirectoryService(client=graph_client),
    )


@pytest.mark.asyncio
async def test_graph_owner_listing_denied_is_warning(cloud, session, config, fake_sleep):
    summary = await run_acme(session, config, fake_sleep)
    graph_client = MagicMock()
    owners = graph_client.applications.by_application_id.return_value.owners
    owners.get = AsyncMock(side_effect=graph_error(403, "Authorization_RequestDenied"))
    orchestrator = ProvisioningOrchestrator(
        graph_backed_session(cloud, graph_client), config, sleep=fake_sleep
    )

    after = await orchestrator.ensure_ownership(summary.update(ownership_added=False))

    assert after.ownership_added is False
    assert after.warnings == (
        "Could not make umi-acme-sentinel-ingestion an owner of ACME-Sentinel-Ingestion: "
        "Permission denied: Authorization_RequestDenied",
    )
    owners.ref.post.assert_not_called()


@pytest.mark.asyncio
async def test_graph_secret_denied_propagates(cloud, session, config, fake_sleep):
    summary = await run_acme(session, config, fake_sleep)
    graph_client = MagicMock()
    add_password = graph_client.applications.by_application_id.return_value.add_password
    add_password.post = AsyncMock(side_effect=graph_error(403, "Authorization_RequestDenied"))
    orchestrator = ProvisioningOrchestrator(
        graph_backed_session(cloud, graph_client), config, sleep=fake_sleep
    )

    with pytest.raises(AzurePermissionError) as exc_info:
        await orchestrator.issue_secret(summary)

    assert exc_info.value.operation == "add application password"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "operation", ["create_resource_group", "create_identity", "create_application", "add_password"]
)
async def test_permission_error_on_critical_step_propagates(
    operation, cloud, session, config, fake_sleep, permission_denied
):
    cloud.failures[operation] = permission_denied

    with pytest.raises(AzurePermissionError) as exc_info:
        await run_acme(session, config, fake_sleep)

    assert isinstance(exc_info.value, PermissionError)


# ============================================================================
# Conflicts count as success
# ============================================================================


@pytest.mark.asyncio
async def test_resource_group_conflict_counts_as_found(cloud, session, config, fake_sleep):
    def racing_create(name, region):
        cloud.resource_groups[name] = region
        raise ResourceConflictError("Already exists", status_code=409)

    cloud.create_resource_group = racing_create

    summary = await run_acme(session, config, fake_sleep)

    assert summary.resource_group_found is True
    assert summary.resource_group_created is False


@pytest.mark.asyncio
async def test_identity_conflict_reuses_existing(cloud, session, config, fake_sleep):
    original_create = cloud.create_identity

    def racing_create(resource_group, name, region):
        original_create(resource_group, name, region)
        raise ResourceConflictError("Already exists", status_code=409)

    cloud.create_identity = racing_create

    summary = await run_acme(session, config, fake_sleep)

    assert summary.umi_found is True
    assert summary.identity is not None


@pytest.mark.asyncio
async def test_service_principal_created_by_other_run_counts_as_found(cloud, session, config, fake_sleep):
    original_find = cloud.find_service_principal_by_app_id
    raced = []

    async def racing_find(app_id):
        if app_id != MICROSOFT_GRAPH_APP_ID and not raced:
            # The other run's create lands right after this lookup
            raced.append(app_id)
            app = next(a for a in cloud.applications.values() if a.app_id == app_id)
            other = ServicePrincipal(display_name=app.display_name, app_id=app_id, object_id="sp-other-run")
            cloud.service_principals[other.object_id] = other
            return None
        return await original_find(app_id)

    cloud.find_service_principal_by_app_id = racing_find

    summary = await run_acme(session, config, fake_sleep)

    assert summary.service_principal_found is True
    assert summary.service_principal_created is False
    assert summary.service_principal.object_id == "sp-other-run"
    assert len(cloud.mutations("create_service_principal")) == 1
    assert summary.secret_created is True
    assert summary.warnings == ()


@pytest.mark.asyncio
async def test_owner_add_conflict_counts_as_present(cloud, session, config, fake_sleep):
    async def already_there(application_object_id, principal_id):
        return False

    cloud.add_application_owner = already_there

    summary = await run_acme(session, config, fake_sleep)

    assert summary.ownership_added is False
    assert summary.ownership_already_present is True


@pytest.mark.asyncio
async def test_resource_group_in_other_region_warns(cloud, session, config, fake_sleep):
    cloud.resource_groups["rg-acme-sentinel-ingestion"] = "West Europe"

    summary = await run_acme(session, config, fake_sleep)

    assert summary.resource_group_found is True
    assert "West Europe" in summary.warnings[0]


# ============================================================================
# Individual steps
# ============================================================================


@pytest.mark.asyncio
async def test_secret_expires_after_configured_lifetime(cloud, session, config, fake_sleep):
    fixed_now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    config.secret.lifetime_days = 7
    orchestrator = ProvisioningOrchestrator(session, config, sleep=fake_sleep, now=lambda: fixed_now)
    request = ProvisioningRequest.create("ACME", ACME_SUBSCRIPTION, "eastus")
    app = await cloud.create_application(request.application_display_name)

    summary = await orchestrator.issue_secret(ChangeSummary(application=app))

    assert summary.secret_created is True
    assert summary.secret.end_date_time == fixed_now + timedelta(days=7)
    assert cloud.mutations("add_password") == [("add_password", app.object_id, "bootstrap")]


@pytest.mark.asyncio
async def test_steps_return_new_summaries(session, config, fake_sleep):
    orchestrator = ProvisioningOrchestrator(session, config, sleep=fake_sleep)
    request = ProvisioningRequest.create("ACME", ACME_SUBSCRIPTION, "eastus")
    start = ChangeSummary()

    after = orchestrator.ensure_resource_group(request, start)

    assert start == ChangeSummary()
    assert after is not start
    assert after.resource_group_created is True


@pytest.mark.asyncio
async def test_identity_required_before_role_assignments(session, config, fake_sleep):
    orchestrator = ProvisioningOrchestrator(session, config, sleep=fake_sleep)
    request = ProvisioningRequest.create("ACME", ACME_SUBSCRIPTION, "eastus")

    with pytest.raises(RuntimeError):
        orchestrator.ensure_role_assignments(request, ChangeSummary())
