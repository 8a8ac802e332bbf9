import uuid
from typing import Dict, List, Optional, Set, Tuple

import pytest

from lighthouse_onboarding.config_manager import (
    AzureConfig,
    LoggingConfig,
    OnboardingConfig,
    PollingConfig,
    SecretConfig,
)
from lighthouse_onboarding.constants import MICROSOFT_GRAPH_APP_ID
from lighthouse_onboarding.credential_provider import AzureSession
from lighthouse_onboarding.exceptions import AzurePermissionError
from lighthouse_onboarding.models import (
    AppRole,
    AppRoleGrant,
    ApplicationRegistration,
    IssuedSecret,
    ManagedIdentity,
    RoleAssignment,
    ServicePrincipal,
    role_guid,
)

ACME_SUBSCRIPTION = "11111111-1111-1111-1111-111111111111"

GRAPH_SP_OBJECT_ID = "99999999-0000-0000-0000-000000000001"
GRAPH_APP_ROLES = [
    AppRole(id="18a4783c-866b-4cc7-a460-3d5e5662c884", value="Application.ReadWrite.OwnedBy"),
    AppRole(id="7ab1d382-f21e-4acd-a863-ba3e13f7da61", value="Directory.Read.All"),
    AppRole(id="df021288-bdef-4463-88db-98f22de89214", value="User.Read.All"),
    AppRole(
        id="5b567255-7703-4780-807c-7be8301ae99b",
        value="Group.Read.All",
        is_enabled=False,
    ),
]


# ============================================================================
# In-memory Azure
# ============================================================================


class FakeCloud:
    """In-memory Azure subscription and directory.

    Implements every capability protocol. Mutating calls are appended to
    ``calls`` so tests can assert what was (and was not) submitted.
    """

    def __init__(self) -> None:
        self.resource_groups: Dict[str, str] = {}
        self.identities: Dict[Tuple[str, str], ManagedIdentity] = {}
        self.role_assignments: List[RoleAssignment] = []
        self.role_definitions: Set[str] = set()
        self.applications: Dict[str, ApplicationRegistration] = {}
        self.service_principals: Dict[str, ServicePrincipal] = {
            GRAPH_SP_OBJECT_ID: ServicePrincipal(
                display_name="Microsoft Graph",
                app_id=MICROSOFT_GRAPH_APP_ID,
                object_id=GRAPH_SP_OBJECT_ID,
            )
        }
        self.app_roles: Dict[str, List[AppRole]] = {GRAPH_SP_OBJECT_ID: list(GRAPH_APP_ROLES)}
        self.grants: List[AppRoleGrant] = []
        self.owners: Dict[str, List[str]] = {}
        self.secrets: List[IssuedSecret] = []
        self.calls: List[Tuple] = []

        # Directory replication lag: object id -> lookups that still return None
        self.replication_lag: Dict[str, int] = {}
        self.never_visible: Set[str] = set()
        # Lag applied to objects created later: "identity" / "service_principal" -> lookups
        self.lag_on_create: Dict[str, int] = {}
        self.hidden_on_create: Set[str] = set()
        # Failure injection: operation name -> exception
        self.failures: Dict[str, Exception] = {}
        self.sp_lookups = 0

    def _replicate(self, kind: str, object_id: str) -> None:
        if kind in self.hidden_on_create:
            self.never_visible.add(object_id)
        elif self.lag_on_create.get(kind):
            self.replication_lag[object_id] = self.lag_on_create[kind]

    def _fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    @property
    def external_calls(self) -> int:
        return len(self.calls) + self.sp_lookups

    # Resource groups ----------------------------------------------------

    def get_resource_group(self, name: str) -> Optional[str]:
        self.calls.append(("get_resource_group", name))
        return self.resource_groups.get(name)

    def create_resource_group(self, name: str, region: str) -> str:
        self._fail("create_resource_group")
        self.calls.append(("create_resource_group", name, region))
        self.resource_groups[name] = region
        return region

    # Managed identities -------------------------------------------------

    def get_identity(self, resource_group: str, name: str) -> Optional[ManagedIdentity]:
        self.calls.append(("get_identity", resource_group, name))
        return self.identities.get((resource_group, name))

    def create_identity(self, resource_group: str, name: str, region: str) -> ManagedIdentity:
        self._fail("create_identity")
        self.calls.append(("create_identity", resource_group, name, region))
        principal_id = str(uuid.uuid4())
        identity = ManagedIdentity(
            name=name,
            resource_group=resource_group,
            region=region,
            principal_id=principal_id,
            client_id=str(uuid.uuid4()),
            resource_id=f"/subscriptions/{ACME_SUBSCRIPTION}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.ManagedIdentity/userAssignedIdentities/{name}",
        )
        self.identities[(resource_group, name)] = identity
        self.service_principals[principal_id] = ServicePrincipal(
            display_name=name, app_id=identity.client_id, object_id=principal_id
        )
        self._replicate("identity", principal_id)
        return identity

    # Role assignments ---------------------------------------------------

    def list_role_assignments(self, scope: str, principal_id: str) -> List[RoleAssignment]:
        self._fail("list_role_assignments")
        self.calls.append(("list_role_assignments", scope, principal_id))
        return [
            ra
            for ra in self.role_assignments
            if ra.principal_id == principal_id and ra.scope == scope
        ]

    def create_role_assignment(
        self, scope: str, principal_id: str, role_definition_id: str
    ) -> Optional[RoleAssignment]:
        self.calls.append(("create_role_assignment", scope, principal_id, role_guid(role_definition_id)))
        failure = self.failures.get(f"create_role_assignment:{role_guid(role_definition_id)}")
        if failure:
            raise failure
        assignment = RoleAssignment(
            principal_id=principal_id,
            role_definition_id=f"{scope}/providers/Microsoft.Authorization/roleDefinitions/{role_definition_id}",
            scope=scope,
            assignment_id=str(uuid.uuid4()),
        )
        if any(ra.key() == assignment.key() for ra in self.role_assignments):
            return None
        self.role_assignments.append(assignment)
        return assignment

    def role_definition_exists(self, scope: str, role_definition_id: str) -> bool:
        return role_guid(role_definition_id) in self.role_definitions

    # Directory ----------------------------------------------------------

    async def get_service_principal(self, object_id: str) -> Optional[ServicePrincipal]:
        self.sp_lookups += 1
        if object_id in self.never_visible:
            return None
        if self.replication_lag.get(object_id, 0) > 0:
            self.replication_lag[object_id] -= 1
            return None
        return self.service_principals.get(object_id)

    async def find_application(self, display_name: str) -> Optional[ApplicationRegistration]:
        self.calls.append(("find_application", display_name))
        for app in self.applications.values():
            if app.display_name == display_name:
                return app
        return None

    async def create_application(self, display_name: str) -> ApplicationRegistration:
        self._fail("create_application")
        self.calls.append(("create_application", display_name))
        app = ApplicationRegistration(
            display_name=display_name, app_id=str(uuid.uuid4()), object_id=str(uuid.uuid4())
        )
        self.applications[app.object_id] = app
        self.owners[app.object_id] = []
        return app

    async def find_service_principal_by_app_id(self, app_id: str) -> Optional[ServicePrincipal]:
        self.calls.append(("find_service_principal_by_app_id", app_id))
        for sp in self.service_principals.values():
            if sp.app_id == app_id:
                return sp
        return None

    async def create_service_principal(self, app_id: str) -> Optional[ServicePrincipal]:
        self.calls.append(("create_service_principal", app_id))
        if any(sp.app_id == app_id for sp in self.service_principals.values()):
            return None
        app = next(a for a in self.applications.values() if a.app_id == app_id)
        sp = ServicePrincipal(display_name=app.display_name, app_id=app_id, object_id=str(uuid.uuid4()))
        self.service_principals[sp.object_id] = sp
        self._replicate("service_principal", sp.object_id)
        return sp

    async def add_password(self, application_object_id, display_name, end_date_time) -> IssuedSecret:
        self._fail("add_password")
        self.calls.append(("add_password", application_object_id, display_name))
        secret = IssuedSecret(
            key_id=str(uuid.uuid4()),
            secret_text=f"s3cret~{len(self.secrets)}",
            display_name=display_name,
            end_date_time=end_date_time,
        )
        self.secrets.append(secret)
        return secret

    async def list_app_roles(self, resource_sp_id: str) -> List[AppRole]:
        self.calls.append(("list_app_roles", resource_sp_id))
        return list(self.app_roles.get(resource_sp_id, []))

    async def list_app_role_grants(self, principal_id: str) -> List[AppRoleGrant]:
        self.calls.append(("list_app_role_grants", principal_id))
        return [g for g in self.grants if g.principal_id == principal_id]

    async def grant_app_role(self, principal_id, resource_id, app_role_id) -> Optional[AppRoleGrant]:
        self.calls.append(("grant_app_role", principal_id, resource_id, app_role_id))
        failure = self.failures.get(f"grant_app_role:{app_role_id}")
        if failure:
            raise failure
        grant = AppRoleGrant(principal_id=principal_id, resource_id=resource_id, app_role_id=app_role_id)
        if grant in self.grants:
            return None
        self.grants.append(grant)
        return grant

    async def list_application_owners(self, application_object_id: str) -> List[str]:
        self.calls.append(("list_application_owners", application_object_id))
        return list(self.owners.get(application_object_id, []))

    async def add_application_owner(self, application_object_id, principal_id) -> bool:
        self._fail("add_application_owner")
        self.calls.append(("add_application_owner", application_object_id, principal_id))
        owners = self.owners.setdefault(application_object_id, [])
        if principal_id in owners:
            return False
        owners.append(principal_id)
        return True

    def mutations(self, operation: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == operation]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def session(cloud: FakeCloud) -> AzureSession:
    return AzureSession(
        resource_groups=cloud,
        identities=cloud,
        role_assignments=cloud,
        directory=cloud,
    )


@pytest.fixture
def config() -> OnboardingConfig:
    return OnboardingConfig(
        polling=PollingConfig(interval_seconds=10, max_attempts=10),
        secret=SecretConfig(lifetime_days=1, display_name="bootstrap"),
        azure=AzureConfig(tenant_id=None, authority_host=None, module_install_timeout=300),
        logging=LoggingConfig(
            level="INFO", format="%(levelname)s:%(message)s", file_output=None, json_output=False
        ),
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def permission_denied() -> AzurePermissionError:
    return AzurePermissionError("Permission denied: AuthorizationFailed", status_code=403)
