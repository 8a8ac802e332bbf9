"""
Microsoft Graph adapter.

Implements DirectoryService with the Microsoft Graph SDK. Every call maps
ODataError responses into the onboarding exception hierarchy: 404 becomes
None, "already exists" becomes a benign result, everything else is raised.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, List, Optional

from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.applications.applications_request_builder import (
    ApplicationsRequestBuilder,
)
from msgraph.generated.applications.item.add_password.add_password_post_request_body import (
    AddPasswordPostRequestBody,
)
from msgraph.generated.models.app_role_assignment import AppRoleAssignment
from msgraph.generated.models.application import Application
from msgraph.generated.models.o_data_errors.o_data_error import ODataError
from msgraph.generated.models.password_credential import PasswordCredential
from msgraph.generated.models.reference_create import ReferenceCreate
from msgraph.generated.models.service_principal import (
    ServicePrincipal as GraphServicePrincipal,
)
from msgraph.generated.service_principals.service_principals_request_builder import (
    ServicePrincipalsRequestBuilder,
)
from msgraph.graph_service_client import GraphServiceClient

from ..constants import GRAPH_DIRECTORY_OBJECTS_URL, GRAPH_SCOPE
from ..exceptions import AzureOperationError, is_conflict, is_not_found, wrap_azure_exception
from ..models import (
    AppRole,
    AppRoleGrant,
    ApplicationRegistration,
    IssuedSecret,
    ServicePrincipal,
)

logger = logging.getLogger(__name__)


def _odata_escape(value: str) -> str:
    return value.replace("'", "''")


class GraphDirectoryService:
    """
    Directory operations for the ingestion application and identity.
    Uses Microsoft Graph SDK with an azure-identity credential.
    """

    def __init__(
        self, credential: Any = None, client: Optional[GraphServiceClient] = None
    ) -> None:
        if client is None:
            if credential is None:
                raise ValueError("Either a credential or a GraphServiceClient is required")
            client = GraphServiceClient(credentials=credential, scopes=[GRAPH_SCOPE])
        self.client = client

    @staticmethod
    def _application_from_sdk(app: Application) -> ApplicationRegistration:
        return ApplicationRegistration(
            display_name=app.display_name or "",
            app_id=str(app.app_id),
            object_id=str(app.id),
        )

    @staticmethod
    def _service_principal_from_sdk(sp: GraphServicePrincipal) -> ServicePrincipal:
        return ServicePrincipal(
            display_name=sp.display_name or "",
            app_id=str(sp.app_id),
            object_id=str(sp.id),
        )

    # ------------------------------------------------------------------
    # Service principals
    # ------------------------------------------------------------------

    async def get_service_principal(self, object_id: str) -> Optional[ServicePrincipal]:
        try:
            sp = await self.client.service_principals.by_service_principal_id(
                object_id
            ).get()
        except ODataError as e:
            if is_not_found(e):
                return None
            raise wrap_azure_exception(
                e, operation="get service principal", context={"object_id": object_id}
            ) from e
        return self._service_principal_from_sdk(sp) if sp else None

    async def find_service_principal_by_app_id(
        self, app_id: str
    ) -> Optional[ServicePrincipal]:
        query_params = ServicePrincipalsRequestBuilder.ServicePrincipalsRequestBuilderGetQueryParameters(
            filter=f"appId eq '{_odata_escape(app_id)}'",
            select=["id", "appId", "displayName"],
        )
        request_config = RequestConfiguration(query_parameters=query_params)
        try:
            page = await self.client.service_principals.get(
                request_configuration=request_config
            )
        except ODataError as e:
            raise wrap_azure_exception(
                e, operation="find service principal", context={"app_id": app_id}
            ) from e
        if page and page.value:
            return self._service_principal_from_sdk(page.value[0])
        return None

    async def create_service_principal(self, app_id: str) -> Optional[ServicePrincipal]:
        """Create the service principal for an application.

        Returns None when one already exists for app_id.
        """
        try:
            sp = await self.client.service_principals.post(
                GraphServicePrincipal(app_id=app_id)
            )
        except ODataError as e:
            if is_conflict(e):
                logger.debug(f"Service principal for {app_id} already exists")
                return None
            raise wrap_azure_exception(
                e, operation="create service principal", context={"app_id": app_id}
            ) from e
        if sp is None:
            raise AzureOperationError(
                "Graph returned no service principal", operation="create service principal"
            )
        return self._service_principal_from_sdk(sp)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def find_application(
        self, display_name: str
    ) -> Optional[ApplicationRegistration]:
        query_params = ApplicationsRequestBuilder.ApplicationsRequestBuilderGetQueryParameters(
            filter=f"displayName eq '{_odata_escape(display_name)}'",
            select=["id", "appId", "displayName"],
        )
        request_config = RequestConfiguration(query_parameters=query_params)
        try:
            page = await self.client.applications.get(
                request_configuration=request_config
            )
        except ODataError as e:
            raise wrap_azure_exception(
                e, operation="find application", context={"display_name": display_name}
            ) from e
        if not page or not page.value:
            return None
        if len(page.value) > 1:
            logger.warning(
                f"{len(page.value)} applications named '{display_name}' exist; using {page.value[0].app_id}"
            )
        return self._application_from_sdk(page.value[0])

    async def create_application(self, display_name: str) -> ApplicationRegistration:
        try:
            app = await self.client.applications.post(
                Application(display_name=display_name, sign_in_audience="AzureADMyOrg")
            )
        except ODataError as e:
            raise wrap_azure_exception(
                e, operation="create application", context={"display_name": display_name}
            ) from e
        if app is None:
            raise AzureOperationError(
                "Graph returned no application", operation="create application"
            )
        return self._application_from_sdk(app)

    async def add_password(
        self,
        application_object_id: str,
        display_name: str,
        end_date_time: datetime,
    ) -> IssuedSecret:
        body = AddPasswordPostRequestBody(
            password_credential=PasswordCredential(
                display_name=display_name, end_date_time=end_date_time
            )
        )
        try:
            credential = await self.client.applications.by_application_id(
                application_object_id
            ).add_password.post(body)
        except ODataError as e:
            raise wrap_azure_exception(e, operation="add application password") from e
        if credential is None or not credential.secret_text:
            raise AzureOperationError(
                "Graph returned no secret text", operation="add application password"
            )
        return IssuedSecret(
            key_id=str(credential.key_id) if credential.key_id else None,
            secret_text=credential.secret_text,
            display_name=credential.display_name or display_name,
            end_date_time=credential.end_date_time or end_date_time,
        )

    # ------------------------------------------------------------------
    # Application permissions
    # ------------------------------------------------------------------

    async def list_app_roles(self, resource_sp_id: str) -> List[AppRole]:
        try:
            sp = await self.client.service_principals.by_service_principal_id(
                resource_sp_id
            ).get()
        except ODataError as e:
            raise wrap_azure_exception(e, operation="list app roles") from e
        if not sp or not sp.app_roles:
            return []
        return [
            AppRole(
                id=str(role.id),
                value=role.value or "",
                allowed_member_types=tuple(role.allowed_member_types or ()),
                is_enabled=bool(role.is_enabled) if role.is_enabled is not None else True,
            )
            for role in sp.app_roles
        ]

    async def list_app_role_grants(self, principal_id: str) -> List[AppRoleGrant]:
        builder = self.client.service_principals.by_service_principal_id(
            principal_id
        ).app_role_assignments
        grants: List[AppRoleGrant] = []
        try:
            page = await builder.get()
            while page:
                for assignment in page.value or []:
                    grants.append(
                        AppRoleGrant(
                            principal_id=str(assignment.principal_id),
                            resource_id=str(assignment.resource_id),
                            app_role_id=str(assignment.app_role_id),
                        )
                    )
                if not page.odata_next_link:
                    break
                page = await builder.with_url(page.odata_next_link).get()
        except ODataError as e:
            raise wrap_azure_exception(
                e, operation="list app role assignments", context={"principal_id": principal_id}
            ) from e
        return grants

    async def grant_app_role(
        self, principal_id: str, resource_id: str, app_role_id: str
    ) -> Optional[AppRoleGrant]:
        body = AppRoleAssignment(
            principal_id=uuid.UUID(principal_id),
            resource_id=uuid.UUID(resource_id),
            app_role_id=uuid.UUID(app_role_id),
        )
        try:
            await self.client.service_principals.by_service_principal_id(
                principal_id
            ).app_role_assignments.post(body)
        except ODataError as e:
            if is_conflict(e):
                return None
            raise wrap_azure_exception(
                e, operation="grant app role", context={"app_role_id": app_role_id}
            ) from e
        return AppRoleGrant(
            principal_id=principal_id, resource_id=resource_id, app_role_id=app_role_id
        )

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    async def list_application_owners(self, application_object_id: str) -> List[str]:
        builder = self.client.applications.by_application_id(application_object_id).owners
        owners: List[str] = []
        try:
            page = await builder.get()
            while page:
                owners.extend(str(owner.id) for owner in page.value or [])
                if not page.odata_next_link:
                    break
                page = await builder.with_url(page.odata_next_link).get()
        except ODataError as e:
            raise wrap_azure_exception(e, operation="list application owners") from e
        return owners

    async def add_application_owner(
        self, application_object_id: str, principal_id: str
    ) -> bool:
        body = ReferenceCreate(odata_id=f"{GRAPH_DIRECTORY_OBJECTS_URL}/{principal_id}")
        try:
            await self.client.applications.by_application_id(
                application_object_id
            ).owners.ref.post(body)
        except ODataError as e:
            if is_conflict(e):
                return False
            raise wrap_azure_exception(
                e, operation="add application owner", context={"principal_id": principal_id}
            ) from e
        return True
