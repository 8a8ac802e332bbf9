"""
Well-known identifiers used by the onboarding workflow.

Role definition ids are the built-in Azure RBAC roles, identical in every
tenant. MICROSOFT_GRAPH_APP_ID is the fixed application id of Microsoft Graph.
"""

from typing import Dict, Final, Tuple

# Built-in Azure role definitions (name -> role definition GUID)
BUILTIN_ROLE_DEFINITIONS: Final[Dict[str, str]] = {
    # Administrative
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "User Access Administrator": "18d7d88d-d35e-4fb5-a5c3-7773c20a72d9",
    "Managed Services Registration assignment Delete Role": "91c1777a-f3dc-4fae-b103-61d183457e46",
    # Monitoring
    "Monitoring Contributor": "749f88d5-cbae-40b8-bcfc-e573ddc772fa",
    "Monitoring Reader": "43d0d8ad-25c7-4714-9337-8ba259a9fe05",
    "Monitoring Metrics Publisher": "3913510d-42f4-4e42-8a64-420c390055eb",
    "Log Analytics Contributor": "92aaf0da-9dab-42b6-94a3-d43ce8d16293",
    # Storage
    "Storage Account Contributor": "17d1049b-9a84-46fb-8f53-869881c3d3ab",
    "Storage Blob Data Contributor": "ba92f5b4-2d11-453d-a403-e96b0029c9fe",
    # Security products
    "Microsoft Sentinel Contributor": "ab8e14d6-4a74-4a29-9ba8-549422addade",
    "Microsoft Sentinel Reader": "8d289c81-5878-46d4-8554-54e1e3d8b5cb",
    "Microsoft Sentinel Responder": "3e150937-b8fe-4cfb-8069-0eaf05ecd056",
    "Security Reader": "39bc4728-0917-49c7-9d2c-d95423bc2eb4",
}

ROLE_NAMES_BY_ID: Final[Dict[str, str]] = {
    role_id: name for name, role_id in BUILTIN_ROLE_DEFINITIONS.items()
}

OWNER_ROLE_ID: Final[str] = BUILTIN_ROLE_DEFINITIONS["Owner"]
USER_ACCESS_ADMINISTRATOR_ROLE_ID: Final[str] = BUILTIN_ROLE_DEFINITIONS[
    "User Access Administrator"
]

# Roles the ingestion managed identity holds at subscription scope
INGESTION_IDENTITY_ROLES: Final[Tuple[str, ...]] = (
    "Contributor",
    "Monitoring Metrics Publisher",
    "Storage Blob Data Contributor",
    "Microsoft Sentinel Contributor",
)

MICROSOFT_GRAPH_APP_ID: Final[str] = "00000003-0000-0000-c000-000000000000"

# Graph application permissions granted to the managed identity
INGESTION_GRAPH_PERMISSIONS: Final[Tuple[str, ...]] = (
    "Application.ReadWrite.OwnedBy",
    "Directory.Read.All",
)

ARM_SCOPE: Final[str] = "https://management.azure.com/.default"
GRAPH_SCOPE: Final[str] = "https://graph.microsoft.com/.default"
GRAPH_DIRECTORY_OBJECTS_URL: Final[str] = (
    "https://graph.microsoft.com/v1.0/directoryObjects"
)

SUPPORTED_REGIONS: Final[Tuple[str, ...]] = (
    "eastus",
    "eastus2",
    "westus",
    "westus2",
    "westus3",
    "centralus",
    "northcentralus",
    "southcentralus",
    "westcentralus",
    "canadacentral",
    "canadaeast",
    "northeurope",
    "westeurope",
    "uksouth",
    "ukwest",
    "francecentral",
    "germanywestcentral",
    "switzerlandnorth",
    "swedencentral",
    "norwayeast",
    "australiaeast",
    "australiasoutheast",
    "southeastasia",
    "eastasia",
    "japaneast",
    "japanwest",
    "koreacentral",
    "centralindia",
    "southindia",
    "brazilsouth",
    "southafricanorth",
    "uaenorth",
)

MIN_CUSTOMER_PREFIX_LENGTH: Final[int] = 3
MIN_SUBSCRIPTION_ID_LENGTH: Final[int] = 36

DEFAULT_POLL_INTERVAL_SECONDS: Final[int] = 10
DEFAULT_POLL_MAX_ATTEMPTS: Final[int] = 10
DEFAULT_SECRET_LIFETIME_DAYS: Final[int] = 1

GUID_PATTERN: Final[str] = (
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
