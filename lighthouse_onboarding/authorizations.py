"""
Azure Lighthouse authorization list.

The list declares which managing-tenant groups hold which built-in roles over
a customer subscription. It is static data consumed by the delegation
registration deployment; this module loads it, checks it against the
Lighthouse rules, verifies the role definitions exist and renders the ARM
parameters document.
"""

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .constants import (
    OWNER_ROLE_ID,
    ROLE_NAMES_BY_ID,
    USER_ACCESS_ADMINISTRATOR_ROLE_ID,
)
from .exceptions import AuthorizationListError
from .models import AuthorizationEntry, is_guid, role_guid
from .services.protocols import RoleAssignmentStore

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZATIONS_PATH = (
    Path(__file__).parent / "data" / "lighthouse_authorizations.json"
)

DEPLOYMENT_PARAMETERS_SCHEMA = (
    "https://schema.management.azure.com/schemas/2019-04-01/"
    "deploymentParameters.json#"
)


def role_display_name(role_definition_id: str) -> str:
    """Built-in role name for an id, or the id itself when unknown."""
    return ROLE_NAMES_BY_ID.get(role_guid(role_definition_id), role_definition_id)


def _entry_problems(index: int, entry: AuthorizationEntry) -> List[str]:
    label = f"authorizations[{index}]"
    problems = []
    if not is_guid(entry.principal_id):
        problems.append(f"{label}: principalId is not a GUID: {entry.principal_id!r}")
    if not is_guid(entry.role_definition_id):
        problems.append(
            f"{label}: roleDefinitionId is not a GUID: {entry.role_definition_id!r}"
        )
    if not entry.principal_id_display_name.strip():
        problems.append(f"{label}: principalIdDisplayName is required")

    role = entry.role_definition_id.lower()
    if role == OWNER_ROLE_ID:
        problems.append(f"{label}: Owner cannot be granted through Lighthouse")

    if entry.delegated_role_definition_ids:
        if role != USER_ACCESS_ADMINISTRATOR_ROLE_ID:
            problems.append(
                f"{label}: delegatedRoleDefinitionIds is only allowed with "
                f"User Access Administrator, not {role_display_name(role)}"
            )
        for delegated in entry.delegated_role_definition_ids:
            if not is_guid(delegated):
                problems.append(
                    f"{label}: delegated role is not a GUID: {delegated!r}"
                )
            elif delegated.lower() in (OWNER_ROLE_ID, USER_ACCESS_ADMINISTRATOR_ROLE_ID):
                problems.append(
                    f"{label}: {role_display_name(delegated)} cannot be delegated"
                )
    return problems


def validate_authorizations(entries: Sequence[AuthorizationEntry]) -> List[str]:
    """
    Check entries against the Lighthouse rules.

    Returns:
        One message per problem; empty when the list is valid
    """
    if not entries:
        return ["authorization list is empty"]

    problems: List[str] = []
    for index, entry in enumerate(entries):
        problems.extend(_entry_problems(index, entry))

    pairs = Counter(
        (entry.principal_id.lower(), entry.role_definition_id.lower())
        for entry in entries
    )
    for (principal_id, role_id), count in sorted(pairs.items()):
        if count > 1:
            problems.append(
                f"{principal_id} holds {role_display_name(role_id)} {count} times"
            )
    return problems


def _read_entries(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("authorizations")
    if not isinstance(data, list):
        raise AuthorizationListError(
            "Authorization list must be a JSON array or an object with an 'authorizations' array"
        )
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise AuthorizationListError(
                f"authorizations[{index}] must be an object, got {type(item).__name__}"
            )
    return data


def load_authorizations(
    path: Optional[Union[str, Path]] = None,
) -> Tuple[AuthorizationEntry, ...]:
    """
    Load and validate an authorization list.

    Args:
        path: JSON file; the packaged list when omitted

    Returns:
        Validated entries in file order

    Raises:
        AuthorizationListError: If the file cannot be read or any entry is invalid
    """
    source = Path(path) if path else DEFAULT_AUTHORIZATIONS_PATH
    try:
        with open(source, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise AuthorizationListError(
            f"Authorization list not found: {source}", cause=e
        ) from e
    except json.JSONDecodeError as e:
        raise AuthorizationListError(
            f"Authorization list is not valid JSON: {source}: {e.msg} (line {e.lineno})",
            cause=e,
        ) from e

    entries = tuple(AuthorizationEntry.from_dict(item) for item in _read_entries(data))
    problems = validate_authorizations(entries)
    if problems:
        for problem in problems:
            logger.error(problem)
        raise AuthorizationListError(
            f"{len(problems)} problem(s) in {source}", problems=problems
        )

    logger.debug(f"Loaded {len(entries)} authorizations from {source}")
    return entries


def verify_role_definitions(
    entries: Sequence[AuthorizationEntry],
    store: RoleAssignmentStore,
    scope: str,
) -> List[str]:
    """
    Check that every referenced role definition exists at scope.

    Returns:
        Role definition ids (delegated ones included) that were not found
    """
    referenced: List[str] = []
    for entry in entries:
        for role_id in (entry.role_definition_id,) + entry.delegated_role_definition_ids:
            if role_id.lower() not in referenced:
                referenced.append(role_id.lower())

    missing = []
    for role_id in referenced:
        if store.role_definition_exists(scope, role_id):
            logger.debug(f"Role definition {role_display_name(role_id)} exists")
        else:
            logger.warning(f"Role definition {role_id} not found at {scope}")
            missing.append(role_id)
    return missing


def render_parameters(
    entries: Sequence[AuthorizationEntry],
    managing_tenant_id: str,
    offer_name: str = "Sentinel Managed Services",
    description: str = "Microsoft Sentinel operations by the managing tenant",
) -> Dict[str, Any]:
    """
    Build the deployment parameters document for the Lighthouse registration.

    Raises:
        AuthorizationListError: If managing_tenant_id is not a GUID
    """
    if not is_guid(managing_tenant_id):
        raise AuthorizationListError(
            f"Managing tenant id must be a GUID: {managing_tenant_id!r}"
        )
    if not offer_name.strip():
        raise AuthorizationListError("Offer name is required")

    return {
        "$schema": DEPLOYMENT_PARAMETERS_SCHEMA,
        "contentVersion": "1.0.0.0",
        "parameters": {
            "mspOfferName": {"value": offer_name},
            "mspOfferDescription": {"value": description},
            "managedByTenantId": {"value": managing_tenant_id.lower()},
            "authorizations": {"value": [entry.to_dict() for entry in entries]},
        },
    }
