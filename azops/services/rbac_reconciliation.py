"""RBAC reconciliation between a configuration file and a live subscription."""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

import requests
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

from ..config_manager import RbacConfig, RetryConfig
from ..credential_provider import AzureSession
from ..exceptions import AzureError, wrap_azure_exception
from ..timeout_config import Timeouts
from ..utils.resource_id import (
    is_within_subscription,
    last_segment,
    role_definition_resource_id,
    subscription_scope,
)
from ..utils.retry import RETRYABLE_STATUS_CODES, is_transient_error, retry_with_backoff
from .rbac_config import load_role_assignments, write_role_assignments
from .rbac_models import (
    ImportOutcome,
    ImportOutcomeStatus,
    RbacComparison,
    RbacReconciliationResult,
    ReconciliationMode,
    RoleAssignment,
)

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_GET_BY_IDS_URL = "https://graph.microsoft.com/v1.0/directoryObjects/getByIds"
GRAPH_BATCH_SIZE = 1000


def _is_retryable_graph_error(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


def _is_assignment_conflict(exc: BaseException) -> bool:
    if isinstance(exc, ResourceExistsError):
        return True
    return (
        isinstance(exc, HttpResponseError)
        and getattr(exc, "status_code", None) == 409
        and "roleassignmentexists" in str(exc).lower()
    )


class GraphPrincipalResolver:
    """Resolves principal object IDs to display names through Microsoft Graph."""

    def __init__(
        self,
        credential: TokenCredential,
        http: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.credential = credential
        self.http = http or requests.Session()
        self.retry_config = retry_config or RetryConfig()

    def _post_batch(self, ids: List[str]) -> List[Dict[str, Any]]:
        token = self.credential.get_token(GRAPH_SCOPE).token
        response = self.http.post(
            GRAPH_GET_BY_IDS_URL,
            headers={"Authorization": f"Bearer {token}"},
            json={"ids": ids, "types": ["user", "group", "servicePrincipal"]},
            timeout=Timeouts.GRAPH_REQUEST,
        )
        response.raise_for_status()
        return response.json().get("value", [])

    def resolve(self, object_ids: Iterable[str]) -> Dict[str, str]:
        """
        Look up display names for ``object_ids``.

        Principals Graph does not return (deleted identities) are left out of
        the mapping.

        Raises:
            AzureError: If Graph cannot be queried
        """
        ids = sorted(set(object_ids))
        names: Dict[str, str] = {}
        for start in range(0, len(ids), GRAPH_BATCH_SIZE):
            batch = ids[start : start + GRAPH_BATCH_SIZE]
            try:
                objects = retry_with_backoff(
                    lambda: self._post_batch(batch),
                    "resolve principal display names",
                    max_retries=self.retry_config.max_retries,
                    base_delay=self.retry_config.retry_delay,
                    is_retryable=_is_retryable_graph_error,
                )
            except requests.RequestException as e:
                raise AzureError(
                    f"Microsoft Graph lookup failed: {e}",
                    error_code="GRAPH_LOOKUP_FAILED",
                    cause=e,
                    recovery_suggestion=(
                        "Check that the identity can read directory objects "
                        "(Directory.Read.All or equivalent)"
                    ),
                ) from e
            for obj in objects:
                names[obj["id"]] = obj.get("displayName") or ""
        unresolved = set(ids) - set(names)
        if unresolved:
            logger.warning(
                f"{len(unresolved)} principal(s) could not be resolved in Microsoft Graph "
                "(deleted identities?)"
            )
        return names


class RbacReconciliationService:
    """
    Compares, imports and exports role assignments for one subscription.

    The live set covers the subscription scope and everything below it.
    Assignments inherited from management groups or the root scope are not part
    of it, and neither are assignments whose principal display name starts with
    a platform-managed prefix.
    """

    def __init__(
        self,
        session: AzureSession,
        resolver: Optional[GraphPrincipalResolver] = None,
        rbac_config: Optional[RbacConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        exclude_prefixes: Optional[Sequence[str]] = None,
    ) -> None:
        self.session = session
        self.retry_config = retry_config or RetryConfig()
        self.resolver = resolver or GraphPrincipalResolver(
            session.credential, retry_config=self.retry_config
        )
        prefixes = list((rbac_config or RbacConfig()).managed_display_name_prefixes)
        prefixes.extend(exclude_prefixes or [])
        self.excluded_prefixes = tuple(dict.fromkeys(p for p in prefixes if p))
        self.excluded_count = 0

    def _with_retry(self, operation: Callable[[], Any], description: str) -> Any:
        return retry_with_backoff(
            operation,
            description,
            max_retries=self.retry_config.max_retries,
            base_delay=self.retry_config.retry_delay,
            is_retryable=is_transient_error,
        )

    def _role_names(self, role_definition_ids: Set[str]) -> Dict[str, str]:
        scope = subscription_scope(self.session.subscription_id)
        definitions = self._with_retry(
            lambda: list(self.session.authorization.role_definitions.list(scope)),
            "list role definitions",
        )
        names = {last_segment(d.id): d.role_name for d in definitions}
        for full_id in role_definition_ids:
            guid = last_segment(full_id)
            if guid in names:
                continue
            try:
                definition = self._with_retry(
                    lambda: self.session.authorization.role_definitions.get_by_id(full_id),
                    f"read role definition {guid}",
                )
            except ResourceNotFoundError:
                # Assignments can outlive a deleted custom role
                logger.warning(f"Role definition {guid} no longer exists")
                names[guid] = ""
                continue
            names[guid] = definition.role_name
        return names

    def list_live_assignments(self) -> Set[RoleAssignment]:
        """
        Read the live role assignments of the subscription.

        Raises:
            AzureError: If the assignments cannot be listed
        """
        subscription_id = self.session.subscription_id
        try:
            raw = self._with_retry(
                lambda: list(self.session.authorization.role_assignments.list_for_subscription()),
                "list role assignments",
            )
            raw = [a for a in raw if is_within_subscription(a.scope, subscription_id)]
            role_names = self._role_names({a.role_definition_id for a in raw})
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, {"subscription_id": subscription_id, "operation": "list role assignments"}
            ) from e

        display_names = self.resolver.resolve(a.principal_id for a in raw)

        live: Set[RoleAssignment] = set()
        self.excluded_count = 0
        for item in raw:
            display_name = display_names.get(item.principal_id, "")
            if self.excluded_prefixes and display_name.startswith(self.excluded_prefixes):
                self.excluded_count += 1
                continue
            guid = last_segment(item.role_definition_id)
            live.add(
                RoleAssignment(
                    display_name=display_name,
                    object_id=item.principal_id,
                    role_definition_id=guid,
                    role_definition_name=role_names.get(guid, ""),
                    scope=item.scope,
                )
            )
        logger.info(
            f"Found {len(live)} live role assignment(s) "
            f"({self.excluded_count} platform-managed excluded)"
        )
        return live

    def compare(self, configured: Sequence[RoleAssignment]) -> RbacComparison:
        comparison = RbacComparison.compute(configured, self.list_live_assignments())
        logger.info(
            f"{len(comparison.config_only)} to be created, "
            f"{len(comparison.live_only)} unmanaged, "
            f"{len(comparison.in_both)} in sync"
        )
        return comparison

    def create_assignment(self, assignment: RoleAssignment) -> ImportOutcome:
        """Create one assignment; conflicts and failures become outcomes."""
        parameters = RoleAssignmentCreateParameters(
            role_definition_id=role_definition_resource_id(
                self.session.subscription_id, assignment.role_definition_id
            ),
            principal_id=assignment.object_id,
        )
        try:
            self._with_retry(
                lambda: self.session.authorization.role_assignments.create(
                    assignment.scope, str(uuid.uuid4()), parameters
                ),
                f"create role assignment for {assignment.display_name}",
            )
        except HttpResponseError as e:
            if _is_assignment_conflict(e):
                logger.warning(f"Role assignment already exists: {assignment}")
                return ImportOutcome(
                    assignment, ImportOutcomeStatus.CONFLICT, "role assignment already exists"
                )
            logger.error(f"Failed to create role assignment {assignment}: {e.message}")
            return ImportOutcome(
                assignment, ImportOutcomeStatus.FAILED, (e.message or str(e)).splitlines()[0]
            )
        logger.info(f"Created role assignment: {assignment}")
        return ImportOutcome(assignment, ImportOutcomeStatus.CREATED)

    def run(
        self, mode: ReconciliationMode, config_file: Union[str, Path]
    ) -> RbacReconciliationResult:
        """
        Run one reconciliation.

        Args:
            mode: compare (read-only), import (create config-only records) or
                export (write in-sync and unmanaged records back to the file)
            config_file: Path of the configuration document

        Raises:
            InvalidConfigurationError: If the file fails schema validation
                (before any API call)
            MissingConfigurationError: If the file is missing outside export mode
        """
        configured = load_role_assignments(
            config_file, allow_missing=mode == ReconciliationMode.EXPORT
        )
        self.session.verify()
        comparison = self.compare(configured)
        result = RbacReconciliationResult(
            mode=mode,
            subscription_id=self.session.subscription_id,
            comparison=comparison,
            excluded_count=self.excluded_count,
        )

        if mode == ReconciliationMode.IMPORT:
            for assignment in comparison.config_only:
                result.import_outcomes.append(self.create_assignment(assignment))
            logger.info(
                f"Import finished: {result.count(ImportOutcomeStatus.CREATED)} created, "
                f"{result.count(ImportOutcomeStatus.CONFLICT)} conflicts, "
                f"{result.count(ImportOutcomeStatus.FAILED)} failed"
            )
        elif mode == ReconciliationMode.EXPORT:
            exported = comparison.exported()
            if comparison.config_only:
                logger.info(
                    f"Dropping {len(comparison.config_only)} record(s) that no longer "
                    "exist in the subscription"
                )
            write_role_assignments(config_file, exported)
            result.exported_count = len(exported)

        result.completed_at = datetime.now(timezone.utc)
        return result
