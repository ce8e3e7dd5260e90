"""Reading and writing the role assignment configuration file.

The file is validated against the packaged JSON schema before anything else
happens, both when it is read and before it is written.
"""

import json
import logging
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import jsonschema

from ..exceptions import InvalidConfigurationError, MissingConfigurationError
from .rbac_models import RoleAssignment

logger = logging.getLogger(__name__)

SCHEMA_RESOURCE = "role_assignments.schema.json"


@lru_cache(maxsize=1)
def load_schema() -> Dict[str, Any]:
    return json.loads(
        resources.files("azops.schemas").joinpath(SCHEMA_RESOURCE).read_text(encoding="utf-8")
    )


def validate_document(document: Any, source: str = "role assignment configuration") -> None:
    """
    Validate a parsed configuration document against the schema.

    Raises:
        InvalidConfigurationError: With one message per violation
    """
    validator = jsonschema.Draft7Validator(load_schema())
    errors = sorted(validator.iter_errors(document), key=lambda e: list(e.absolute_path))
    if not errors:
        return

    messages = []
    for error in errors:
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    for message in messages:
        logger.error(f"Schema violation in {source}: {message}")
    raise InvalidConfigurationError(
        f"{source} failed schema validation ({len(messages)} error(s))",
        config_section="roleAssignments",
        validation_errors=messages,
    )


def load_role_assignments(
    path: Union[str, Path], allow_missing: bool = False
) -> List[RoleAssignment]:
    """
    Load and validate the configuration file.

    Args:
        path: Configuration file path
        allow_missing: Treat a missing file as an empty configuration (export mode)

    Returns:
        Role assignments in file order

    Raises:
        MissingConfigurationError: If the file does not exist and that is not allowed
        InvalidConfigurationError: If the file is not valid JSON or fails the schema
    """
    path = Path(path)
    if not path.exists():
        if allow_missing:
            logger.info(f"{path} does not exist yet; starting from an empty configuration")
            return []
        raise MissingConfigurationError(
            f"Role assignment configuration not found: {path}",
            missing_keys=[str(path)],
            recovery_suggestion="Create the file, or run --mode export to generate it",
        )

    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidConfigurationError(
            f"{path} is not valid JSON: {e}",
            config_section="roleAssignments",
            validation_errors=[str(e)],
            cause=e,
        ) from e

    validate_document(document, source=str(path))
    assignments = [RoleAssignment.from_dict(item) for item in document["roleAssignments"]]
    logger.info(f"Loaded {len(assignments)} role assignment(s) from {path}")
    return assignments


def write_role_assignments(
    path: Union[str, Path], assignments: Sequence[RoleAssignment]
) -> None:
    """Validate and write ``assignments`` to ``path`` as pretty-printed JSON."""
    path = Path(path)
    document = {"roleAssignments": [a.to_dict() for a in assignments]}
    validate_document(document, source=f"export to {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    logger.info(f"Wrote {len(assignments)} role assignment(s) to {path}")
