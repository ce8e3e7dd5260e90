"""Sub-command registry for the azops CLI.

Each CLI name maps to the module that defines it; the click command object is
the module attribute named after the command (dashes become underscores).
Modules are imported on first lookup.
"""

import importlib
import logging
from typing import Dict, Optional

import click

from .base import CommandContext, command_context, exit_with_error

logger = logging.getLogger(__name__)

_LOADED: Dict[str, click.Command] = {}

_COMMAND_MODULES: Dict[str, str] = {
    # Key Vault
    "copy-secrets": "azops.commands.secrets",
    # Storage
    "copy-blobs": "azops.commands.storage",
    "copy-storage-account": "azops.commands.storage",
    # Access control
    "rbac": "azops.commands.rbac",
    # Identity
    "app-registration": "azops.commands.app_registration",
}


def get_command(name: str) -> Optional[click.Command]:
    """Return the click command registered as ``name``, importing its module if needed."""
    if name in _LOADED:
        return _LOADED[name]

    module_path = _COMMAND_MODULES.get(name)
    if module_path is None:
        return None

    command = getattr(importlib.import_module(module_path), name.replace("-", "_"), None)
    if not isinstance(command, click.Command):
        logger.warning(f"{module_path} has no click command for '{name}'")
        return None
    _LOADED[name] = command
    return command


def register_all_commands(cli_group: click.Group) -> None:
    """Attach every known sub-command to ``cli_group``."""
    for name in _COMMAND_MODULES:
        command = get_command(name)
        if command is not None:
            cli_group.add_command(command, name)
            logger.debug(f"Registered command {name}")


__all__ = [
    "CommandContext",
    "command_context",
    "exit_with_error",
    "get_command",
    "register_all_commands",
]
