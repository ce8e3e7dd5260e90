"""azops command line entry point."""

import click

from .commands import register_all_commands


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    help="Logging level",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug output including the effective configuration",
)
@click.option(
    "--managed-identity",
    "use_managed_identity",
    is_flag=True,
    default=None,
    help="Authenticate with the managed identity (also switches AzCopy to MSI login)",
)
@click.pass_context
def cli(
    ctx: click.Context, log_level: str, debug: bool, use_managed_identity: bool
) -> None:
    """azops - Azure operations toolkit for storage, Key Vault, RBAC and app registrations."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper()
    ctx.obj["debug"] = debug
    # None leaves AZOPS_USE_MANAGED_IDENTITY in charge
    ctx.obj["use_managed_identity"] = True if use_managed_identity else None


register_all_commands(cli)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
