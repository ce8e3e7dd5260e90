"""Tests for the command registry and CLI group wiring."""

import click

from azops.cli import cli
from azops.commands import _COMMAND_MODULES, get_command


class TestCommandRegistry:
    def test_every_command_is_registered(self):
        assert set(cli.commands) == set(_COMMAND_MODULES)

    def test_get_command_resolves_module_attribute(self):
        command = get_command("copy-storage-account")
        assert isinstance(command, click.Command)
        assert command.name == "copy-storage-account"

    def test_unknown_command(self):
        assert get_command("deploy") is None

    def test_help_lists_commands(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"], obj={})

        assert result.exit_code == 0
        for name in _COMMAND_MODULES:
            assert name in result.output


class TestGlobalOptions:
    def test_managed_identity_flag_reaches_config(self, cli_runner, monkeypatch):
        captured = {}

        @click.command("show-context")
        @click.pass_context
        def show_context(ctx):
            captured.update(ctx.obj)

        cli.add_command(show_context)
        try:
            result = cli_runner.invoke(
                cli, ["--managed-identity", "--log-level", "debug", "show-context"], obj={}
            )
        finally:
            cli.commands.pop("show-context")

        assert result.exit_code == 0, result.output
        assert captured == {
            "log_level": "DEBUG",
            "debug": False,
            "use_managed_identity": True,
        }

    def test_invalid_configuration_is_reported(self, cli_runner, monkeypatch):
        monkeypatch.setenv("AZOPS_POLL_INTERVAL", "0")

        result = cli_runner.invoke(
            cli,
            ["copy-storage-account", "--source-storage", "stsource", "--destination-storage", "stdest"],
            obj={},
        )

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
