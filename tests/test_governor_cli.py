"""
Tests for the Governor CLI
==========================

Commands run against a temp database; none of them reach a model.
"""

import json

import pytest

from autonomy_governor.cli.governor_cli import COMMANDS, build_parser, main, run
from autonomy_governor.db import SqlTenantStore, init_db
from autonomy_governor.errors import InvalidStateError
from autonomy_governor.levels import AutonomyLevel


@pytest.fixture
def config_path(temp_dir):
    path = temp_dir / "governor_config.json"
    path.write_text(json.dumps({"db_path": str(temp_dir / "cli.db")}))
    return path


def _args(config_path, *argv):
    return build_parser().parse_args(["--config", str(config_path), *argv])


async def _level(temp_dir, tenant_id):
    db = await init_db(temp_dir / "cli.db")
    try:
        return await SqlTenantStore(db).get_status(tenant_id)
    finally:
        await db.dispose()


class TestParser:
    def test_every_command_is_wired(self):
        parser = build_parser()
        for name in COMMANDS:
            argv = [name] if name == "tenants" else [name, "acme"]
            if name == "register":
                argv.append("Acme")
            elif name == "check":
                argv.append("send")
            elif name in ("demote", "pause"):
                argv += ["--reason", "r"]
            elif name == "resume":
                argv += ["supervised", "--approved-by", "ops"]
            assert parser.parse_args(argv).command == name

    def test_resume_requires_approver(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["resume", "acme", "supervised"])

    def test_metrics_period_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["metrics", "acme", "--period", "year"])


class TestCommands:
    """Run commands end to end against SQLite."""

    @pytest.mark.asyncio
    async def test_register_and_status(self, temp_dir, config_path, capsys):
        await run(_args(config_path, "register", "acme", "Acme Corp"))
        await run(_args(config_path, "status", "acme"))

        out = capsys.readouterr().out
        assert "Registered acme at ONBOARDING" in out
        assert "Acme Corp" in out
        assert await _level(temp_dir, "acme") == AutonomyLevel.ONBOARDING

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, temp_dir, config_path):
        await run(_args(config_path, "register", "acme", "Acme Corp", "--level", "supervised"))
        await run(_args(config_path, "pause", "acme", "--reason", "Incident", "--by", "ops"))
        assert await _level(temp_dir, "acme") == AutonomyLevel.PAUSED

        await run(_args(config_path, "resume", "acme", "shadow_mode", "--approved-by", "ops"))
        assert await _level(temp_dir, "acme") == AutonomyLevel.SHADOW_MODE

    @pytest.mark.asyncio
    async def test_promote_not_eligible(self, config_path):
        await run(_args(config_path, "register", "acme", "Acme Corp"))
        with pytest.raises(InvalidStateError):
            await run(_args(config_path, "promote", "acme"))

    @pytest.mark.asyncio
    async def test_read_only_commands(self, config_path, capsys):
        await run(_args(config_path, "register", "acme", "Acme Corp", "--level", "autonomous"))
        for argv in (
            ["tenants"],
            ["evaluate", "acme"],
            ["history", "acme"],
            ["metrics", "acme", "--period", "day"],
            ["review", "acme"],
            ["learnings", "acme"],
            ["check", "acme", "send", "--content", "salary range"],
        ):
            await run(_args(config_path, *argv))

        out = capsys.readouterr().out
        assert "Approval required: Compensation discussions require human review" in out


class TestMain:
    def test_governor_error_exits_nonzero(self, config_path, monkeypatch):
        monkeypatch.setattr(
            "sys.argv", ["governor-cli", "--config", str(config_path), "status", "ghost"]
        )
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
