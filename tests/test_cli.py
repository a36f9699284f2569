"""End-to-end tests for the agreement-system command line."""

import pytest
from typer.testing import CliRunner

from agreement_system import app
from agreement_system.environment import TEMPLATES_ENV_VAR

from tests.conftest import CUSTOMIZE_TEMPLATE, seed_agreements, seed_bmad, snapshot

runner = CliRunner()


@pytest.fixture
def fake_templates(templates, monkeypatch):
    monkeypatch.setenv(TEMPLATES_ENV_VAR, str(templates))
    return templates


class TestHelp:
    @pytest.mark.parametrize("args", [[], ["help"], ["--help"], ["-h"]])
    def test_usage_exits_zero(self, project, args):
        result = runner.invoke(app, args)
        assert result.exit_code == 0
        assert "init" in result.output
        assert "update" in result.output

    @pytest.mark.parametrize("args", [["bogus"], ["--bogus"], ["-x"], ["--bogus", "init"]])
    def test_unknown_token(self, project, args):
        result = runner.invoke(app, args)
        assert result.exit_code == 1
        assert "Unknown command" in result.output
        assert snapshot(project) == {}


class TestInit:
    def test_fresh_project(self, project):
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0, result.output
        assert "Agreement System installed" in result.output
        for rel in (
            ".agreements/index.yaml",
            ".agreements/config.yaml",
            ".agreements/agreement.md",
            ".agreements/_templates/agreement.tpl.yaml",
            ".claude/commands/agreement.create.md",
            ".claude/commands/agreement.doctor.md",
        ):
            assert (project / rel).is_file(), rel

    def test_second_run_is_a_no_op(self, project):
        assert runner.invoke(app, ["init", "--yes"]).exit_code == 0
        first = snapshot(project)

        result = runner.invoke(app, ["init", "--yes"])

        assert result.exit_code == 0
        assert snapshot(project) == first

    def test_existing_agreements_survive_yes(self, project):
        index = "agreements:\n  - feature_id: checkout\n"
        seed_agreements(project, index=index, config="language: fr\n")

        result = runner.invoke(app, ["init", "-y"])

        assert result.exit_code == 0
        assert (project / ".agreements" / "index.yaml").read_text() == index
        assert (project / ".agreements" / "config.yaml").read_text() == "language: fr\n"

    def test_declining_changes_nothing(self, project):
        seed_agreements(project, config="language: fr\n")
        before = snapshot(project)

        result = runner.invoke(app, ["init"], input="n\n")

        assert result.exit_code == 0
        assert "Skipping core templates" in result.output
        assert snapshot(project) == before

    def test_empty_answer_declines(self, project):
        seed_agreements(project)
        before = snapshot(project)

        result = runner.invoke(app, ["init"], input="\n")

        assert result.exit_code == 0
        assert snapshot(project) == before

    def test_confirming_proceeds(self, project):
        seed_agreements(project)

        result = runner.invoke(app, ["init"], input="yes\n")

        assert result.exit_code == 0
        assert (project / ".claude" / "commands" / "agreement.sync.md").exists()

    def test_closed_stdin_declines(self, project):
        seed_agreements(project)
        before = snapshot(project)

        result = runner.invoke(app, ["init"], input="")

        assert result.exit_code == 0
        assert "Skipping core templates" in result.output
        assert snapshot(project) == before

    def test_unknown_option_is_ignored(self, project):
        result = runner.invoke(app, ["init", "--bogus"])

        assert result.exit_code == 0, result.output
        assert (project / ".agreements" / "index.yaml").is_file()

    def test_speckit_hint(self, project):
        (project / ".specify").mkdir()
        result = runner.invoke(app, ["init"])
        assert "Spec Kit detected" in result.output

    def test_write_failure_exits_one(self, project):
        # a directory where a command file should go cannot be replaced
        (project / ".claude" / "commands" / "agreement.create.md").mkdir(parents=True)

        result = runner.invoke(app, ["init", "--debug"])

        assert result.exit_code == 1
        assert "Installation failed" in result.output
        assert "Debug Environment" in result.output


class TestInitBmad:
    def test_detected(self, project, fake_templates):
        agents = seed_bmad(project)

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert (agents / "bmm-pm.customize.yaml").read_text() == CUSTOMIZE_TEMPLATE
        assert (project / "_bmad" / "_memory" / "agreements-sidecar" / "active-agreements.md").exists()

    def test_skip_flag(self, project):
        agents = seed_bmad(project)

        result = runner.invoke(app, ["init", "--skip-bmad"])

        assert result.exit_code == 0
        assert list(agents.iterdir()) == []
        assert not (project / "_bmad" / "_memory").exists()

    def test_force_without_bmad(self, project):
        result = runner.invoke(app, ["init", "--force-bmad"])

        assert result.exit_code == 0
        assert "not found" in result.output
        assert (project / "_bmad" / "_memory" / "agreements-sidecar" / "active-agreements.md").exists()

    def test_latin1_customize_file(self, project, fake_templates):
        agents = seed_bmad(project)
        (agents / "bmm-pm.customize.yaml").write_bytes(b"# Caf\xe9 overrides\nagent: {}\n")

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0, result.output
        assert (agents / "bmm-pm.customize.yaml").read_text() == CUSTOMIZE_TEMPLATE

    def test_not_detected(self, project):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert not (project / "_bmad").exists()


class TestUpdate:
    def test_requires_init(self, project):
        result = runner.invoke(app, ["update"])

        assert result.exit_code == 1
        assert ".agreements/ not found" in result.output
        assert snapshot(project) == {}

    def test_leaves_user_data_alone(self, project, fake_templates):
        assert runner.invoke(app, ["init"]).exit_code == 0
        agreements = project / ".agreements"
        (agreements / "index.yaml").write_text("agreements:\n  - feature_id: checkout\n")
        (agreements / "config.yaml").write_text("language: fr\n")
        (agreements / "agreement.md").write_text("stale\n")
        (agreements / "checkout").mkdir()
        (agreements / "checkout" / "agreement.yaml").write_text("feature_id: checkout\n")

        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0, result.output
        assert "untouched" in result.output
        assert (agreements / "index.yaml").read_text() == "agreements:\n  - feature_id: checkout\n"
        assert (agreements / "config.yaml").read_text() == "language: fr\n"
        assert (agreements / "checkout" / "agreement.yaml").read_text() == "feature_id: checkout\n"
        assert (agreements / "agreement.md").read_text() == "# The Agreement System\n"

    def test_merges_customize_section(self, project, fake_templates):
        seed_agreements(project)
        agents = seed_bmad(project, customize="# Team Overrides\nagent:\n  name: Ada\n# Agent Customization\nmenu: []\n")

        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0, result.output
        assert (agents / "core-bmad-master.customize.yaml").read_text() == (
            "# Team Overrides\nagent:\n  name: Ada\n" + CUSTOMIZE_TEMPLATE
        )

    def test_legacy_bmad_dir(self, project, fake_templates):
        seed_agreements(project)
        agents = seed_bmad(project, name=".bmad", customize="# Team Overrides\nagent: {}\n")

        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0
        assert (agents / "bmm-pm.customize.yaml").read_text() == (
            "# Team Overrides\nagent: {}\n\n" + CUSTOMIZE_TEMPLATE
        )

    def test_latin1_customize_file_is_kept(self, project, fake_templates):
        seed_agreements(project)
        agents = seed_bmad(project)
        (agents / "bmm-pm.customize.yaml").write_bytes(b"# Caf\xe9 overrides\nagent: {}\n")

        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0, result.output
        assert "UTF-8" in result.output
        assert (agents / "bmm-pm.customize.yaml").read_bytes() == b"# Caf\xe9 overrides\nagent: {}\n"

    def test_unknown_option_is_ignored(self, project):
        seed_agreements(project)
        result = runner.invoke(app, ["update", "--bogus"])
        assert result.exit_code == 0, result.output

    def test_is_idempotent(self, project):
        assert runner.invoke(app, ["init"]).exit_code == 0
        seed_bmad(project)
        assert runner.invoke(app, ["update"]).exit_code == 0
        first = snapshot(project)

        assert runner.invoke(app, ["update"]).exit_code == 0
        assert snapshot(project) == first
