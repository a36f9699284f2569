"""Shared fixtures for agreement-system tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from agreement_system.environment import PACKAGED_TEMPLATES, TEMPLATES_ENV_VAR
from agreement_system.sync import SyncEngine

CUSTOMIZE_TEMPLATE = "# Agent Customization\nmenu:\n  - trigger: agreement-create\n"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project(tmp_path, monkeypatch):
    """An empty project root that is also the working directory."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    monkeypatch.delenv(TEMPLATES_ENV_VAR, raising=False)
    return root


@pytest.fixture
def templates(tmp_path):
    """A small template tree with the same layout as the bundled one."""
    root = tmp_path / "templates"
    files = {
        "core/agreement.tpl.yaml": "feature_id: \"\"\ntitle: \"\"\n",
        "core/index.yaml": "agreements: []\n",
        "core/agreement.md": "# The Agreement System\n",
        "core/config.yaml": "language: en\n",
        "commands/agreement.create.md": "create\n",
        "commands/agreement.sync.md": "sync\n",
        "commands/agreement.check.md": "check\n",
        "commands/agreement.doctor.md": "doctor\n",
        "bmad/core-bmad-master.customize.yaml": CUSTOMIZE_TEMPLATE,
        "bmad/bmm-pm.customize.yaml": CUSTOMIZE_TEMPLATE,
        "bmad/active-agreements.md": "# Active Agreements\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def engine(templates, project):
    return SyncEngine(templates, project)


@pytest.fixture
def bundled_engine(project):
    return SyncEngine(PACKAGED_TEMPLATES, project)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def snapshot(root: Path) -> dict[str, bytes]:
    """Map every file under ``root`` to its bytes."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def seed_agreements(root: Path, index: str = "agreements: []\n", config: str | None = None) -> None:
    agreements = root / ".agreements"
    agreements.mkdir(parents=True, exist_ok=True)
    (agreements / "index.yaml").write_text(index)
    if config is not None:
        (agreements / "config.yaml").write_text(config)


def seed_bmad(root: Path, name: str = "_bmad", customize: str | None = None) -> Path:
    """Create a BMAD tree with its agents config dir. Returns the agents dir."""
    agents = root / name / "_config" / "agents"
    agents.mkdir(parents=True)
    if customize is not None:
        for file in ("core-bmad-master.customize.yaml", "bmm-pm.customize.yaml"):
            (agents / file).write_text(customize)
    return agents
