"""Project environment detection and run settings."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

AGREEMENTS_DIR = ".agreements"
CLAUDE_COMMANDS_DIR = ".claude/commands"
SPECKIT_DIR = ".specify"

# Current naming first, legacy naming second
BMAD_DIRS = ("_bmad", ".bmad")

TEMPLATES_ENV_VAR = "AGREEMENT_SYSTEM_TEMPLATES"
PACKAGED_TEMPLATES = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class Environment:
    """Snapshot of what is already present in the project root."""
    has_agreements: bool
    has_bmad: bool
    has_claude_commands: bool
    has_speckit: bool


def probe(project_root: Path) -> Environment:
    """Check the fixed marker paths under ``project_root``."""
    return Environment(
        has_agreements=(project_root / AGREEMENTS_DIR).exists(),
        has_bmad=(project_root / BMAD_DIRS[0]).exists(),
        has_claude_commands=(project_root / CLAUDE_COMMANDS_DIR).exists(),
        has_speckit=(project_root / SPECKIT_DIR).exists(),
    )


def locate_bmad_dir(project_root: Path) -> Optional[str]:
    """Return the name of the BMAD directory in use, or None."""
    for name in BMAD_DIRS:
        if (project_root / name).exists():
            return name
    return None


@dataclass(frozen=True)
class Settings:
    project_root: Path
    template_root: Path

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> "Settings":
        """Build settings for the current working directory.

        The bundled templates are used unless ``AGREEMENT_SYSTEM_TEMPLATES``
        points somewhere else.
        """
        override = (os.getenv(TEMPLATES_ENV_VAR) or "").strip()
        template_root = Path(override).expanduser() if override else PACKAGED_TEMPLATES
        return cls(
            project_root=project_root or Path.cwd(),
            template_root=template_root,
        )
