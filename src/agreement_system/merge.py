"""Section-aware merge for files shared with other integrations.

A shared file is read as an optional preamble followed by sections, each
starting at a top-level heading line (one ``#`` at column 0). This tool owns
the single section whose heading is the marker and leaves every other
section byte-for-byte intact.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

HEADING_RE = re.compile(r"^#(?!#)")


class Action(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    APPENDED = "appended"
    MERGED = "merged"


@dataclass(frozen=True)
class Section:
    heading: Optional[str]  # None for the preamble
    text: str


@dataclass(frozen=True)
class MergeOutcome:
    action: Action
    content: Optional[str] = None
    detail: str = ""
    warning: Optional[str] = None


def split_sections(text: str) -> list[Section]:
    """Split ``text`` into sections. Joining the texts gives back ``text``."""
    sections: list[Section] = []
    heading: Optional[str] = None
    lines: list[str] = []
    for line in text.splitlines(keepends=True):
        if HEADING_RE.match(line):
            if lines:
                sections.append(Section(heading, "".join(lines)))
            heading = line.rstrip()
            lines = [line]
        else:
            lines.append(line)
    if lines:
        sections.append(Section(heading, "".join(lines)))
    return sections


def join_sections(sections: list[Section]) -> str:
    return "".join(s.text for s in sections)


def mentions_keyword(text: str, keyword: str) -> bool:
    """Word-start match, so ``disagreement`` does not count for ``agreement``."""
    return re.search(rf"\b{re.escape(keyword)}", text) is not None


def resolve_merge(existing: str, incoming: str, marker: str, keyword: Optional[str] = None) -> MergeOutcome:
    """Compute the new content of a shared file.

    Args:
        existing: Current destination content
        incoming: Bundled template content (starts with the marker heading)
        marker: Heading line that delimits the owned section
        keyword: Looser signal that the file was already integrated by hand

    Returns:
        A MergeOutcome. ``content`` is None when nothing should be written.
    """
    sections = split_sections(existing)
    owned = [i for i, s in enumerate(sections) if s.heading == marker]

    if not owned:
        if keyword and mentions_keyword(existing, keyword):
            return MergeOutcome(Action.SKIPPED, detail=f"already mentions '{keyword}'")
        if not existing.strip():
            return MergeOutcome(Action.APPENDED, incoming, "empty file")
        return MergeOutcome(Action.APPENDED, existing.rstrip() + "\n\n" + incoming, f"added '{marker}' section")

    if len(owned) > 1:
        return MergeOutcome(
            Action.SKIPPED,
            detail="left untouched",
            warning=f"'{marker}' appears {len(owned)} times; resolve the duplicate sections by hand",
        )

    index = owned[0]
    replacement = incoming.rstrip() + "\n"
    following = sections[index + 1:]
    if following:
        replacement += "\n"
    content = join_sections(sections[:index]) + replacement + join_sections(following)
    return MergeOutcome(Action.MERGED, content, f"replaced '{marker}' section")
