"""Install and update orchestration.

Both runs take an Environment snapshot up front and hand fixed mapping
tables to the SyncEngine. Neither catches OSError: the CLI decides what a
failed run means for the exit code.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from .environment import AGREEMENTS_DIR, CLAUDE_COMMANDS_DIR, Environment, locate_bmad_dir
from .merge import Action
from .sync import ManagedFile, Policy, SyncEngine, SyncResult
from .tracker import StepTracker

INDEX_MARKER = "feature_id:"
CUSTOMIZE_MARKER = "# Agent Customization"
DOMAIN_KEYWORD = "agreement"

CUSTOMIZE_FILES = ["core-bmad-master.customize.yaml", "bmm-pm.customize.yaml"]
SIDECAR_FILE = "active-agreements.md"
# init always installs into the current BMAD layout
INSTALL_BMAD_DIR = "_bmad"

CORE_FILES = [
    ManagedFile("core/agreement.tpl.yaml", f"{AGREEMENTS_DIR}/_templates/agreement.tpl.yaml", Policy.always_write()),
    ManagedFile(
        "core/index.yaml",
        f"{AGREEMENTS_DIR}/index.yaml",
        Policy.write_if_empty_marker(INDEX_MARKER),
        skip_reason="has existing agreements",
    ),
    ManagedFile("core/agreement.md", f"{AGREEMENTS_DIR}/agreement.md", Policy.always_write()),
    ManagedFile("core/config.yaml", f"{AGREEMENTS_DIR}/config.yaml", Policy.write_if_absent(), skip_reason="already configured"),
]

COMMAND_NAMES = ["agreement.create", "agreement.sync", "agreement.check", "agreement.doctor"]

COMMAND_FILES = [
    ManagedFile(f"commands/{name}.md", f"{CLAUDE_COMMANDS_DIR}/{name}.md", Policy.always_write())
    for name in COMMAND_NAMES
]

# update refreshes these and nothing else under .agreements/
UPDATE_CORE_FILES = [
    ManagedFile("core/agreement.md", f"{AGREEMENTS_DIR}/agreement.md", Policy.always_write()),
    ManagedFile("core/agreement.tpl.yaml", f"{AGREEMENTS_DIR}/_templates/agreement.tpl.yaml", Policy.always_write()),
]

SLASH_COMMANDS = [
    ("/agreement.create <feature>", "Create a new Agreement"),
    ("/agreement.sync <feature_id>", "Sync with BMAD/Spec Kit artifacts"),
    ("/agreement.check <feature_id>", "Check code drift against Agreement"),
    ("/agreement.doctor <feature_id>", "Generate fix tasks from check FAIL"),
]


def customize_files(bmad_dir: str, policy: Policy) -> list[ManagedFile]:
    return [
        ManagedFile(
            f"bmad/{name}",
            f"{bmad_dir}/_config/agents/{name}",
            policy,
            skip_reason="already has Agreement integration",
        )
        for name in CUSTOMIZE_FILES
    ]


def sidecar_file(bmad_dir: str) -> ManagedFile:
    return ManagedFile(
        f"bmad/{SIDECAR_FILE}",
        f"{bmad_dir}/_memory/agreements-sidecar/{SIDECAR_FILE}",
        Policy.always_write(),
    )


@dataclass
class InstallOptions:
    skip_bmad: bool = False
    force_bmad: bool = False
    assume_yes: bool = False


@dataclass
class RunReport:
    results: list[SyncResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    declined: bool = False
    exit_code: int = 0
    error: Optional[str] = None

    def record(self, results: list[SyncResult]) -> list[SyncResult]:
        self.results.extend(results)
        self.warnings.extend(f"{r.destination}: {r.warning}" for r in results if r.warning)
        return results

    def count(self, action: Action) -> int:
        return sum(1 for r in self.results if r.action is action)


def summarize(results: list[SyncResult]) -> str:
    """Short tracker detail such as ``3 written, 1 skipped``."""
    parts = []
    for action in Action:
        n = sum(1 for r in results if r.action is action)
        if n:
            parts.append(f"{n} {action.value}")
    return ", ".join(parts) or "nothing to do"


def _finish_step(tracker: Optional[StepTracker], key: str, results: list[SyncResult]) -> None:
    if not tracker:
        return
    if any(r.warning for r in results):
        tracker.warn(key, summarize(results))
    else:
        tracker.complete(key, summarize(results))


def confirm_overwrite(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


def run_install(
    engine: SyncEngine,
    env: Environment,
    options: InstallOptions,
    ask: Callable[[str], str],
    tracker: Optional[StepTracker] = None,
) -> RunReport:
    """Install the Agreement System into ``engine.project_root``.

    ``ask`` is called at most once, before anything is written, when
    ``.agreements/`` already exists and ``options.assume_yes`` is false.
    """
    report = RunReport()
    # read alongside the environment snapshot, before anything is written
    has_agents = (engine.project_root / INSTALL_BMAD_DIR / "_config" / "agents").is_dir()

    if env.has_agreements and not options.assume_yes:
        answer = ask(f"{AGREEMENTS_DIR}/ already exists. Overwrite templates? (y/N)")
        if not confirm_overwrite(answer):
            report.declined = True
            return report

    if tracker:
        tracker.start("core")
    _finish_step(tracker, "core", report.record(engine.sync_all(CORE_FILES)))

    if tracker:
        tracker.start("commands")
    results = report.record(engine.sync_all(COMMAND_FILES))
    if tracker and not env.has_claude_commands:
        tracker.complete("commands", f"created {CLAUDE_COMMANDS_DIR}/; {summarize(results)}")
    else:
        _finish_step(tracker, "commands", results)

    should_install_bmad = not options.skip_bmad and (options.force_bmad or env.has_bmad)
    if should_install_bmad:
        _install_bmad(engine, report, has_agents, tracker)
    elif tracker:
        if env.has_bmad and options.skip_bmad:
            tracker.skip("bmad", "--skip-bmad")
        else:
            tracker.skip("bmad", "no BMAD detected")

    return report


def _install_bmad(engine: SyncEngine, report: RunReport, has_agents: bool, tracker: Optional[StepTracker]) -> None:
    bmad_dir = INSTALL_BMAD_DIR
    if tracker:
        tracker.start("bmad")

    results = []
    if has_agents:
        policy = Policy.write_if_empty_marker(DOMAIN_KEYWORD)
        results.extend(report.record(engine.sync_all(customize_files(bmad_dir, policy))))
    else:
        report.warnings.append(f"{bmad_dir}/_config/agents/ not found, skipping customize files")

    results.extend(report.record(engine.sync_all([sidecar_file(bmad_dir)])))

    if not tracker:
        return
    if has_agents:
        _finish_step(tracker, "bmad", results)
    else:
        tracker.warn("bmad", f"{bmad_dir}/_config/agents/ not found; {summarize(results)}")


def run_update(engine: SyncEngine, env: Environment, tracker: Optional[StepTracker] = None) -> RunReport:
    """Refresh commands, the agreement doc, the template and BMAD customize files.

    Never touches the index, the config or any agreement content.
    """
    report = RunReport()
    if not env.has_agreements:
        report.exit_code = 1
        report.error = f"{AGREEMENTS_DIR}/ not found. Run 'agreement-system init' first."
        return report

    bmad_dir = locate_bmad_dir(engine.project_root)
    has_agents = bmad_dir is not None and (engine.project_root / bmad_dir / "_config" / "agents").is_dir()

    if tracker:
        tracker.start("commands")
    _finish_step(tracker, "commands", report.record(engine.sync_all(COMMAND_FILES)))

    if tracker:
        tracker.start("core")
    _finish_step(tracker, "core", report.record(engine.sync_all(UPDATE_CORE_FILES)))

    if bmad_dir is None:
        if tracker:
            tracker.skip("bmad", "no BMAD detected")
        return report

    if not has_agents:
        report.warnings.append(f"{bmad_dir}/_config/agents/ not found, skipping customize files")
        if tracker:
            tracker.warn("bmad", f"{bmad_dir}/_config/agents/ not found")
        return report

    if tracker:
        tracker.start("bmad", f"{bmad_dir}/")
    policy = Policy.merge_on_marker(CUSTOMIZE_MARKER, DOMAIN_KEYWORD)
    _finish_step(tracker, "bmad", report.record(engine.sync_all(customize_files(bmad_dir, policy))))
    return report
