"""Structural checks of the orchestrator home before any run."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from issue_pilot.config import RuntimeSettings, validate_settings_document
from issue_pilot.orchestrator.usage import UNION_MERGE_ATTRIBUTE, has_union_merge

REQUIRED_GITIGNORE_ENTRIES: tuple[str, ...] = ("credentials/", "*.db")


@dataclass(slots=True)
class PreflightReport:
    """All problems found; empty ``errors`` means the workspace is usable."""

    home_dir: Path
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def run_preflight(runtime: RuntimeSettings) -> PreflightReport:
    """Collect every problem instead of stopping at the first."""

    home = runtime.home_dir
    report = PreflightReport(home_dir=home)
    gitignore_path = runtime.state_dir / ".gitignore"
    gitattributes_path = runtime.state_dir / ".gitattributes"

    required = (
        (runtime.sentinel_path, "ENABLED.md"),
        (runtime.config_path, "config/settings.json"),
        (gitignore_path, "state/.gitignore"),
        (gitattributes_path, "state/.gitattributes"),
    )
    report.errors.extend(
        f"Missing required file: {label}" for path, label in required if not path.exists()
    )

    if runtime.config_path.exists():
        try:
            payload = json.loads(runtime.config_path.read_text("utf-8"))
        except json.JSONDecodeError as error:
            report.errors.append(f"settings.json: failed to parse: {error}")
        else:
            report.errors.extend(
                f"settings.json: {problem}" for problem in validate_settings_document(payload)
            )

    if gitignore_path.exists():
        entries = {line.strip() for line in gitignore_path.read_text("utf-8").splitlines()}
        report.errors.extend(
            f'state/.gitignore: missing required entry "{entry}" '
            "to prevent accidental secret commits"
            for entry in REQUIRED_GITIGNORE_ENTRIES
            if entry not in entries
        )
        working_entry = _working_dir_ignore_entry(runtime)
        if working_entry is not None and working_entry not in entries:
            report.errors.append(
                f'state/.gitignore: missing "{working_entry}" so engine working copies '
                "are not committed",
            )

    if gitattributes_path.exists() and not has_union_merge(
        gitattributes_path.read_text("utf-8"),
    ):
        report.errors.append(
            f'state/.gitattributes: missing "{UNION_MERGE_ATTRIBUTE}" '
            "so parallel runs can merge the usage log",
        )
    return report


def _working_dir_ignore_entry(runtime: RuntimeSettings) -> str | None:
    try:
        relative = runtime.working_sessions_dir.relative_to(runtime.state_dir)
    except ValueError:
        return None
    return f"{relative.parts[0]}/" if relative.parts else None
