"""Runtime configuration: versioned settings document plus environment knobs."""

from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_HOME_DIR = ".issue-pilot"
DEFAULT_THINKING_LEVEL = "high"
SEMI_TRUSTED_ROLE_CHOICES: tuple[str, ...] = ("admin", "maintain", "write")
MIN_TOKENS_PER_RUN = 1_000
MAX_WORKFLOW_TIMEOUT_MINUTES = 360


class ConfigError(ValueError):
    """Malformed or incomplete configuration. Fatal before any side effect."""


class UntrustedBehavior(str, Enum):
    """What to do when an untrusted actor triggers a run."""

    BLOCK = "block"
    READ_ONLY_RESPONSE = "read-only-response"


@dataclass(slots=True)
class TrustPolicy:
    """Who is trusted, who is semi-trusted, and how untrusted actors are answered."""

    trusted_users: tuple[str, ...] = ()
    semi_trusted_roles: tuple[str, ...] = ()
    untrusted_behavior: UntrustedBehavior = UntrustedBehavior.BLOCK


@dataclass(slots=True)
class RunLimits:
    """Per-run budget ceilings. ``None`` disables a check."""

    max_tokens_per_run: int | None = None
    max_tool_calls_per_run: int | None = None
    workflow_timeout_minutes: int | None = None


@dataclass(slots=True)
class AgentSettings:
    """Provider and model selection passed explicitly to the engine."""

    provider: str
    model: str
    thinking_level: str = DEFAULT_THINKING_LEVEL


@dataclass(slots=True)
class RuntimeSettings:
    """Environment-derived knobs for one CI run."""

    repo_root: Path = Path()
    home_dir: Path = Path(DEFAULT_HOME_DIR)
    agent_command: tuple[str, ...] = ("openclaw",)
    capture_timeout_seconds: float = 300.0
    exit_grace_seconds: float = 10.0
    push_max_attempts: int = 3
    git_remote: str = "origin"
    git_user_name: str = "issue-pilot[bot]"
    git_user_email: str = "issue-pilot[bot]@users.noreply.github.com"
    working_sessions_subdir: str = "agents/main/sessions"
    raw_output_path: Path = Path("/tmp/issue-pilot-agent-raw.json")
    reaction_state_path: Path = Path("/tmp/issue-pilot-reaction-state.json")

    @classmethod
    def from_env(cls, home_dir: Path | None = None) -> RuntimeSettings:
        """Load runtime settings from ``ISSUE_PILOT_*`` variables."""

        repo_root = Path(os.getenv("ISSUE_PILOT_REPO_ROOT", ".")).resolve()
        resolved_home = home_dir or Path(os.getenv("ISSUE_PILOT_HOME", DEFAULT_HOME_DIR))
        if not resolved_home.is_absolute():
            resolved_home = repo_root / resolved_home
        agent_command = tuple(shlex.split(os.getenv("ISSUE_PILOT_AGENT_COMMAND", "openclaw")))
        if not agent_command:
            raise ConfigError("ISSUE_PILOT_AGENT_COMMAND must not be empty.")
        return cls(
            repo_root=repo_root,
            home_dir=resolved_home,
            agent_command=agent_command,
            capture_timeout_seconds=_env_float("ISSUE_PILOT_CAPTURE_TIMEOUT_SECONDS", 300.0),
            exit_grace_seconds=_env_float("ISSUE_PILOT_EXIT_GRACE_SECONDS", 10.0),
            push_max_attempts=_env_int("ISSUE_PILOT_PUSH_MAX_ATTEMPTS", 3),
            git_remote=os.getenv("ISSUE_PILOT_GIT_REMOTE", "origin"),
            git_user_name=os.getenv("ISSUE_PILOT_GIT_USER_NAME", "issue-pilot[bot]"),
            git_user_email=os.getenv(
                "ISSUE_PILOT_GIT_USER_EMAIL",
                "issue-pilot[bot]@users.noreply.github.com",
            ),
            working_sessions_subdir=os.getenv(
                "ISSUE_PILOT_WORKING_SESSIONS_DIR",
                "agents/main/sessions",
            ),
            raw_output_path=Path(
                os.getenv("ISSUE_PILOT_RAW_OUTPUT_PATH", "/tmp/issue-pilot-agent-raw.json"),
            ),
            reaction_state_path=Path(
                os.getenv(
                    "ISSUE_PILOT_REACTION_STATE_PATH",
                    "/tmp/issue-pilot-reaction-state.json",
                ),
            ),
        )

    @property
    def config_path(self) -> Path:
        return self.home_dir / "config" / "settings.json"

    @property
    def state_dir(self) -> Path:
        return self.home_dir / "state"

    @property
    def working_sessions_dir(self) -> Path:
        return self.state_dir / self.working_sessions_subdir

    @property
    def usage_log_path(self) -> Path:
        return self.state_dir / "usage.log"

    @property
    def tool_policy_override_path(self) -> Path:
        return self.state_dir / "tool-policy-override.json"

    @property
    def sentinel_path(self) -> Path:
        return self.home_dir / "ENABLED.md"

    def validate(self) -> None:
        """Raise ``ConfigError`` if numeric knobs are out of range."""

        if self.capture_timeout_seconds <= 0:
            raise ConfigError("ISSUE_PILOT_CAPTURE_TIMEOUT_SECONDS must be > 0.")
        if self.exit_grace_seconds < 0:
            raise ConfigError("ISSUE_PILOT_EXIT_GRACE_SECONDS must be >= 0.")
        if self.push_max_attempts <= 0:
            raise ConfigError("ISSUE_PILOT_PUSH_MAX_ATTEMPTS must be > 0.")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    agent: AgentSettings
    trust_policy: TrustPolicy | None = None
    limits: RunLimits = field(default_factory=RunLimits)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)

    @classmethod
    def load(cls, home_dir: Path | None = None) -> Settings:
        """Load runtime knobs from env and the versioned settings document from disk."""

        runtime = RuntimeSettings.from_env(home_dir=home_dir)
        runtime.validate()
        settings = load_settings_file(runtime.config_path)
        settings.runtime = runtime
        return settings


def load_settings_file(path: Path) -> Settings:
    """Read and validate ``settings.json``; every problem is reported at once."""

    if not path.exists():
        raise ConfigError(f"Settings file not found: {path}")
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ConfigError(f"Settings file {path} is not valid JSON: {error}") from error

    errors = validate_settings_document(payload)
    if errors:
        raise ConfigError(f"Invalid settings at {path}: " + "; ".join(errors))
    return parse_settings_document(payload)


def validate_settings_document(payload: Any) -> list[str]:  # noqa: C901, PLR0912
    """Return structural errors in a settings document (empty list when valid)."""

    if not isinstance(payload, dict):
        return ["settings document must be a JSON object"]

    errors: list[str] = []
    for key in ("defaultProvider", "defaultModel"):
        if key not in payload:
            errors.append(f'missing required field "{key}"')
        elif not isinstance(payload[key], str) or not payload[key].strip():
            errors.append(f'"{key}" must be a non-empty string')

    thinking = payload.get("defaultThinkingLevel")
    if thinking is not None and not isinstance(thinking, str):
        errors.append('"defaultThinkingLevel" must be a string')

    policy = payload.get("trustPolicy")
    if policy is not None:
        if not isinstance(policy, dict):
            errors.append('"trustPolicy" must be an object')
        else:
            users = policy.get("trustedUsers")
            if users is not None:
                if not isinstance(users, list):
                    errors.append('"trustPolicy.trustedUsers" must be an array of strings')
                elif any(not isinstance(user, str) for user in users):
                    errors.append('"trustPolicy.trustedUsers" entries must be strings')
            roles = policy.get("semiTrustedRoles")
            if roles is not None:
                if not isinstance(roles, list):
                    errors.append('"trustPolicy.semiTrustedRoles" must be an array')
                else:
                    errors.extend(
                        f'"trustPolicy.semiTrustedRoles" contains invalid value {role!r} '
                        f"(must be one of [{', '.join(SEMI_TRUSTED_ROLE_CHOICES)}])"
                        for role in roles
                        if role not in SEMI_TRUSTED_ROLE_CHOICES
                    )
            behavior = policy.get("untrustedBehavior")
            if behavior is not None and behavior not in {item.value for item in UntrustedBehavior}:
                errors.append(
                    '"trustPolicy.untrustedBehavior" must be one of '
                    f"[{', '.join(item.value for item in UntrustedBehavior)}], got {behavior!r}",
                )

    limits = payload.get("limits")
    if limits is not None:
        if not isinstance(limits, dict):
            errors.append('"limits" must be an object')
        else:
            errors.extend(_validate_limits(limits))
    return errors


def _validate_limits(limits: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    known = {"maxTokensPerRun", "maxToolCallsPerRun", "workflowTimeoutMinutes"}
    errors.extend(f'"limits.{key}" is not a supported limit' for key in limits if key not in known)
    bounds = {
        "maxTokensPerRun": (MIN_TOKENS_PER_RUN, None),
        "maxToolCallsPerRun": (1, None),
        "workflowTimeoutMinutes": (1, MAX_WORKFLOW_TIMEOUT_MINUTES),
    }
    for key, (minimum, maximum) in bounds.items():
        value = limits.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f'"limits.{key}" must be an integer')
            continue
        if value < minimum:
            errors.append(f'"limits.{key}" must be >= {minimum}')
        if maximum is not None and value > maximum:
            errors.append(f'"limits.{key}" must be <= {maximum}')
    return errors


def parse_settings_document(payload: dict[str, Any]) -> Settings:
    """Convert a validated settings document into typed settings."""

    trust_policy: TrustPolicy | None = None
    raw_policy = payload.get("trustPolicy")
    if isinstance(raw_policy, dict):
        trust_policy = TrustPolicy(
            trusted_users=tuple(raw_policy.get("trustedUsers") or ()),
            semi_trusted_roles=tuple(raw_policy.get("semiTrustedRoles") or ()),
            untrusted_behavior=UntrustedBehavior(
                raw_policy.get("untrustedBehavior") or UntrustedBehavior.BLOCK.value,
            ),
        )

    raw_limits = payload.get("limits") or {}
    return Settings(
        agent=AgentSettings(
            provider=payload["defaultProvider"].strip(),
            model=payload["defaultModel"].strip(),
            thinking_level=payload.get("defaultThinkingLevel") or DEFAULT_THINKING_LEVEL,
        ),
        trust_policy=trust_policy,
        limits=RunLimits(
            max_tokens_per_run=raw_limits.get("maxTokensPerRun"),
            max_tool_calls_per_run=raw_limits.get("maxToolCallsPerRun"),
            workflow_timeout_minutes=raw_limits.get("workflowTimeoutMinutes"),
        ),
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ConfigError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ConfigError(f"Invalid number for {name}: {value!r}") from error
