from __future__ import annotations

import allure
import pytest

from issue_pilot.orchestrator.commands import (
    AGENT_COMMAND,
    MUTATION_COMMANDS,
    SUPPORTED_COMMANDS,
    UNKNOWN_COMMAND,
    is_mutation_invocation,
    parse_command,
    render_help,
)

pytestmark = [
    allure.epic("Commands"),
    allure.feature("Comment Classification"),
]


def test_plain_text_is_agent_turn_with_full_trimmed_text() -> None:
    parsed = parse_command("  please fix the bug\nin /config handling  ")

    assert parsed.command == AGENT_COMMAND
    assert parsed.args == []
    assert parsed.raw_text == "please fix the bug\nin /config handling"
    assert parsed.is_agent_turn


def test_slash_command_splits_on_whitespace_runs_and_casefolds_name() -> None:
    parsed = parse_command("/CONFIG   set\tprovider  openai\nextra body line")

    assert parsed.command == "config"
    assert parsed.args == ["set", "provider", "openai"]
    assert parsed.is_known


def test_only_first_line_is_inspected() -> None:
    parsed = parse_command("hello\n/config set provider openai")

    assert parsed.is_agent_turn


def test_unregistered_command_is_returned_verbatim() -> None:
    parsed = parse_command("/frobnicate now")

    assert parsed.command == "frobnicate"
    assert parsed.args == ["now"]
    assert not parsed.is_known


def test_bare_prefix_is_unknown() -> None:
    parsed = parse_command("/   ")

    assert parsed.command == UNKNOWN_COMMAND
    assert parsed.args == []


def test_empty_input_is_an_agent_turn() -> None:
    parsed = parse_command("")

    assert parsed.is_agent_turn
    assert parsed.raw_text == ""


@pytest.mark.parametrize(
    ("command", "args", "expected"),
    [
        ("config", ["get", "provider"], False),
        ("config", ["set", "provider", "openai"], True),
        ("config", [], True),
        ("plugins", ["install", "x"], True),
        ("plugins", ["list"], False),
        ("status", [], False),
        ("frobnicate", ["set"], False),
    ],
)
def test_mutation_invocation(command: str, args: list[str], expected: bool) -> None:
    assert is_mutation_invocation(command, args) is expected


def test_mutation_set_matches_registry_flags() -> None:
    assert {name for name, item in SUPPORTED_COMMANDS.items() if item.mutation} == MUTATION_COMMANDS
    assert AGENT_COMMAND not in MUTATION_COMMANDS


def test_help_lists_every_command() -> None:
    text = render_help()

    assert text.startswith("## Available Slash Commands")
    for name in SUPPORTED_COMMANDS:
        assert f"`/{name}`" in text
