"""Smoke tests for the tracemind command line interface."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

from tracemind.cli import main

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_cli_help() -> None:
    """The CLI should render a help message without errors."""

    result = subprocess.run(
        [sys.executable, "-m", "tracemind.cli", "--help"],
        cwd=REPO_ROOT,
        check=True,
        capture_output=True,
        text=True,
    )
    assert "usage:" in result.stdout
    assert "directive" in result.stdout


def test_verbose_flag_installs_debug_logging() -> None:
    result = subprocess.run(
        [sys.executable, "-m", "tracemind.cli", "--verbose", "directive", "hello"],
        cwd=REPO_ROOT,
        check=True,
        capture_output=True,
        text=True,
    )
    assert "Logging configured at level DEBUG" in result.stderr
    assert json.loads(result.stdout)["intent_type"] == "other"


def test_directive_command_prints_json(capsys) -> None:
    assert main(["directive", "play something slow", "--music"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["primary_mode"] == "studios"
    assert payload["constraints"]["suppress_soundscapes"] is True
    assert payload["weird"] is False


def test_directive_command_reads_signal_file(tmp_path, capsys) -> None:
    signals = tmp_path / "signals.json"
    signals.write_text(json.dumps({"doorways": {"triggered_door": "grief"}}))

    assert main(["directive", "it has been a year", "--signals", str(signals), "--crisis"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["mode"] == "crisis"
    assert payload["selected_context"]["doorway_hint"] == "grief"


def test_directive_command_rejects_bad_signal_file(tmp_path, capsys) -> None:
    signals = tmp_path / "signals.json"
    signals.write_text("[1, 2, 3]")

    assert main(["directive", "hello", "--signals", str(signals)]) == 1
    assert "must contain a JSON object" in capsys.readouterr().err


def test_context_command_assembles_block(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "context.json"
    source.write_text(
        json.dumps(
            {
                "core_memory": {"user_facts": ["has a dog"]},
                "session_summaries": ["Talked about the dog."],
                "recent_messages": [{"role": "user", "content": "walked Biscuit"}],
            }
        )
    )

    assert main(["context", str(source), "--show-tokens"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("# ")
    assert "/ 2500 tokens" in out.splitlines()[0]
    assert "- Facts: has a dog" in out
    assert '- "walked Biscuit"' in out


def test_context_command_missing_file(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    assert main(["context", str(tmp_path / "missing.json")]) == 1
    assert "Unable to read" in capsys.readouterr().err


def test_config_command_masks_api_key(tmp_path, capsys) -> None:
    config = tmp_path / "tracemind.json"
    config.write_text(
        json.dumps({"agents": {"openai_api_key": "sk-configured-key-123456"}, "context": {"token_budget": 900}})
    )

    assert main(["config", "--config", str(config)]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["agents"]["openai_api_key"] == "***"
    assert payload["context"]["token_budget"] == 900


def test_config_command_reports_bad_file(tmp_path, capsys) -> None:
    assert main(["config", "--config", str(tmp_path / "nope.json")]) == 1
    assert "Failed to load configuration" in capsys.readouterr().err
