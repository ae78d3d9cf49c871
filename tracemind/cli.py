"""Command line diagnostics for tracemind."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from tracemind.brain.diagnostics import is_weird
from tracemind.brain.synthesis import TurnSignals, synthesize
from tracemind.config.manager import ConfigManager
from tracemind.memory.context import ContextAssembler
from tracemind.utils.exceptions import ConfigurationError, TraceMindError
from tracemind.utils.logging import LoggingManager


def _read_json_object(path: str) -> dict[str, Any]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Unable to read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return payload


def _load_config(path: str | None) -> ConfigManager:
    manager = ConfigManager.get_instance()
    if path:
        manager.load_from_file(path)
    else:
        manager.auto_load()
    return manager


def _handle_config(args: argparse.Namespace) -> int:
    try:
        manager = _load_config(args.config)
    except TraceMindError as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        return 1

    payload = manager.export_settings(include_sensitive=args.include_sensitive)
    print(json.dumps(payload, indent=2, default=str))
    return 0


def _handle_directive(args: argparse.Namespace) -> int:
    inputs: dict[str, Any] = {}
    if args.signals:
        try:
            inputs = _read_json_object(args.signals)
        except ConfigurationError as exc:
            print(str(exc), file=sys.stderr)
            return 1

    inputs["current_message"] = args.message
    if args.crisis:
        inputs["is_crisis"] = True
    if args.music:
        inputs["music_requested"] = True

    intent = synthesize(TurnSignals.from_mapping(inputs))
    payload = intent.model_dump(mode="json")
    payload["weird"] = is_weird(intent)
    print(json.dumps(payload, indent=2))
    return 0


def _handle_context(args: argparse.Namespace) -> int:
    try:
        manager = _load_config(args.config)
        payload = _read_json_object(args.input)
    except TraceMindError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    settings = manager.get_settings()
    assembler = ContextAssembler(settings.context, settings.memory)
    try:
        context = assembler.assemble(
            payload.get("core_memory"),
            payload.get("session_summaries") or [],
            payload.get("recent_messages") or [],
            trim_level=args.trim_level,
            compressions=payload.get("compressions") or [],
        )
    except TraceMindError as exc:
        print(f"Invalid context input: {exc}", file=sys.stderr)
        return 1

    if args.show_tokens:
        print(f"# {assembler.estimate(context)} / {settings.context.token_budget} tokens")
    print(context)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracemind",
        description="Diagnostics for the tracemind turn-synthesis and memory layer.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log at DEBUG level to stderr."
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    config = subparsers.add_parser("config", help="Print the effective configuration.")
    config.add_argument("--config", help="Path to a JSON or YAML configuration file.")
    config.add_argument(
        "--include-sensitive",
        action="store_true",
        help="Show API keys and database passwords unmasked.",
    )
    config.set_defaults(func=_handle_config)

    directive = subparsers.add_parser(
        "directive", help="Synthesize a turn directive for a message."
    )
    directive.add_argument("message", help="The user's message.")
    directive.add_argument(
        "--signals",
        help="Path to a JSON object with detector outputs (doorways, cognitive_intent, ...).",
    )
    directive.add_argument("--crisis", action="store_true", help="Assert the crisis flag.")
    directive.add_argument(
        "--music", action="store_true", help="Assert the music-request signal."
    )
    directive.set_defaults(func=_handle_directive)

    context = subparsers.add_parser(
        "context", help="Assemble a memory context block from JSON inputs."
    )
    context.add_argument(
        "input",
        help=(
            "Path to a JSON object with core_memory, session_summaries, "
            "recent_messages and compressions."
        ),
    )
    context.add_argument("--config", help="Path to a JSON or YAML configuration file.")
    context.add_argument(
        "--trim-level", type=int, default=0, help="0 (full) to 2 (tightest)."
    )
    context.add_argument(
        "--show-tokens", action="store_true", help="Print the estimated token count first."
    )
    context.set_defaults(func=_handle_context)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        settings = ConfigManager.get_instance().get_settings()
        LoggingManager.setup_logging(settings.logging, verbose=True)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == "__main__":  # pragma: no cover - invoked manually
    sys.exit(main())
