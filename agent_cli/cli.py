"""CLI entry point: agent-cli init|status|next|add|complete|block|unblock|reset|context|report|run."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import AgentCliError

if TYPE_CHECKING:
    from .driver import AgentDriver

STATUS_SYMBOLS = {
    "completed": "DONE",
    "in_progress": "WORK",
    "blocked": "BLCK",
    "pending": "----",
}


def _fraction(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if not 0 < number <= 1:
        raise argparse.ArgumentTypeError(f"must be in (0, 1]: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-cli",
        description="Feature tracking and context monitoring for assistant-driven development",
    )
    parser.add_argument(
        "--project", "-p", type=str, default=".",
        help="Project directory (default: current dir)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- init ---
    init_cmd = subparsers.add_parser("init", help="Create feature list, agent.toml and progress log")
    init_cmd.add_argument("--name", type=str, help="Project name (default: directory name)")
    init_cmd.add_argument("--description", type=str, default="", help="Project description")
    init_cmd.add_argument("--no-git", action="store_true", help="Do not initialize a git repository")

    # --- status ---
    subparsers.add_parser("status", help="Show every feature and its status")

    # --- next ---
    next_cmd = subparsers.add_parser("next", help="Show the next feature to work on")
    next_cmd.add_argument("--feature", type=str, help="Pick this feature (bypasses eligibility)")
    next_cmd.add_argument("--start", action="store_true", help="Mark it in progress")
    next_cmd.add_argument("--prompt", action="store_true", help="Print the assistant prompt")

    # --- add ---
    add_cmd = subparsers.add_parser("add", help="Add a feature")
    add_cmd.add_argument("description", type=str)
    add_cmd.add_argument("--id", dest="feature_id", type=str, help="Explicit id (default: next feature-NNN)")
    add_cmd.add_argument("--category", type=str)
    add_cmd.add_argument("--priority", type=str)
    add_cmd.add_argument("--complexity", type=str)
    add_cmd.add_argument(
        "--depends-on", dest="dependencies", action="append", default=[],
        help="Dependency id (repeatable)",
    )
    add_cmd.add_argument(
        "--step", dest="steps", action="append", default=[],
        help="Implementation step (repeatable)",
    )

    # --- complete ---
    complete_cmd = subparsers.add_parser("complete", help="Verify and complete an in-progress feature")
    complete_cmd.add_argument("feature_id", type=str)
    complete_cmd.add_argument("--no-verify", action="store_true", help="Skip the test command")
    complete_cmd.add_argument("--no-commit", action="store_true", help="Disable auto-commit")

    # --- block / unblock / reset ---
    block_cmd = subparsers.add_parser("block", help="Mark a feature blocked")
    block_cmd.add_argument("feature_id", type=str)
    block_cmd.add_argument("--reason", type=str)
    unblock_cmd = subparsers.add_parser("unblock", help="Return a blocked feature to pending")
    unblock_cmd.add_argument("feature_id", type=str)
    reset_cmd = subparsers.add_parser("reset", help="Reopen a feature as pending")
    reset_cmd.add_argument("feature_id", type=str)

    # --- context ---
    context_cmd = subparsers.add_parser(
        "context", help="Monitor context usage of a conversation or of files sent as messages",
    )
    context_cmd.add_argument("files", nargs="*", type=str, help="Files sent as user messages")
    context_cmd.add_argument(
        "--input", dest="input_file", type=str,
        help="JSON conversation: a list of {role, content} messages or {\"messages\": [...]}",
    )
    context_cmd.add_argument("--threshold", type=_fraction, help="Warning threshold in (0, 1]")
    context_cmd.add_argument("--model", type=str, help="Model override")
    context_cmd.add_argument("--max-output-tokens", dest="max_output_tokens", type=int)

    # --- report ---
    report_cmd = subparsers.add_parser("report", help="Project progress report")
    report_cmd.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON")

    # --- run ---
    run_cmd = subparsers.add_parser("run", help="Work through features with verification")
    run_cmd.add_argument("--max-features", dest="max_features", type=int)
    run_cmd.add_argument("--dry-run", action="store_true", help="Show what would run without executing")
    run_cmd.add_argument("--model", type=str, help="Model override")
    run_cmd.add_argument("--max-retries", dest="max_retries", type=int, help="Max retries per command")
    run_cmd.add_argument("--no-commit", action="store_true", help="Disable auto-commit")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "init":
            return _init(args)
        driver = _make_driver(args)
        handler = COMMANDS[args.command]
        return handler(driver, args) or 0
    except AgentCliError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def _make_driver(args: argparse.Namespace) -> AgentDriver:
    from .config import load_config
    from .driver import AgentDriver

    cli_args = {
        "project": args.project,
        "model": getattr(args, "model", None),
        "max_retries": getattr(args, "max_retries", None),
    }
    config = load_config(cli_args)
    if getattr(args, "no_commit", False):
        config.auto_commit = False
    if getattr(args, "no_verify", False):
        config.run_tests = False
    if args.verbose:
        config.log_level = "DEBUG"
    return AgentDriver(config)


def _init(args: argparse.Namespace) -> int:
    from .config import AgentConfig
    from .logging_config import setup_logger
    from .scaffold import init_project

    project_dir = Path(args.project).resolve()
    # Console only: the log directory belongs to the project being created
    logger = setup_logger(AgentConfig(
        project_dir=project_dir,
        structured_log=False,
        log_level="DEBUG" if args.verbose else "INFO",
    ))
    written = asyncio.run(init_project(
        project_dir,
        name=args.name,
        description=args.description,
        git=not args.no_git,
        logger=logger.getChild("scaffold"),
    ))
    for path in written:
        print(f"Created {path.relative_to(project_dir)}")
    return 0


def _status(driver: AgentDriver, args: argparse.Namespace) -> int:
    from .report import get_progress_summary

    print(get_progress_summary(driver.store))
    print()
    for f in driver.store:
        symbol = STATUS_SYMBOLS[f.status.value]
        extra = ""
        unmet = driver.selector.unmet_dependencies(f)
        if f.status.value == "pending" and unmet:
            extra = f" [waiting on {', '.join(unmet)}]"
        print(f"  [{symbol}] {f.id}: {f.description}{extra}")
    return 0


def _next(driver: AgentDriver, args: argparse.Namespace) -> int:
    from .prompts import build_feature_prompt

    feature = driver.select_next(args.feature)
    if feature is None:
        if args.feature:
            print(f"Feature {args.feature} not found")
        else:
            print("No feature available")
        return 1

    if args.start:
        feature = driver.start_feature(feature.id)
    print(f"{feature.id} [{feature.priority.value}/{feature.estimated_complexity.value}]: {feature.description}")
    if args.prompt:
        print()
        print(build_feature_prompt(feature, driver.config))
    return 0


def _add(driver: AgentDriver, args: argparse.Namespace) -> int:
    data = {
        "id": args.feature_id,
        "description": args.description,
        "category": args.category,
        "priority": args.priority,
        "estimated_complexity": args.complexity,
        "dependencies": args.dependencies,
        "steps": args.steps,
    }
    feature = driver.add_feature({k: v for k, v in data.items() if v is not None})
    print(f"Added {feature.id}: {feature.description}")
    return 0


def _complete(driver: AgentDriver, args: argparse.Namespace) -> int:
    feature = asyncio.run(driver.finish_feature(args.feature_id))
    if feature.status.value == "completed":
        print(f"{feature.id} completed")
        return 0
    failed = [r for r in feature.test_results if not r.passed]
    print(f"{feature.id} failed verification; still in progress")
    if failed and failed[0].error:
        print(failed[0].error)
    return 1


def _block(driver: AgentDriver, args: argparse.Namespace) -> int:
    feature = driver.block_feature(args.feature_id, args.reason)
    print(f"{feature.id} blocked")
    return 0


def _unblock(driver: AgentDriver, args: argparse.Namespace) -> int:
    feature = driver.unblock_feature(args.feature_id)
    print(f"{feature.id} pending")
    return 0


def _reset(driver: AgentDriver, args: argparse.Namespace) -> int:
    feature = driver.reset_feature(args.feature_id)
    print(f"{feature.id} reset to pending")
    return 0


def _context(driver: AgentDriver, args: argparse.Namespace) -> int:
    from .tokens import load_messages

    if not args.files and not args.input_file:
        print("error: give files or --input", file=sys.stderr)
        return 1

    messages = []
    for name in args.files:
        path = Path(name)
        try:
            messages.append({"role": "user", "content": path.read_text(encoding="utf-8")})
        except OSError as e:
            print(f"error: cannot read {path}: {e}", file=sys.stderr)
            return 1
    if args.input_file:
        messages.extend(load_messages(Path(args.input_file)))

    if args.threshold is not None:
        driver.config.context.warning_threshold = args.threshold
    model = args.model or driver.config.model
    result = driver.monitor_conversation(messages, args.max_output_tokens, model)
    estimate = result.estimate
    print(f"Model:          {model}")
    print(f"Messages:       {len(messages)}")
    print(f"Input tokens:   {estimate.input_tokens}")
    print(f"Output tokens:  {estimate.output_tokens}")
    print(f"Total:          {estimate.total_tokens} / {driver.estimator.context_limit(model)}")
    print(f"Utilization:    {estimate.utilization:.1%} (threshold {driver.config.context.warning_threshold:.0%})")
    print(f"Recommended max output: {estimate.recommended_max_tokens}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if result.recommendations:
        print("Recommendations:")
        for rec in result.recommendations:
            print(f"  - {rec}")
    if result.summary is not None:
        stats = result.summary.token_statistics
        print(
            f"Session summary: {stats.total_tokens} tokens total, "
            f"peak {stats.peak_tokens}, average utilization {stats.average_utilization:.1%}"
        )
        for rec in result.summary.recommendations:
            print(f"  - {rec}")
    return 0


def _report(driver: AgentDriver, args: argparse.Namespace) -> int:
    from .report import build_report, render_report

    report = build_report(driver.store, driver.recorder)
    if args.as_json:
        print(json.dumps(report.model_dump(mode="json", by_alias=True), indent=2))
    else:
        print(render_report(report))
    return 0


def _run(driver: AgentDriver, args: argparse.Namespace) -> int:
    try:
        asyncio.run(driver.run(max_features=args.max_features, dry_run=args.dry_run))
    except KeyboardInterrupt:
        # Signal handler already saved state
        pass
    return 0


COMMANDS = {
    "status": _status,
    "next": _next,
    "add": _add,
    "complete": _complete,
    "block": _block,
    "unblock": _unblock,
    "reset": _reset,
    "context": _context,
    "report": _report,
    "run": _run,
}


def cli_entry() -> None:
    """Entry point for pyproject.toml console_scripts."""
    sys.exit(main())
