"""Command-line interface for companionguard."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from typing import cast

from .config import AppConfig
from .safety import ActionRequest, ActionResult, SafetyVerdict
from .service import CompanionService

LOGGER = logging.getLogger(__name__)


class CLIArgs(argparse.Namespace):
    subcommand: str
    action: str
    path: str | None
    destination: str | None
    shell_command: str | None
    content: str | None
    process_name: str | None
    app_name: str | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="companionguard", description="Local safety gate for companion actions"
    )
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    check = subparsers.add_parser("check", help="Show the verdict for an action without running it")
    check.add_argument("--action", default="run_shell_command")
    check.add_argument("--path")
    check.add_argument("--command", dest="shell_command")

    run = subparsers.add_parser("run", help="Execute an action, asking before risky ones")
    run.add_argument("action")
    run.add_argument("--path")
    run.add_argument("--destination")
    run.add_argument("--command", dest="shell_command")
    run.add_argument("--content")
    run.add_argument("--process", dest="process_name")
    run.add_argument("--app", dest="app_name")

    subparsers.add_parser("prompt", help="Print the safety policy text")
    subparsers.add_parser("status", help="Print companion status")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    LOGGER.debug("cli_subcommand", extra={"subcommand": args.subcommand})

    with CompanionService.from_config(config) as service:
        if args.subcommand == "prompt":
            print(service.get_safety_prompt())
            return 0
        if args.subcommand == "status":
            _print_json(service.get_status().to_dict())
            return 0
        if args.subcommand == "check":
            verdict = service.check_safety(args.action, path=args.path, command=args.shell_command)
            _print_json(verdict.to_dict())
            return 0 if verdict.allowed else 1
        return _run(service, _request_from_args(args))


def _request_from_args(args: CLIArgs) -> ActionRequest:
    return ActionRequest(
        action=args.action,
        path=args.path,
        destination=args.destination,
        command=args.shell_command,
        content=args.content,
        process_name=args.process_name,
        app_name=args.app_name,
    )


def _run(service: CompanionService, request: ActionRequest) -> int:
    result = service.execute_action(request)
    if _awaits_confirmation(result):
        if not _confirm_action(request, result.safety):
            print("Action declined.")
            _print_json(result.to_dict())
            return 1
        result = service.execute_action(replace(request, confirmed=True))

    _print_json(result.to_dict())
    return 0 if result.success else 1


def _awaits_confirmation(result: ActionResult) -> bool:
    return (
        not result.success
        and result.safety.allowed
        and result.safety.requires_confirmation
        and result.error is None
    )


def _confirm_action(request: ActionRequest, verdict: SafetyVerdict) -> bool:
    print("\n=== ACTION CONFIRMATION ===")
    print(f"Action: {request.action}")
    target = request.command or request.path or request.process_name or request.app_name
    if target:
        print(f"Target: {target}")
    if request.destination:
        print(f"Destination: {request.destination}")
    print(f"Risk: {verdict.risk.label}")
    print(f"Reason: {verdict.reason}")
    print("===========================")
    choice = input("Run this action? [y/N]: ").strip().lower()
    return choice in {"y", "yes"}


def _print_json(payload: dict[str, object]) -> None:
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    raise SystemExit(main())
