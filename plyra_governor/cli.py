"""
plyra-governor CLI
~~~~~~~~~~~~~~~~~~

Command-line interface for plyra-governor.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

# Exit status a hook script reads as "refuse the action".
_REFUSED_EXIT_CODE = 2


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to governor_config.yaml",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database path (default: ~/.plyra/governor.db)",
    )


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="plyra-governor",
        description="plyra-governor: budget and approval governance for coding agents",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    subparsers = parser.add_subparsers(dest="command")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP sidecar server")
    _add_common_options(serve_parser)
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address (default: sidecar.host from config, 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port number (default: sidecar.port from config, 23847)",
    )

    # version command
    subparsers.add_parser("version", help="Show version")

    # check command
    check_parser = subparsers.add_parser(
        "check", help="Evaluate one hook payload and print the decision"
    )
    _add_common_options(check_parser)
    check_parser.add_argument(
        "--payload",
        type=str,
        default=None,
        help="Hook payload as JSON, or @path to read it from a file (default: stdin)",
    )

    # install-defaults command
    defaults_parser = subparsers.add_parser(
        "install-defaults", help="Install the built-in approval policies"
    )
    _add_common_options(defaults_parser)

    # status command
    status_parser = subparsers.add_parser(
        "status", help="Show budgets, policies and pending approvals"
    )
    _add_common_options(status_parser)

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from plyra_governor import __version__

        print(f"plyra-governor {__version__}")
        return

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "check":
        _run_check(args)
    elif args.command == "install-defaults":
        _run_install_defaults(args)
    elif args.command == "status":
        _run_status(args)
    else:
        parser.print_help()
        sys.exit(1)


def _make_governor(
    config_path: str | None, db_path: str | None, quiet: bool = False
) -> Any:
    """Create a Governor from config or defaults."""
    from plyra_governor.config.defaults import DEFAULT_CONFIG
    from plyra_governor.config.loader import load_config, load_config_from_dict
    from plyra_governor.core.governor import Governor

    config = load_config(config_path) if config_path else load_config_from_dict(DEFAULT_CONFIG)
    if db_path:
        config.storage.db_path = db_path
    if quiet:
        # stdout carries the decision itself
        config.observability.exporters = []
    return Governor(config=config)


def _read_payload(raw: str | None) -> dict[str, Any]:
    if raw is None:
        text = sys.stdin.read()
    elif raw.startswith("@"):
        with open(raw[1:], encoding="utf-8") as f:
            text = f.read()
    else:
        text = raw
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        print(f"Error: Invalid JSON payload: {exc}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(payload, dict):
        print("Error: Hook payload must be a JSON object", file=sys.stderr)
        sys.exit(1)
    return payload


def _run_serve(args: argparse.Namespace) -> None:
    """Start the HTTP sidecar server."""
    governor = _make_governor(args.config, args.db)
    host = args.host or governor.config.sidecar.host
    port = args.port or governor.config.sidecar.port
    print(f"Starting plyra-governor sidecar on {host}:{port}")
    governor.serve(host=host, port=port)


def _run_check(args: argparse.Namespace) -> None:
    """Evaluate a hook payload against local state."""
    from plyra_governor.exceptions import GovernanceValidationError

    payload = _read_payload(args.payload)
    governor = _make_governor(args.config, args.db, quiet=True)
    try:
        response = governor.handle_event(payload)
    except GovernanceValidationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        governor.close()

    print(json.dumps(response.to_dict()))
    if not response.decision.is_permissive():
        sys.exit(_REFUSED_EXIT_CODE)


def _run_install_defaults(args: argparse.Namespace) -> None:
    """Install the built-in policies."""
    governor = _make_governor(args.config, args.db, quiet=True)
    try:
        created = governor.policy_engine.install_default_policies()
    finally:
        governor.close()
    if not created:
        print("Default policies already installed.")
        return
    for policy in created:
        print(f"  + {policy.name} ({policy.matcher} -> {policy.action.value})")


def _run_status(args: argparse.Namespace) -> None:
    """Print a short governance summary."""
    governor = _make_governor(args.config, args.db, quiet=True)
    try:
        budgets = governor.ledger.get_all_budgets()
        policies = governor.policy_engine.get_all_policies()
        pending = governor.policy_engine.get_pending_approvals()
    finally:
        governor.close()

    print(f"Budgets ({len(budgets)}):")
    for budget in budgets:
        target = budget.session_id or budget.project_path or "*"
        print(
            f"  [{budget.id}] {budget.scope:<8} {target}  "
            f"${budget.spent_usd:.2f} / ${budget.limit_usd:.2f}"
        )
    print(f"Policies ({len(policies)}):")
    for policy in policies:
        state = "on " if policy.enabled else "off"
        print(f"  [{policy.id}] {state} p={policy.priority:<4} {policy.name}: {policy.matcher}")
    print(f"Pending approvals: {len(pending)}")


if __name__ == "__main__":
    main()
