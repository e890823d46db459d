#!/usr/bin/env python3
"""
YieldSteward Command Line Interface.

Commands:
    - distribute: Run one keeper cycle (distribution when due)
    - check-validator: Report on the current validator, switching if invalid
    - status: Print balances, timing and drain status
    - drain: Request, execute or cancel the emergency drain
    - serve: Start the status API server

Usage:
    yieldsteward distribute [--skip-validator-check]
    yieldsteward check-validator [--no-switch]
    yieldsteward status
    yieldsteward drain {request,execute,cancel} --caller ID
    yieldsteward serve [--host HOST] [--port PORT] [--debug]
    yieldsteward --version

Configuration is read from the environment (and a .env file):
    STEWARD_CONFIG_FILE, STEWARD_STATE_FILE, STEWARD_STATE_BACKEND,
    STEWARD_GATEWAY_URL, STEWARD_GATEWAY_TIMEOUT, STEWARD_GATEWAY_TOKEN,
    LOG_LEVEL, LOG_FORMAT, HOST, PORT
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

__version__ = "0.1.0"


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_runtime():
    """Load the gateway, state store and treasury from the environment."""
    from chain_interface import StakingGatewayClient
    from keeper import load_treasury
    from storage import get_state_store

    gateway = StakingGatewayClient(
        endpoint=os.getenv("STEWARD_GATEWAY_URL", "http://localhost:9933"),
        timeout=int(os.getenv("STEWARD_GATEWAY_TIMEOUT", "30")),
        api_token=os.getenv("STEWARD_GATEWAY_TOKEN"),
    )
    store = get_state_store()
    treasury = load_treasury(os.getenv("STEWARD_CONFIG_FILE", "treasury.json"), gateway, store)
    return treasury, store


def cmd_distribute(args):
    """Run one keeper cycle."""
    from keeper import DistributionKeeper

    treasury, store = _build_runtime()
    keeper = DistributionKeeper(treasury, store, check_every=0)
    result = keeper.run_once(skip_validator_check=args.skip_validator_check)
    _print_json(result)
    return 1 if result["error"] else 0


def cmd_check_validator(args):
    """Report validator status, switching away from an invalid one unless --no-switch."""
    from keeper import DistributionKeeper

    treasury, store = _build_runtime()
    keeper = DistributionKeeper(treasury, store, check_every=0)
    status = keeper.check_validator_status(switch=not args.no_switch)
    if status["validator_switched"]:
        store.save_state(treasury.to_dict())
    _print_json(status)
    return 0 if status["success"] else 1


def cmd_status(args):
    """Print treasury status."""
    treasury, _ = _build_runtime()
    identity, position, is_valid = treasury.get_current_validator_info()
    pending, remaining = treasury.get_emergency_drain_status()
    _print_json({
        "staked_balance": treasury.get_staked_balance(),
        "principal_locked": treasury.principal_locked,
        "available_rewards": treasury.get_available_rewards(),
        "next_transfer_amount": treasury.get_next_transfer_amount(),
        "can_execute_transfer": treasury.can_execute_transfer(),
        "blocks_until_next_transfer": treasury.blocks_until_next_transfer(),
        "validator": {"identity": identity, "position": position, "is_valid": is_valid},
        "emergency_drain": {"pending": pending, "blocks_remaining": remaining},
        "recipients": treasury.get_recipient_count(),
    })
    return 0


def cmd_drain(args):
    """Request, execute or cancel the emergency drain."""
    treasury, store = _build_runtime()
    actions = {
        "request": treasury.request_emergency_drain,
        "execute": treasury.execute_emergency_drain,
        "cancel": treasury.cancel_emergency_drain,
    }
    result = actions[args.action](args.caller)
    store.save_state(treasury.to_dict())
    _print_json(result)
    return 0


def cmd_serve(args):
    """Start the status API server."""
    from api import run_server

    run_server(host=args.host, port=args.port, debug=args.debug)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yieldsteward",
        description="YieldSteward - autonomous staking yield distribution",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    distribute_parser = subparsers.add_parser("distribute", help="Run a distribution cycle if due")
    distribute_parser.add_argument(
        "--skip-validator-check", action="store_true", help="Skip the validator status report"
    )

    check_parser = subparsers.add_parser("check-validator", help="Check the current validator")
    check_parser.add_argument("--no-switch", action="store_true", help="Report only, never switch")

    subparsers.add_parser("status", help="Show treasury status")

    drain_parser = subparsers.add_parser("drain", help="Emergency drain operations")
    drain_parser.add_argument("action", choices=["request", "execute", "cancel"])
    drain_parser.add_argument("--caller", required=True, help="Identity of the caller")

    serve_parser = subparsers.add_parser("serve", help="Start the status API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    return parser


COMMANDS = {
    "distribute": cmd_distribute,
    "check-validator": cmd_check_validator,
    "status": cmd_status,
    "drain": cmd_drain,
    "serve": cmd_serve,
}


def main(argv=None):
    """Main CLI entry point."""
    load_dotenv()

    from monitoring import configure_logging
    from storage import StorageError
    from treasury_exceptions import TreasuryError

    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except TreasuryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except StorageError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
