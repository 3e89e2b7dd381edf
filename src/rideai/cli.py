"""RideAI CLI: invoke features, validate credentials, read usage, serve.

Usage:
    rideai invoke price --payload '{"distance": 8.5, "time": 25}'
    rideai validate openai
    rideai usage --url http://127.0.0.1:8001
    rideai serve --port 8001
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import httpx

from .config import SystemConfig
from .interfaces import Feature


def _setup_logging(debug: bool) -> None:
    # stdout carries command output; logs go to stderr
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _load_config(args: argparse.Namespace) -> SystemConfig:
    config = SystemConfig.from_file(args.config) if args.config else SystemConfig.from_env()
    if args.debug:
        config.debug = True
    return config


def _read_payload(raw: Optional[str]) -> dict[str, Any]:
    """Payload from inline JSON or ``@path/to/file.json``."""
    if not raw:
        return {}
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("payload must be a JSON object")
    return payload


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _invoke(config: SystemConfig, feature: Feature, payload: dict) -> dict:
    from .system import RideAISystem

    async with RideAISystem(config) as system:
        result = await system.invoke(feature, payload)
    return result.to_dict()


async def _validate(config: SystemConfig, provider_id: str) -> tuple[bool, Optional[str]]:
    from .system import RideAISystem

    async with RideAISystem(config) as system:
        result = await system.validate_credential(provider_id)
    return result.valid, result.reason


def cmd_invoke(args: argparse.Namespace) -> int:
    """Invoke one feature in-process and print the result."""
    try:
        payload = _read_payload(args.payload)
    except (OSError, ValueError) as e:
        print(f"Invalid payload: {e}", file=sys.stderr)
        return 2

    config = _load_config(args)
    result = asyncio.run(_invoke(config, Feature(args.feature), payload))
    _print_json(result)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Probe a provider with the configured credential."""
    config = _load_config(args)
    valid, reason = asyncio.run(_validate(config, args.provider))
    if valid:
        print(f"{args.provider}: valid")
        return 0
    print(f"{args.provider}: invalid ({reason})")
    return 1


def cmd_usage(args: argparse.Namespace) -> int:
    """Read (or reset) usage counters from a running server."""
    base = args.url.rstrip("/")
    try:
        with httpx.Client(timeout=10.0) as client:
            if args.reset:
                response = client.post(f"{base}/v1/usage/reset")
            else:
                response = client.get(f"{base}/v1/usage")
            response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Could not reach {base}: {e}", file=sys.stderr)
        return 1
    _print_json(response.json())
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP server."""
    from .server.app import run_server

    config = _load_config(args)
    run_server(
        config=config,
        host=args.host,
        port=args.port,
        log_level=args.log_level or ("debug" if config.debug else "info"),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rideai",
        description="RideAI: AI request orchestration for rideshare operators",
    )
    parser.add_argument("--config", "-c", type=str, default=None,
                        help="Path to YAML config file (default: environment)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # invoke
    invoke_parser = subparsers.add_parser("invoke", help="Invoke an AI feature")
    invoke_parser.add_argument("feature", choices=[f.value for f in Feature])
    invoke_parser.add_argument("--payload", "-d", type=str, default=None,
                               help="JSON object, or @file.json")

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a provider credential")
    validate_parser.add_argument("provider", choices=["openai", "gemini", "mapbox"])

    # usage
    usage_parser = subparsers.add_parser("usage", help="Show usage from a running server")
    usage_parser.add_argument("--url", type=str, default="http://127.0.0.1:8001")
    usage_parser.add_argument("--reset", action="store_true", help="Zero all counters")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", "-p", type=int, default=None)
    serve_parser.add_argument("--log-level", type=str, default=None,
                              choices=["debug", "info", "warning", "error"])

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.debug)

    commands = {
        "invoke": cmd_invoke,
        "validate": cmd_validate,
        "usage": cmd_usage,
        "serve": cmd_serve,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
