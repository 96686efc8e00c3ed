"""
rollout - command-line interface for the canaryctl controller.

Commands:
- rollout start: Start a rollout (stages from --stage P:SECONDS or --file)
- rollout status: Show one deployment
- rollout list: List deployments
- rollout events: Show the audited transitions of a deployment
- rollout abort: Roll a deployment back
- rollout promote: Force-promote a monitoring deployment
- rollout serve: Start the HTTP API server
- rollout info: Show version and configuration

Exit codes: 0 success, 1 validation error, 2 not found, 3 conflict with the
current rollout state, 4 API unreachable or unexpected response.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from canaryctl.sdk import (
    DEFAULT_BASE_URL,
    RolloutClientError,
    RolloutConflictError,
    RolloutHTTPClient,
    RolloutNotFoundError,
    RolloutValidationError,
)

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_NOT_FOUND = 2
EXIT_CONFLICT = 3
EXIT_UNAVAILABLE = 4


class UsageError(Exception):
    """Bad local input (stage syntax, unreadable file); exits with code 1."""


def _get_env_port(default: int = 8080) -> int:
    """Get port from PORT environment variable with safe parsing."""
    port_str = os.environ.get("PORT")
    if port_str is None:
        return default
    try:
        return int(port_str)
    except ValueError:
        return default


def parse_stage(text: str) -> dict[str, Any]:
    """Parse ``PERCENT:SECONDS`` (e.g. ``25:300``) into a schedule entry."""
    percent, sep, seconds = text.partition(":")
    if not sep:
        raise UsageError(f"stage '{text}' must look like PERCENT:SECONDS")
    try:
        return {"percentage": int(percent), "minDurationSeconds": float(seconds)}
    except ValueError as e:
        raise UsageError(f"stage '{text}' must look like PERCENT:SECONDS") from e


def _schedule_from_file(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        raise UsageError("'schedule' in the rollout file must be a list")
    schedule = []
    for entry in value:
        if isinstance(entry, str):
            schedule.append(parse_stage(entry))
        elif isinstance(entry, dict):
            schedule.append({
                "percentage": entry.get("percentage"),
                "minDurationSeconds": entry.get(
                    "minDurationSeconds", entry.get("min_duration_seconds")
                ),
            })
        else:
            raise UsageError(f"unsupported schedule entry: {entry!r}")
    return schedule


_FILE_KEYS = {
    "deployment_id": "deploymentId",
    "stable_version_id": "stableVersionId",
    "canary_version_id": "canaryVersionId",
    "rollout_timeout_seconds": "rolloutTimeoutSeconds",
}

_THRESHOLD_FLAGS = {
    "max_error_rate": "maxAbsoluteErrorRate",
    "max_p99_latency_ms": "maxAbsoluteP99Latency",
    "max_error_ratio": "maxRelativeErrorRatio",
    "max_latency_ratio": "maxRelativeLatencyRatio",
    "min_samples": "minSampleCount",
}


def build_start_body(args: argparse.Namespace) -> dict[str, Any]:
    """Merge ``--file`` with command-line flags; flags win."""
    body: dict[str, Any] = {}
    if args.file:
        try:
            loaded = yaml.safe_load(Path(args.file).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise UsageError(f"cannot read {args.file}: {e}") from e
        if not isinstance(loaded, dict):
            raise UsageError(f"{args.file} must contain a mapping")
        for key, value in loaded.items():
            body[_FILE_KEYS.get(key, key)] = value
        if "schedule" in body:
            body["schedule"] = _schedule_from_file(body["schedule"])
        elif "stages" in body:
            body["schedule"] = _schedule_from_file(body.pop("stages"))

    if args.deployment_id:
        body["deploymentId"] = args.deployment_id
    if args.stable:
        body["stableVersionId"] = args.stable
    if args.canary:
        body["canaryVersionId"] = args.canary
    if args.stage:
        body["schedule"] = [parse_stage(s) for s in args.stage]
    if args.timeout is not None:
        body["rolloutTimeoutSeconds"] = args.timeout

    thresholds = dict(body.get("thresholds") or {})
    for flag, field in _THRESHOLD_FLAGS.items():
        value = getattr(args, flag)
        if value is not None:
            thresholds[field] = value
    if thresholds:
        body["thresholds"] = thresholds

    missing = [k for k in ("deploymentId", "stableVersionId", "canaryVersionId", "schedule")
               if not body.get(k)]
    if missing:
        raise UsageError(f"missing {', '.join(missing)} (use flags or --file)")
    return body


def _print_status(status: dict[str, Any]) -> None:
    weights = status.get("weights", {})
    print(f"Deployment:  {status.get('deploymentId')}")
    print(f"State:       {status.get('state')}")
    print(f"Versions:    stable={status.get('stableVersionId')} "
          f"canary={status.get('canaryVersionId')}")
    print(f"Weights:     stable={weights.get('stable')}% canary={weights.get('canary')}%")
    print(f"Stage:       {status.get('stageIndex', 0) + 1}/{status.get('stageCount')}")
    elapsed = status.get("stageElapsedSeconds")
    if elapsed is not None:
        print(f"Elapsed:     {elapsed:.0f}s")
    print(f"Verdict:     {status.get('lastVerdict') or '-'}")
    if status.get("reason"):
        print(f"Reason:      {status['reason']}")


def _emit(args: argparse.Namespace, payload: Any) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    elif isinstance(payload, dict):
        _print_status(payload)


def _client(args: argparse.Namespace) -> RolloutHTTPClient:
    return RolloutHTTPClient(base_url=args.url, timeout=args.request_timeout)


def cmd_start(args: argparse.Namespace) -> int:
    status = _client(args).start(build_start_body(args))
    _emit(args, status)
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    _emit(args, _client(args).status(args.deployment_id))
    return EXIT_OK


def cmd_abort(args: argparse.Namespace) -> int:
    _emit(args, _client(args).abort(args.deployment_id, args.reason))
    return EXIT_OK


def cmd_promote(args: argparse.Namespace) -> int:
    _emit(args, _client(args).promote(args.deployment_id))
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    rollouts = _client(args).list_rollouts()
    if args.json:
        print(json.dumps(rollouts, indent=2, default=str))
        return EXIT_OK
    if not rollouts:
        print("No rollouts.")
        return EXIT_OK
    print(f"{'DEPLOYMENT':<24} {'STATE':<20} {'CANARY':>6}  VERDICT")
    for r in rollouts:
        canary = r.get("weights", {}).get("canary", 0)
        print(f"{r.get('deploymentId', ''):<24} {r.get('state', ''):<20} "
              f"{canary:>5}%  {r.get('lastVerdict') or '-'}")
    return EXIT_OK


def cmd_events(args: argparse.Namespace) -> int:
    events = _client(args).events(args.deployment_id)
    if args.json:
        print(json.dumps(events, indent=2, default=str))
        return EXIT_OK
    for e in events:
        marker = "" if e.get("persisted", True) else " [unpersisted]"
        print(f"#{e.get('sequence'):<4} {e.get('timestamp'):>14.3f}  "
              f"{e.get('fromState')} -> {e.get('toState')}  {e.get('reason')}{marker}")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP API server.

    HOST and PORT environment variables are the defaults for --host and
    --port.
    """
    from canaryctl.entrypoints.serve import serve

    print(f"Starting canaryctl API on {args.host}:{args.port}")
    print(f"Config: {args.config or os.environ.get('CONFIG_PATH', 'config/default_config.yaml')}")
    return serve(
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        config_path=args.config,
    )


def cmd_info(args: argparse.Namespace) -> int:
    from canaryctl import __version__

    print("=" * 60)
    print("canaryctl - progressive canary rollout controller")
    print("=" * 60)
    print(f"Version:     {__version__}")
    print(
        f"Python:      {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    )
    print(f"API URL:     {args.url}")
    print(f"Config:      {os.environ.get('CONFIG_PATH', 'config/default_config.yaml')}")
    print()
    print("HTTP Endpoints:")
    print("  POST /rollouts                     - Start a rollout")
    print("  GET  /rollouts/{id}                - Rollout status")
    print("  POST /rollouts/{id}/abort          - Abort and roll back")
    print("  POST /rollouts/{id}/promote        - Force promotion")
    print("  POST /rollouts/{id}/metrics        - Report a request outcome")
    print("  GET  /health/metrics               - Prometheus metrics")
    print("=" * 60)
    return EXIT_OK


_COMMANDS = {
    "start": cmd_start,
    "status": cmd_status,
    "abort": cmd_abort,
    "promote": cmd_promote,
    "list": cmd_list,
    "events": cmd_events,
    "serve": cmd_serve,
    "info": cmd_info,
}


def build_parser() -> argparse.ArgumentParser:
    from canaryctl import __version__

    parser = argparse.ArgumentParser(
        prog="rollout",
        description="canaryctl - progressive canary rollout controller",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--url",
        default=os.environ.get("CANARYCTL_API_URL", DEFAULT_BASE_URL),
        help=f"API base URL (default: CANARYCTL_API_URL or {DEFAULT_BASE_URL})",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=None,
        help="HTTP timeout in seconds",
    )
    parser.add_argument("--json", action="store_true", help="Print raw JSON responses")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start a rollout")
    start_parser.add_argument("deployment_id", nargs="?", help="Deployment id")
    start_parser.add_argument("--stable", help="Stable version id")
    start_parser.add_argument("--canary", help="Canary version id")
    start_parser.add_argument(
        "--stage",
        action="append",
        metavar="PERCENT:SECONDS",
        help="Schedule stage; repeat in ascending order, last one 100",
    )
    start_parser.add_argument("-f", "--file", help="YAML rollout definition")
    start_parser.add_argument("--timeout", type=float, help="Overall rollout timeout (seconds)")
    start_parser.add_argument("--max-error-rate", type=float, help="Absolute canary error rate")
    start_parser.add_argument("--max-p99-latency-ms", type=float, help="Absolute canary p99 (ms)")
    start_parser.add_argument("--max-error-ratio", type=float, help="Canary/stable error ratio")
    start_parser.add_argument("--max-latency-ratio", type=float, help="Canary/stable p99 ratio")
    start_parser.add_argument("--min-samples", type=int, help="Minimum samples per version")

    status_parser = subparsers.add_parser("status", help="Show a rollout")
    status_parser.add_argument("deployment_id")

    abort_parser = subparsers.add_parser("abort", help="Abort a rollout and revert to stable")
    abort_parser.add_argument("deployment_id")
    abort_parser.add_argument("--reason", help="Reason recorded in the audit trail")

    promote_parser = subparsers.add_parser("promote", help="Force-promote a monitoring rollout")
    promote_parser.add_argument("deployment_id")

    subparsers.add_parser("list", help="List rollouts")

    events_parser = subparsers.add_parser("events", help="Show audited transitions")
    events_parser.add_argument("deployment_id")

    serve_parser = subparsers.add_parser("serve", help="Start HTTP API server")
    serve_parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0, or HOST env var)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=_get_env_port(8080),
        help="Port to bind to (default: 8080, or PORT env var)",
    )
    serve_parser.add_argument("--config", type=str, help="Path to configuration file")
    serve_parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    subparsers.add_parser("info", help="Show version and configuration")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_OK

    try:
        return handler(args)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_VALIDATION
    except RolloutValidationError as e:
        print(f"Rejected: {e}", file=sys.stderr)
        return EXIT_VALIDATION
    except RolloutNotFoundError as e:
        print(f"Not found: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except RolloutConflictError as e:
        print(f"Conflict: {e}", file=sys.stderr)
        return EXIT_CONFLICT
    except RolloutClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNAVAILABLE


if __name__ == "__main__":
    sys.exit(main())
