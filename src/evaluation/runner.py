"""
Command-line front end for endpoint management and batch evaluation.

Usage (from project root):
    python -m src.evaluation.runner endpoints list
    python -m src.evaluation.runner endpoints add Staging https://staging.example.com
    python -m src.evaluation.runner endpoints probe --all
    python -m src.evaluation.runner credential set <API_KEY>
    python -m src.evaluation.runner evaluate ./faces --csv results.csv

Every command prints one success or failure line; per-item evaluation
errors only appear in the results table.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from config.service_config import validate_configuration
from src.identity_client.errors import EndpointNotFoundError, IdentityClientError
from src.identity_client.logging_config import configure_logging
from src.identity_client.registry import Endpoint, EndpointRegistry, EndpointStatus
from src.identity_client.session import IdentityClientState
from src.identity_client.storage import JsonFileStorage

from .config import MAX_CONCURRENCY
from .export import export_raw_responses_json, export_results_csv
from .models import BatchJobState
from .pipeline import BatchEvaluationPipeline, PipelineObserver


class ConsoleObserver(PipelineObserver):
    """Prints job start, per-item progress and completion; failures are printed by ``main``."""

    def __init__(self) -> None:
        self.total = 0
        self.done = 0

    def on_start(self, total: int) -> None:
        self.total = total
        self.done = 0
        plural = "s" if total != 1 else ""
        print(f"Evaluating {total} image{plural}...")

    def on_item(self, index: int, item) -> None:
        self.done += 1
        print(f"  [{self.done}/{self.total}] {item.source_ref}")

    def on_complete(self, count: int, elapsed_seconds: float) -> None:
        plural = "s" if count != 1 else ""
        print(f"Evaluation completed: {count} image{plural} processed in {elapsed_seconds:.1f}s")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def resolve_endpoint(registry: EndpointRegistry, id_or_tag: str) -> Endpoint:
    """
    Look an endpoint up by id, falling back to its tag.

    Raises:
        EndpointNotFoundError: Neither matches.
    """
    try:
        return registry.get(id_or_tag)
    except EndpointNotFoundError:
        endpoint = registry.find_by_tag(id_or_tag)
        if endpoint is None:
            raise
        return endpoint


def expand_inputs(paths: list[str]) -> list[Path]:
    """Expand directories to their files (sorted, non-recursive)."""
    expanded: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            expanded.extend(sorted(p for p in path.iterdir() if p.is_file()))
        else:
            expanded.append(path)
    return expanded


def read_base64_file(path: Path) -> list[str]:
    """One base64 image per non-blank line."""
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def print_endpoints(registry: EndpointRegistry) -> None:
    print(f"{'':2}{'TAG':<16}{'STATUS':<10}{'URL':<40}ID")
    for endpoint in registry.list():
        marker = "*" if endpoint.is_selected else " "
        status = "active" if endpoint.is_active else "inactive"
        print(f"{marker} {endpoint.tag:<16}{status:<10}{endpoint.url:<40}{endpoint.id}")


def print_results(job: BatchJobState) -> None:
    sep = "=" * 70
    print(f"\n{sep}")
    for item in job.items:
        print(f"{item.title:<24}{item.resolution:<14}{item.size_formatted:<12}{item.diagnostic}")
        for tag, diagnostic in item.sdk_diagnostics.items():
            print(f"{'':<24}SDK {tag}: {diagnostic}")
    print(f"{sep}\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_endpoints(args: argparse.Namespace, state: IdentityClientState) -> int:
    registry = state.registry

    if args.action == "list":
        print_endpoints(registry)
    elif args.action == "add":
        endpoint = registry.add(args.tag, args.url)
        print(f"Endpoint '{endpoint.tag}' added ({endpoint.id})")
    elif args.action == "update":
        endpoint = resolve_endpoint(registry, args.endpoint)
        fields = {k: v for k, v in (("tag", args.tag), ("url", args.url)) if v is not None}
        if not fields:
            print("Nothing to update: pass --tag and/or --url", file=sys.stderr)
            return 1
        updated = registry.update(endpoint.id, **fields)
        print(f"Endpoint '{updated.tag}' updated")
    elif args.action == "remove":
        endpoint = resolve_endpoint(registry, args.endpoint)
        registry.remove(endpoint.id)
        print(f"Endpoint '{endpoint.tag}' removed")
    elif args.action == "select":
        endpoint = registry.select(resolve_endpoint(registry, args.endpoint).id)
        print(f"Endpoint '{endpoint.tag}' selected")
    elif args.action == "probe":
        if args.all:
            results = registry.probe_all()
            for endpoint in registry.list():
                print(f"{endpoint.tag} is {results[endpoint.id].value}")
            return 0
        if args.url:
            status = registry.probe(url_override=args.url)
            label = args.url
        elif args.endpoint:
            endpoint = resolve_endpoint(registry, args.endpoint)
            status = registry.probe(endpoint_id=endpoint.id)
            label = endpoint.tag
        else:
            status = registry.probe()
            selected = registry.selected()
            label = selected.tag if selected else "selected endpoint"
        print(f"{label} is {status.value}")
        return 0 if status is EndpointStatus.ACTIVE else 1
    return 0


def _cmd_credential(args: argparse.Namespace, state: IdentityClientState) -> int:
    credential = state.credential

    if args.action == "set":
        credential.set(args.value)
        if not credential.is_configured():
            print("API key is empty; evaluation calls will be skipped", file=sys.stderr)
            return 1
        print("API key saved")
    elif args.action == "clear":
        credential.clear()
        print("API key cleared")
    else:
        print(credential.masked() if credential.is_configured() else "API key not configured")
    return 0


def _cmd_evaluate(args: argparse.Namespace, state: IdentityClientState) -> int:
    registry = state.registry
    sdk_ids = [resolve_endpoint(registry, tag).id for tag in args.sdk]
    if sdk_ids:
        # Only endpoints that answer their health check take part
        for endpoint_id in sdk_ids:
            registry.probe(endpoint_id=endpoint_id)

    pipeline = BatchEvaluationPipeline(
        state,
        observers=[ConsoleObserver()],
        max_concurrency=args.concurrency,
    )
    try:
        if args.base64_file:
            job = pipeline.run_base64(read_base64_file(Path(args.base64_file)), sdk_ids)
        else:
            job = pipeline.run(expand_inputs(args.paths), sdk_ids)

        print_results(job)
        if args.csv:
            export_results_csv(job.items, Path(args.csv))
            print(f"Results exported to {args.csv}")
        if args.json:
            export_raw_responses_json(job.items, Path(args.json))
            print(f"Raw responses exported to {args.json}")
    finally:
        pipeline.clear()
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-client",
        description="Manage service endpoints and run batch passive-liveness evaluations.",
    )
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help="Directory holding the persisted endpoints and API key.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    endpoints = subparsers.add_parser("endpoints", help="Manage service endpoints.")
    ep_actions = endpoints.add_subparsers(dest="action", required=True)
    ep_actions.add_parser("list", help="List endpoints (* marks the selected one).")
    add = ep_actions.add_parser("add", help="Add an endpoint (maximum 3).")
    add.add_argument("tag")
    add.add_argument("url")
    update = ep_actions.add_parser("update", help="Change an endpoint's tag or URL.")
    update.add_argument("endpoint", help="Endpoint id or tag.")
    update.add_argument("--tag")
    update.add_argument("--url")
    remove = ep_actions.add_parser("remove", help="Remove an endpoint.")
    remove.add_argument("endpoint", help="Endpoint id or tag.")
    select = ep_actions.add_parser("select", help="Select the active endpoint.")
    select.add_argument("endpoint", help="Endpoint id or tag.")
    probe = ep_actions.add_parser("probe", help="Check endpoint reachability.")
    probe.add_argument("endpoint", nargs="?", help="Endpoint id or tag (default: selected).")
    probe.add_argument("--url", help="Probe this base URL instead.")
    probe.add_argument("--all", action="store_true", help="Probe every endpoint.")

    credential = subparsers.add_parser("credential", help="Manage the API key.")
    cred_actions = credential.add_subparsers(dest="action", required=True)
    cred_set = cred_actions.add_parser("set", help="Store the API key.")
    cred_set.add_argument("value")
    cred_actions.add_parser("show", help="Show the masked API key.")
    cred_actions.add_parser("clear", help="Remove the API key.")

    evaluate = subparsers.add_parser("evaluate", help="Run a batch liveness evaluation.")
    evaluate.add_argument("paths", nargs="*", help="Image files or directories.")
    evaluate.add_argument(
        "--base64-file",
        help="Evaluate base64 images from this file (one per line) instead of paths.",
    )
    evaluate.add_argument(
        "--sdk",
        action="append",
        default=[],
        metavar="ENDPOINT",
        help="Also evaluate against this endpoint's SDK (id or tag; repeatable).",
    )
    evaluate.add_argument("--csv", help="Write the results table to this CSV file.")
    evaluate.add_argument("--json", help="Write raw provider responses to this JSON file.")
    evaluate.add_argument(
        "--concurrency",
        type=int,
        default=MAX_CONCURRENCY,
        help=f"Items evaluated at once (default: {MAX_CONCURRENCY}).",
    )

    return parser


_COMMANDS = {
    "endpoints": _cmd_endpoints,
    "credential": _cmd_credential,
    "evaluate": _cmd_evaluate,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        configure_logging(level=args.log_level)
    else:
        configure_logging()

    try:
        validate_configuration()
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    storage = JsonFileStorage(args.state_dir) if args.state_dir else JsonFileStorage()
    state = IdentityClientState(storage).init()

    try:
        return _COMMANDS[args.command](args, state)
    except IdentityClientError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
