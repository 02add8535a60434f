"""CLI commands for the Socket API."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .errors import SocketSdkError


def _parse_params(pairs):
    params = {}
    for p in pairs:
        k, _, v = p.partition("=")
        params[k] = v
    return params


def _print_json(data):
    json.dump(data, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _report_error(result) -> int:
    print(f"Error ({result.status}): {result.error}", file=sys.stderr)
    if result.cause:
        print(result.cause, file=sys.stderr)
    return 1


async def _api(args) -> int:
    from .client import SocketSdk

    try:
        body = json.loads(args.body) if args.body else None
    except json.JSONDecodeError as e:
        print(f"Error: invalid --body JSON: {e}", file=sys.stderr)
        return 1

    async with SocketSdk() as sdk:
        params = _parse_params(args.param) or None
        if args.method.upper() == "GET":
            result = await sdk.get_api(args.endpoint, params=params)
        else:
            result = await sdk.send_api(args.endpoint, body, method=args.method, params=params)

    if not result.success:
        return _report_error(result)
    _print_json(result.data)
    return 0


async def _stream_scan(args) -> int:
    from .client import SocketSdk

    output = args.output if args.output else sys.stdout.buffer
    async with SocketSdk() as sdk:
        result = await sdk.stream_full_scan(args.org, args.scan_id, output=output)

    if not result.success:
        return _report_error(result)
    if args.output:
        print(f"Wrote scan {args.scan_id} to {args.output}", file=sys.stderr)
    return 0


async def _batch_packages(args) -> int:
    from .client import SocketSdk

    errors = 0
    async with SocketSdk() as sdk:
        results = sdk.batch_package_stream(
            args.purls, chunk_size=args.chunk_size, concurrency=args.concurrency
        )
        async for result in results:
            if result.success:
                sys.stdout.write(json.dumps(result.data) + "\n")
            else:
                errors += 1
                _report_error(result)
    return 1 if errors else 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Query the Socket security API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log requests and retries (API token is redacted)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # api subcommand
    api_parser = subparsers.add_parser(
        "api",
        help="Make a generic Socket API call",
    )
    api_parser.add_argument(
        "endpoint",
        help="API endpoint path (e.g., orgs/my-org/repos)",
    )
    api_parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter (repeatable, e.g., --param per_page=100)",
    )
    api_parser.add_argument(
        "--method",
        default="GET",
        help="HTTP method (default: GET)",
    )
    api_parser.add_argument(
        "--body",
        default=None,
        help="JSON request body for POST/PUT/PATCH",
    )

    # stream-scan subcommand
    scan_parser = subparsers.add_parser(
        "stream-scan",
        help="Stream a full scan to a file or stdout",
    )
    scan_parser.add_argument("org", help="Organization slug")
    scan_parser.add_argument("scan_id", help="Full scan ID")
    scan_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file (default: stdout)",
    )

    # batch-packages subcommand
    batch_parser = subparsers.add_parser(
        "batch-packages",
        help="Look up packages by PURL, one JSON line per artifact",
    )
    batch_parser.add_argument("purls", nargs="+", help="Package URLs (e.g., pkg:npm/lodash@4.17.21)")
    batch_parser.add_argument(
        "--chunk-size",
        type=int,
        default=100,
        help="PURLs per request (default: 100)",
    )
    batch_parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent requests (default: SOCKET_CONCURRENCY or 10)",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    commands = {
        "api": _api,
        "stream-scan": _stream_scan,
        "batch-packages": _batch_packages,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    try:
        return asyncio.run(command(args))
    except SocketSdkError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
