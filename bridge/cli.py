#!/usr/bin/env python3
"""
Bridge CLI

Talks to a running bridge server over HTTP.
Usage: python -m bridge.cli <command> [options]

Commands:
    health                      Connection status
    snapshot [--mode MODE]      Mirrored editor state
    exec CODE | --file PATH     Execute a code fragment on the editor
    logs [filters]              Query editor logs
"""

import argparse
import asyncio
import json
import sys
from typing import Dict, Any, Optional, Tuple

import aiohttp


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query a running editor bridge")
    parser.add_argument('--url', default="http://localhost:8080", help='Base URL of the bridge server')
    parser.add_argument('--timeout', type=float, default=30.0, help='HTTP request timeout in seconds')
    parser.add_argument('--verbose', '-v', action='store_true', help='Print request details')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('health', help='Show connection status')

    snapshot = subparsers.add_parser('snapshot', help='Show the mirrored editor state')
    snapshot.add_argument('--mode', default='Full', help='Full, ScriptsOnly or NoScripts')

    execute = subparsers.add_parser('exec', help='Execute a code fragment on the editor')
    execute.add_argument('code', nargs='?', help='Code fragment to execute')
    execute.add_argument('--file', help='Read the code fragment from a file')

    logs = subparsers.add_parser('logs', help='Query editor logs')
    logs.add_argument('--types', nargs='*', help='Severities to keep (Info, Warning, Error, Fatal)')
    logs.add_argument('--count', type=int, help='Keep only the most recent N matches')
    logs.add_argument('--fields', nargs='*', help='Fields to return (message, stackTrace, severity, timestamp)')
    logs.add_argument('--message-contains', help='Substring the message must contain')
    logs.add_argument('--stack-trace-contains', help='Substring the stack trace must contain')
    logs.add_argument('--after', help='Inclusive lower timestamp bound (ISO-8601)')
    logs.add_argument('--before', help='Inclusive upper timestamp bound (ISO-8601)')
    return parser


def build_request(args: argparse.Namespace) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    """Maps parsed arguments to (method, path, json body)."""
    if args.command == 'health':
        return 'GET', '/health', None
    if args.command == 'snapshot':
        return 'GET', f'/snapshot?mode={args.mode}', None
    if args.command == 'exec':
        if args.file:
            with open(args.file, 'r', encoding='utf-8') as f:
                code = f.read()
        else:
            code = args.code
        if not code:
            raise ValueError("Provide a code fragment or --file")
        return 'POST', '/commands', {"code": code}
    if args.command == 'logs':
        filters = {
            "types": args.types,
            "count": args.count,
            "fields": args.fields,
            "messageContains": args.message_contains,
            "stackTraceContains": args.stack_trace_contains,
            "timestampAfter": args.after,
            "timestampBefore": args.before,
        }
        return 'POST', '/logs', {k: v for k, v in filters.items() if v is not None}
    raise ValueError(f"Unknown command: {args.command}")


async def run(args: argparse.Namespace) -> int:
    try:
        method, path, body = build_request(args)
    except (OSError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    url = args.url.rstrip('/') + path
    if args.verbose:
        print(f"🔗 {method} {url}", file=sys.stderr)

    try:
        timeout = aiohttp.ClientTimeout(total=args.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(method, url, json=body) as response:
                data = await response.json(content_type=None)
                print(json.dumps(data, indent=2))
                return 0 if response.status == 200 else 1
    except aiohttp.ClientConnectorError:
        print(f"❌ Could not connect to bridge server at {args.url}", file=sys.stderr)
        print("💡 Make sure the bridge is running (python -m bridge.main)", file=sys.stderr)
        return 1
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        print(f"❌ Request failed: {e}", file=sys.stderr)
        return 1


def main(argv=None):
    args = create_parser().parse_args(argv)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
