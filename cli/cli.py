# cli/cli.py
"""
Operator CLI for the WChic backend.

    python -m cli.cli podio export-apps [--output DIR]
    python -m cli.cli podio generate-mappings [--exports DIR] [--output DIR]
    python -m cli.cli podio register-webhooks [--base-url URL]
    python -m cli.cli podio sync-lead LEAD_ID
    python -m cli.cli jobs run-once
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Callable, Dict, Optional

# Ensure project root is in path for imports
_cli_dir = Path(__file__).parent
_project_root = _cli_dir.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from cli.podio_admin import AdminResult, export_apps, generate_mappings, register_webhooks
from wchic.core.logging import configure_structlog
from wchic.db.session import session_scope
from wchic.services.jobs import run_once
from wchic.services.podio.sync import sync_lead_to_podio


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return os.isatty(sys.stdout.fileno())


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


def _report(result: AdminResult) -> int:
    if result.success:
        print_success(result.message)
        return 0
    print_error(result.message)
    return 1


async def cmd_podio_export_apps(args: argparse.Namespace) -> int:
    print_info(f"Exporting Podio apps to {args.output}...")
    result = await export_apps(Path(args.output))
    for path in result.data.get('written', []):
        print_info(f"  {path}")
    for failure in result.data.get('failures', []):
        print_error(f"  {failure['workspace']}: {failure['error']}")
    return _report(result)


async def cmd_podio_generate_mappings(args: argparse.Namespace) -> int:
    print_info(f"Generating workspace mappings from {args.exports}...")
    result = generate_mappings(Path(args.exports), Path(args.output) if args.output else None)
    for path in result.data.get('written', []):
        print_info(f"  {path}")
    for key in result.data.get('missing', []):
        print_warning(f"  no export for {key}")
    return _report(result)


async def cmd_podio_register_webhooks(args: argparse.Namespace) -> int:
    print_info("Registering Podio webhooks...")
    result = await register_webhooks(args.base_url)
    for key, outcome in result.data.get('workspaces', {}).items():
        action = outcome['action']
        if action == 'failed':
            print_error(f"  {key}: {outcome['error']}")
        elif action == 'exists':
            print_warning(f"  {key}: already registered (hook {outcome['hook_id']})")
        else:
            print_success(f"  {key}: hook {outcome['hook_id']} -> {outcome['url']}")
    return _report(result)


async def cmd_podio_sync_lead(args: argparse.Namespace) -> int:
    print_info(f"Syncing lead {args.lead_id} to Podio...")
    async with session_scope() as session:
        result = await sync_lead_to_podio(session, args.lead_id)

    if not result.ok:
        print_warning(f"Lead {args.lead_id} not synced: {result.reason}")
        if result.detail:
            print_info(f"  {result.detail}")
        return 1
    for r in result.results:
        print_success(f"  {r.workspace_key}: {r.action} item {r.item_id}")
        if r.dropped:
            print_warning(f"    dropped: {', '.join(d.key for d in r.dropped)}")
    return 0


async def cmd_jobs_run_once(args: argparse.Namespace) -> int:
    print_info("Running due jobs...")
    outcomes = await run_once()
    if not outcomes:
        print_info("No jobs due")
        return 0

    failed = 0
    for outcome in outcomes:
        line = f"  #{outcome.job_id} {outcome.job_type}: {outcome.status}"
        if outcome.message:
            line += f" ({outcome.message})"
        if outcome.status == 'pending':
            failed += 1
            print_warning(line)
        else:
            print_success(line)
    print_info(f"{len(outcomes)} jobs processed, {failed} rescheduled")
    return 0


COMMANDS: Dict[str, Callable] = {
    'podio export-apps': cmd_podio_export_apps,
    'podio generate-mappings': cmd_podio_generate_mappings,
    'podio register-webhooks': cmd_podio_register_webhooks,
    'podio sync-lead': cmd_podio_sync_lead,
    'jobs run-once': cmd_jobs_run_once,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='WChic operator CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest='command', help='Command group')

    # podio
    podio_parser = subparsers.add_parser('podio', help='Podio workspace administration')
    podio_sub = podio_parser.add_subparsers(dest='action', help='Podio command')

    export_parser = podio_sub.add_parser('export-apps', help='Export app definitions of every workspace')
    export_parser.add_argument('--output', default='podio-apps', help='Directory for the exported JSON')

    gen_parser = podio_sub.add_parser('generate-mappings', help='Regenerate workspace mappings from exports')
    gen_parser.add_argument('--exports', default='podio-apps', help='Directory holding the exported apps')
    gen_parser.add_argument('--output', default=None, help='Mapping directory (defaults to the packaged data)')

    hooks_parser = podio_sub.add_parser('register-webhooks', help='Register the item.update webhook on every app')
    hooks_parser.add_argument('--base-url', default=None, help='Public base URL (defaults to PUBLIC_BASE_URL)')

    sync_parser = podio_sub.add_parser('sync-lead', help='Sync one lead to its Podio workspaces')
    sync_parser.add_argument('lead_id', type=int, help='Lead id')

    # jobs
    jobs_parser = subparsers.add_parser('jobs', help='Scheduled job control')
    jobs_sub = jobs_parser.add_subparsers(dest='action', help='Jobs command')
    jobs_sub.add_parser('run-once', help='Claim and run the jobs due now')

    return parser


def main(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command or not getattr(parsed_args, 'action', None):
        parser.print_help()
        return 1

    command_func = COMMANDS.get(f"{parsed_args.command} {parsed_args.action}")
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command} {parsed_args.action}")
        parser.print_help()
        return 1

    configure_structlog()
    try:
        return asyncio.run(command_func(parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {str(e)}")
        if os.getenv('DEBUG'):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
