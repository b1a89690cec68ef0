# apiscout CLI - discover and replay the APIs behind a logged-in site
# v1.0 - Initial creation
#   - Browser layer: browser/ (Chromium launch or CDP attach)
#   - Site layer: sites/ (profile-driven login + token sources)
#   - Session layer: session/ (login, discovery, replay, refresh)
#
# Commands:
# - discover: run a navigation plan, log every XHR/fetch exchange, print the endpoint catalog
# - replay:   send one request with the session's headers, cookies and tokens

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from apiscout.browser import BrowserSession
from apiscout.catalog import build_catalog
from apiscout.config import CDP_URL, DB_PATH, LOG_DIR, SUPABASE_ENABLED
from apiscout.session.errors import ScoutError
from apiscout.session.manager import SessionManager
from apiscout.session.models import Credential, RequestSpec
from apiscout.session.otp import PromptOtpProvider
from apiscout.session.plan import load_plan
from apiscout.sites import load_profile
from database.db_manager import DatabaseManager
from database.supabase_manager import SupabaseManager

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    log_file = Path(LOG_DIR) / f"apiscout_{datetime.now().strftime('%Y%m%d')}.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def env_prefix_for(site_name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in site_name.upper())
    return f"APISCOUT_{cleaned}"


def parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse repeated "-H 'Name: value'" options.

    Raises:
        ValueError: option without a colon
    """
    headers = {}
    for value in values or []:
        if ":" not in value:
            raise ValueError(f"Header must look like 'Name: value', got: {value}")
        name, _, content = value.partition(":")
        headers[name.strip()] = content.strip()
    return headers


def build_browser(args) -> BrowserSession:
    return BrowserSession(
        cdp_url=args.cdp or CDP_URL,
        headless=not args.headed,
        launch_chrome=args.launch_chrome,
    )


async def run_discover(args) -> int:
    site = load_profile(args.profile)
    plan = load_plan(args.plan)
    credential = Credential.from_env(args.env_prefix or env_prefix_for(site.SITE_NAME))

    async with SessionManager(build_browser(args), otp_provider=PromptOtpProvider()) as manager:
        session = await manager.start(site, credential)
        exchanges = await manager.discover(session, plan).collect()

    logger.info(f"Discovered {len(exchanges)} exchanges on {site.SITE_NAME}")

    db = DatabaseManager(args.db)
    db.save_exchanges(exchanges, site.SITE_NAME, site.sensitive_headers())

    if args.supabase:
        if not SUPABASE_ENABLED:
            logger.warning("Supabase upload requested but SUPABASE_ANON_KEY is not set")
        else:
            upload_to_supabase(exchanges, site.SITE_NAME, site.sensitive_headers())

    catalog = build_catalog(exchanges)
    print_catalog(catalog)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump([entry.to_dict() for entry in catalog], f, indent=2, ensure_ascii=False)
        logger.info(f"Catalog written to {args.output}")
    return 0


async def run_replay(args) -> int:
    site = load_profile(args.profile)
    credential = Credential.from_env(args.env_prefix or env_prefix_for(site.SITE_NAME))
    spec = RequestSpec(
        url=args.url,
        method=args.method,
        headers=parse_headers(args.header),
        json_body=json.loads(args.data) if args.data else None,
        expect=args.expect,
    )

    async with SessionManager(build_browser(args), otp_provider=PromptOtpProvider()) as manager:
        session = await manager.start(site, credential)
        exchange = await manager.replay(session, spec)

    print(f"{exchange.status} {exchange.method} {exchange.url}")
    print(exchange.response_body)
    return 0


def upload_to_supabase(exchanges, session_name: str, secret_headers=()) -> Dict[str, Any]:
    """Upload exchanges to Supabase; failures are logged, never raised."""
    try:
        return SupabaseManager().save_exchanges(exchanges, session_name, secret_headers)
    except Exception as e:
        logger.error(f"Supabase upload error: {e}")
        return {"uploaded": 0, "failed": len(exchanges), "errors": [str(e)]}


def print_catalog(catalog) -> None:
    logger.info("")
    logger.info("=" * 80)
    logger.info("ENDPOINT CATALOG")
    logger.info("=" * 80)
    for entry in catalog:
        statuses = ",".join(str(s) for s in sorted(entry.statuses))
        logger.info(f"{entry.method:6} {entry.host}{entry.path}  x{entry.count}  [{statuses}]")
    logger.info("=" * 80)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Discover and replay the APIs behind a logged-in web app',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scroll a feed and catalog its XHR endpoints
  apiscout discover --profile sites/shop.json --plan plans/feed.json

  # Attach to a running Chrome instead of launching Chromium
  apiscout discover --profile sites/shop.json --plan plans/feed.json --cdp http://localhost:9222

  # Replay one endpoint with the session's tokens
  apiscout replay --profile sites/shop.json --url https://shop.example/api/items --expect json

Credentials come from APISCOUT_<SITE>_COOKIE / _USERNAME / _PASSWORD / _TOTP_SEED.
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--profile', required=True, help='Site profile JSON')
    common.add_argument('--env-prefix', default=None,
                        help='Credential variable prefix (default: APISCOUT_<SITE NAME>)')
    common.add_argument('--cdp', default=None, help=f'CDP endpoint URL (default: {CDP_URL or "launch Chromium"})')
    common.add_argument('--launch-chrome', action='store_true',
                        help='Start a local Chrome with CDP if --cdp is not answering')
    common.add_argument('--headed', action='store_true', help='Show the browser window')

    sub = parser.add_subparsers(dest='command', required=True)

    discover = sub.add_parser('discover', parents=[common], help='Run a navigation plan and log exchanges')
    discover.add_argument('--plan', required=True, help='Navigation plan JSON')
    discover.add_argument('--db', default=DB_PATH, help=f'SQLite database (default: {DB_PATH})')
    discover.add_argument('--supabase', action='store_true', help='Also upload exchanges to Supabase')
    discover.add_argument('--output', default=None, help='Write the endpoint catalog to this JSON file')

    replay = sub.add_parser('replay', parents=[common], help='Send one request through a session')
    replay.add_argument('--url', required=True)
    replay.add_argument('--method', default='GET')
    replay.add_argument('--data', default=None, help='JSON request body')
    replay.add_argument('-H', '--header', action='append', help="Extra header 'Name: value' (repeatable)")
    replay.add_argument('--expect', choices=['json', 'text'], default=None)

    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.command == 'discover':
            return await run_discover(args)
        return await run_replay(args)
    except ScoutError as e:
        logger.error(f"{e.signal.value} error: {e}")
        if e.raw_body:
            logger.error(f"Response body: {e.raw_body[:2000]}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"Invalid input: {e}")
        return 2


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    cli()
