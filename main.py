import asyncio
import argparse
import json
import logging
import os
import sys
from typing import List

from core.config import ScanConfig, DEFAULT_TIMEOUT, DEFAULT_CONCURRENCY
from core.engine import Engine
from core.errors import LoadError
from core.exporters import write_csv, write_json
from core.plugins import has_tool
from rules.rules_loader import DEFAULT_DATABASE, load_rule_file, load_rule_store


def _read_targets(args) -> List[str]:
    """Collect targets from --target, --file and --stdin, de-duplicated in order."""
    raw: List[str] = []
    if args.target:
        raw.append(args.target)
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            raw.extend(f.read().splitlines())
    if args.stdin:
        raw.extend(sys.stdin.read().splitlines())

    targets: List[str] = []
    for line in raw:
        line = line.strip()
        if line and line not in targets:
            targets.append(line)
    return targets


def main():
    parser = argparse.ArgumentParser(description="Community based web fingerprint analysis tool")
    parser.add_argument("-t", "--target", type=str, help="The target URL (required, unless --file or --stdin used)")
    parser.add_argument("-f", "--file", type=str, help="Read targets from a file, one per line")
    parser.add_argument("--stdin", action="store_true", help="Read targets from STDIN")
    parser.add_argument("--fingerprints", type=str, default=DEFAULT_DATABASE, help="Fingerprint database file or directory")
    parser.add_argument("--verify", type=str, help="Scan the target with only the rules from this file")
    parser.add_argument("-c", "--csv", type=str, help="Export results to a CSV file")
    parser.add_argument("-j", "--json", type=str, help="Export results to a JSON file")
    parser.add_argument("--proxy", type=str, help="Proxy for requests (ex: http(s)://host:port, socks5://host:port)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT})")
    parser.add_argument("--scan-timeout", type=float, help="Upper bound in seconds for a whole target scan")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help=f"Targets scanned in parallel (default: {DEFAULT_CONCURRENCY})")
    parser.add_argument("--plugins-path", type=str, help="Template directory; runs nuclei against identified products")
    parser.add_argument("--headers-file", type=str, help="Path to JSON file containing additional HTTP headers (e.g., User-Agent, Cookie, Authorization)")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging verbosity level (default: INFO)")
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, args.log_level),
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)

    if args.verify and not args.target:
        parser.error("--verify requires --target")

    try:
        targets = _read_targets(args)
    except OSError as e:
        logger.error(f"Cannot read targets: {e}")
        sys.exit(1)
    if not targets:
        parser.error("a target is required (use --target, --file or --stdin)")

    if args.plugins_path:
        if not has_tool("nuclei"):
            logger.error("nuclei was not found on PATH, install it to use --plugins-path")
            sys.exit(1)
        if not os.path.isdir(args.plugins_path):
            logger.error(f"The plugin directory does not exist: {args.plugins_path}")
            sys.exit(1)

    # Load custom headers from JSON file if provided
    custom_headers = {}
    if args.headers_file:
        try:
            with open(args.headers_file, 'r') as f:
                custom_headers = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading headers file: {e}")
            sys.exit(1)
        if not isinstance(custom_headers, dict):
            logger.error("Headers file must contain a JSON object (dictionary)")
            sys.exit(1)
        logger.info(f"Loaded {len(custom_headers)} custom headers from {args.headers_file}")

    try:
        store = load_rule_file(args.verify) if args.verify else load_rule_store(args.fingerprints)
    except LoadError as e:
        logger.error(str(e))
        sys.exit(1)

    config = ScanConfig(
        timeout=args.timeout,
        proxy=args.proxy,
        custom_headers={str(k): str(v) for k, v in custom_headers.items()},
        plugins_path=args.plugins_path,
        scan_timeout=args.scan_timeout,
        concurrency=args.concurrency,
    )

    async def run():
        engine = Engine(store, config)
        logger.info(f"Scanning {len(targets)} target(s)")
        return await engine.scan_targets(targets)

    results = asyncio.run(run())
    for result in results:
        print(json.dumps(result.to_dict(), ensure_ascii=False))

    if args.csv:
        write_csv(results, args.csv)
    if args.json:
        write_json(results, args.json)


if __name__ == "__main__":
    main()
