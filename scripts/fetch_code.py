#!/usr/bin/env python3
"""
Dev helper: ask the local Code Bot for the latest code and optionally send it.
Needs the project installed (pip install -e .) for the shared code validator.

Usage
-----
# Fetch the latest code using the configured lookback window
python scripts/fetch_code.py

# Look further back
python scripts/fetch_code.py --hours 24

# Fetch and deliver to WhatsApp in one step
python scripts/fetch_code.py --send

# Send a code you already have
python scripts/fetch_code.py --code 483920

# Target a different backend URL
python scripts/fetch_code.py --url http://raspberrypi.local:8000

Environment / .env
------------------
CODEBOT_URL   Base URL of the running service (default: http://localhost:8000).
              Overridden by --url.
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv

from codebot.services.code_patterns import is_valid_code


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2, ensure_ascii=False))
    except ValueError:
        print(response.text)


def main() -> int:
    # scripts/ lives one level below the project root
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="fetch_code.py",
        description=textwrap.dedent("""\
            Fetch the latest one-time code from a running Code Bot and
            optionally send it to the configured WhatsApp recipients.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/fetch_code.py
              python scripts/fetch_code.py --minutes 30
              python scripts/fetch_code.py --send
              python scripts/fetch_code.py --code 483920
        """),
    )
    parser.add_argument(
        "--url",
        default=os.getenv("CODEBOT_URL", "http://localhost:8000"),
        help="Backend base URL (default: http://localhost:8000)",
    )
    window = parser.add_mutually_exclusive_group()
    window.add_argument("--days", type=float, help="Lookback window in days")
    window.add_argument("--hours", type=float, help="Lookback window in hours")
    window.add_argument("--minutes", type=float, help="Lookback window in minutes")
    parser.add_argument(
        "--send",
        action="store_true",
        help="Deliver the fetched code to WhatsApp (uses /relay-latest-code).",
    )
    parser.add_argument(
        "--code",
        default=None,
        help="Skip fetching and send this code to WhatsApp.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="HTTP timeout in seconds (default: 120, verification pages can be slow)",
    )

    args = parser.parse_args()
    base_url = args.url.rstrip("/")

    if args.code is not None and not is_valid_code(args.code):
        print("ERROR: --code must be 4 to 8 digits", file=sys.stderr)
        return 1

    params = {}
    for name in ("days", "hours", "minutes"):
        value = getattr(args, name)
        if value is not None:
            params[name] = value

    try:
        if args.code is not None:
            response = httpx.post(
                f"{base_url}/send-to-whatsapp",
                json={"code": args.code},
                timeout=args.timeout,
            )
        elif args.send:
            response = httpx.post(
                f"{base_url}/relay-latest-code", params=params, timeout=args.timeout
            )
        else:
            response = httpx.get(
                f"{base_url}/fetch-latest-code", params=params, timeout=args.timeout
            )
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {base_url}\n"
            "Is the service running? Start it with:\n"
            "  uvicorn codebot.main:app --app-dir backend --reload",
            file=sys.stderr,
        )
        return 1
    except httpx.HTTPError as exc:
        print(f"\nERROR: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
