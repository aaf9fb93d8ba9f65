"""Example client that sends a ping to the collector and reads the counters back."""
from __future__ import annotations

import argparse
import os
import uuid
from datetime import datetime, timezone

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a sample client ping")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("COLLECTOR_API_URL", "http://127.0.0.1:8000"),
        help="Collector base URL (default: %(default)s or COLLECTOR_API_URL)",
    )
    parser.add_argument(
        "--cid",
        default=str(uuid.uuid4()),
        help="Client ID to report (default: a random UUID)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    now = datetime.now(timezone.utc)

    response = requests.get(
        f"{args.api_url}/collect",
        params={"cid": args.cid, "d": int(now.timestamp())},
        timeout=10,
    )
    response.raise_for_status()
    print("Ping stored for", args.cid)

    day = now.strftime("%Y%m%d")
    for path in ("daily_uniques", "monthly_uniques"):
        counter = requests.get(f"{args.api_url}/{path}", params={"d": day}, timeout=10)
        counter.raise_for_status()
        print(f"{path} {day}:", counter.text)


if __name__ == "__main__":
    main()
