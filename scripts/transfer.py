#!/usr/bin/env python3
"""Move files between local disk and object storage.

Usage:
  .venv/bin/python scripts/transfer.py --url s3://backups/db pull dump.sql /tmp/dump.sql
  .venv/bin/python scripts/transfer.py --url s3://backups/db push /tmp/dump.sql dump.sql
  .venv/bin/python scripts/transfer.py --url s3://backups ls db/
  .venv/bin/python scripts/transfer.py --url s3://backups rm db/dump.sql

Connection options are read from the environment (see objstore.common.config);
--url defaults to OBJSTORE_URL. pull/push keys are relative to the URL path,
ls prefixes and rm keys are full object keys.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from objstore.common.config import Settings, get_settings
from objstore.common.logging import setup_logging
from objstore.infra.storage import StorageBackend, StorageError, open_storage


def run(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    backend: StorageBackend | None = None,
) -> int:
    parser = argparse.ArgumentParser(description="Transfer files to and from object storage")
    parser.add_argument(
        "--url",
        default=None,
        help="Storage location, e.g. s3://bucket/prefix (default: OBJSTORE_URL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pull = sub.add_parser("pull", help="Download an object to a local file")
    pull.add_argument("key")
    pull.add_argument("path")

    push = sub.add_parser("push", help="Upload a local file as an object")
    push.add_argument("path")
    push.add_argument("key")

    ls = sub.add_parser("ls", help="List objects under a key prefix")
    ls.add_argument("prefix", nargs="?", default="")

    rm = sub.add_parser("rm", help="Delete an object")
    rm.add_argument("key")

    args = parser.parse_args(argv)
    settings = settings or get_settings()

    try:
        if backend is None:
            url = args.url or settings.OBJSTORE_URL
            if not url:
                parser.error("--url is required when OBJSTORE_URL is not set")
            backend = open_storage(url, settings=settings)

        if args.command == "pull":
            count = backend.pull(args.key, args.path)
            print(f"Pulled {count} bytes to {args.path}")
        elif args.command == "push":
            count = backend.push(args.key, args.path)
            print(f"Pushed {count} bytes to {args.key}")
        elif args.command == "ls":
            for obj in backend.read_dir(args.prefix):
                modified = obj.last_modified.isoformat() if obj.last_modified else "-"
                print(f"{obj.size:>12}  {modified}  {obj.name}")
        elif args.command == "rm":
            backend.remove(args.key)
            print(f"Removed {args.key}")
    except StorageError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    setup_logging()
    sys.exit(run())


if __name__ == "__main__":
    main()
