#!/usr/bin/env python3
"""
Dev helper: exercise the inbox endpoints of a running backend.

Connects to a real mailbox through the local API, lists recent messages and,
optionally, downloads / parses one attachment or imports a batch of messages.

Usage
-----
# Check credentials and list today's job-related messages
python scripts/try_inbox.py --username me@gmail.com --date-filter today --job-related

# Download one attachment (written to the current directory)
python scripts/try_inbox.py --username me@gmail.com --download att-4211-1

# Parse one attachment into candidate data (nothing is stored)
python scripts/try_inbox.py --username me@gmail.com --parse att-4211-1

# Import candidates from two messages
python scripts/try_inbox.py --username me@gmail.com --process 4211 4215

# Mailbox on a custom server
python scripts/try_inbox.py --provider other --server mail.example.org --port 993 --username me

Environment / .env
------------------
API_KEY          Shared key sent as X-API-Key (required).
MAIL_PASSWORD    Mailbox (app) password. Prompted for when unset.
"""

import argparse
import base64
import getpass
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def _summarize_listing(body: dict) -> None:
    emails = body.get("emails", [])
    print(f"\n{len(emails)} message(s)")
    for message in emails:
        sender = message["from"]
        print(f"  [{message['uid']}] {message['receivedAt'][:16]}  {sender['email']:<32} {message['subject']}")
        for attachment in message.get("attachments", []):
            marker = "*" if attachment.get("isResume") else " "
            print(f"      {marker} {attachment['id']:<16} {attachment['name']} ({attachment['contentType']})")


def main() -> int:
    script_dir = Path(__file__).resolve().parent
    project_root = script_dir.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="try_inbox.py",
        description=textwrap.dedent("""\
            Exercise /api/email/inbox/* against a running backend.

            Reads API_KEY (and optionally MAIL_PASSWORD) from the environment
            or a .env file in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--provider", default="gmail", choices=["gmail", "outlook", "other"])
    parser.add_argument("--server", default=None, help="IMAP host (provider 'other' only)")
    parser.add_argument("--port", type=int, default=None, help="IMAP port (provider 'other' only)")
    parser.add_argument("--username", required=True)
    parser.add_argument("--date-filter", default="none", choices=["none", "today", "week", "month"])
    parser.add_argument("--job-related", action="store_true")
    parser.add_argument("--with-attachments", action="store_true")
    parser.add_argument("--download", metavar="ATTACHMENT_ID", default=None)
    parser.add_argument("--parse", metavar="ATTACHMENT_ID", default=None)
    parser.add_argument("--process", metavar="UID", nargs="+", default=None)
    args = parser.parse_args()

    api_key = os.getenv("API_KEY")
    if not api_key:
        print("ERROR: Set API_KEY in your environment or .env file.", file=sys.stderr)
        return 1

    password = os.getenv("MAIL_PASSWORD") or getpass.getpass(f"Password for {args.username}: ")
    credentials = {
        "provider": args.provider,
        "server": args.server,
        "port": args.port,
        "username": args.username,
        "password": password,
    }
    base = f"{args.url.rstrip('/')}/api/email/inbox"

    with httpx.Client(headers={"X-API-Key": api_key}, timeout=120) as client:
        response = client.post(f"{base}/connect", json=credentials)
        if response.status_code != 200:
            _print_response(response)
            return 1
        print(f"Connected: {response.json()['mailbox']}")

        if args.download:
            response = client.post(
                f"{base}/download-attachment", json={**credentials, "attachmentId": args.download}
            )
            if response.status_code != 200:
                _print_response(response)
                return 1
            attachment = response.json()["attachment"]
            target = Path(attachment["filename"]).name
            Path(target).write_bytes(base64.b64decode(attachment["content"]))
            print(f"Saved {target} ({attachment['size']:,} bytes)")
            return 0

        if args.parse:
            response = client.post(
                f"{base}/parse-attachment", json={**credentials, "attachmentId": args.parse}
            )
            _print_response(response)
            return 0 if response.status_code == 200 else 1

        if args.process:
            response = client.post(f"{base}/process", json={**credentials, "emailIds": args.process})
            _print_response(response)
            return 0 if response.status_code == 200 else 1

        filters = {
            "dateFilter": args.date_filter,
            "jobRelated": args.job_related,
            "withAttachments": args.with_attachments,
        }
        response = client.post(f"{base}/list", json={**credentials, "filters": filters})
        if response.status_code != 200:
            _print_response(response)
            return 1
        _summarize_listing(response.json())
    return 0


if __name__ == "__main__":
    sys.exit(main())
