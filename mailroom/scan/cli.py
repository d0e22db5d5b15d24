"""
Command-line scan station.

Runs a scan session against a Mailroom API from a folder of photos:

    mailroom-scan --api-url http://localhost:8000 --token $TOKEN photos/*.jpg
    mailroom-scan --batch --submit --performed-by Merlin photos/*.jpg

The session is kept in a JSON state file, so an interrupted run resumes
(within 4 hours) when started again.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import os
import sys
from pathlib import Path

from mailroom.config import SCAN_BATCH_MAX_PHOTOS
from mailroom.observability.logging import configure_logging, get_logger
from mailroom.scan.client import SmartMatchClient
from mailroom.scan.session import ScanSessionController
from mailroom.scan.storage import JsonFileStorage
from mailroom.scan.types import Photo, ScanItemStatus, ScanSessionError, ScanSubmitError

logger = get_logger(__name__)

DEFAULT_STATE_FILE = Path.home() / ".mailroom" / "scan-session.json"


def load_photo(path: Path) -> Photo:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return Photo(data=path.read_bytes(), mime_type=mime_type)


def print_toast(level: str, message: str) -> None:
    print(f"[{level}] {message}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Match mail photos to customers and log them")
    parser.add_argument("photos", nargs="*", type=Path, help="Photo files to scan")
    parser.add_argument("--api-url", default=os.getenv("MAILROOM_API_URL", "http://localhost:8000"))
    parser.add_argument("--token", default=os.getenv("MAILROOM_API_TOKEN"), help="Google OAuth access token")
    parser.add_argument("--state-file", type=Path, default=DEFAULT_STATE_FILE)
    parser.add_argument("--batch", action="store_true", help=f"Match up to {SCAN_BATCH_MAX_PHOTOS} photos per AI call")
    parser.add_argument(
        "--accept-uncertain",
        action="store_true",
        help="Keep low-confidence matches instead of discarding them",
    )
    parser.add_argument("--submit", action="store_true", help="Log the items and notify customers when done")
    parser.add_argument("--performed-by", help="Staff member logging this mail (required with --submit)")
    parser.add_argument("--skip-notification", action="store_true", help="Log items without emailing")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--discard", action="store_true", help="Throw away any stored session and exit")
    return parser


def _settle_pending(controller: ScanSessionController, accept_uncertain: bool) -> None:
    """Resolve every queued review item without a human at the keyboard."""
    while controller.pending_item is not None:
        item = controller.pending_item
        if accept_uncertain and item.status is ScanItemStatus.UNCERTAIN:
            controller.confirm_pending()
        else:
            print_toast("warning", f"Skipped {item.extracted_text!r} ({item.status.value})")
            controller.discard_pending()


async def run(args: argparse.Namespace) -> int:
    storage = JsonFileStorage(args.state_file)
    client = SmartMatchClient(args.api_url, token=args.token)
    try:
        contacts = await client.list_contacts()
        controller = ScanSessionController(client, contacts, local_storage=storage, notify=print_toast)

        if args.discard:
            controller.close_session()
            return 0

        if controller.load_existing_session() is None:
            controller.start_session()

        photos = [load_photo(path) for path in args.photos]
        if args.batch:
            for start in range(0, len(photos), SCAN_BATCH_MAX_PHOTOS):
                for photo in photos[start : start + SCAN_BATCH_MAX_PHOTOS]:
                    controller.add_to_batch(photo)
                await controller.process_batch()
                _settle_pending(controller, args.accept_uncertain)
        else:
            for photo in photos:
                await controller.capture(photo)
                _settle_pending(controller, args.accept_uncertain)

        if not args.submit:
            print(f"{len(controller.items)} items in session (not submitted)")
            return 0

        for group in controller.end_session():
            name = group.contact.get("contact_person") or group.contact.get("company_name")
            print(f"{name}: {group.letter_count} letters, {group.package_count} packages")

        await controller.submit(args.performed_by, skip_notification=args.skip_notification)
        celebration = controller.celebrate()
        if celebration is not None:
            print(f"Logged {celebration.items_created} items, notified {celebration.notifications_sent} customers")
        return 0
    except ScanSessionError as e:
        print_toast("error", str(e))
        return 1
    except ScanSubmitError as e:
        print_toast("error", f"Submit failed, session kept for retry: {e}")
        return 1
    finally:
        await client.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.submit and not args.performed_by:
        print_toast("error", "--performed-by is required with --submit")
        return 2
    configure_logging("DEBUG" if args.verbose else None)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
