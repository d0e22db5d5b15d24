"""Unit tests for the command-line scan station"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from mailroom.scan.cli import _settle_pending, build_parser, load_photo, main
from mailroom.scan.types import ScanItemStatus


class QueueController:
    """Just the review-queue surface of ScanSessionController."""

    def __init__(self, statuses):
        self.queue = [SimpleNamespace(status=s, extracted_text=f"item {i}") for i, s in enumerate(statuses)]
        self.confirmed = []
        self.discarded = []

    @property
    def pending_item(self):
        return self.queue[0] if self.queue else None

    def confirm_pending(self):
        self.confirmed.append(self.queue.pop(0))

    def discard_pending(self):
        self.discarded.append(self.queue.pop(0))


def test_parser_defaults(monkeypatch):
    monkeypatch.delenv("MAILROOM_API_URL", raising=False)
    args = build_parser().parse_args(["a.jpg", "b.png"])

    assert args.photos == [Path("a.jpg"), Path("b.png")]
    assert args.api_url == "http://localhost:8000"
    assert not (args.batch or args.submit or args.accept_uncertain or args.verbose)


def test_parser_submit_flags():
    args = build_parser().parse_args(["--batch", "--submit", "--performed-by", "Merlin", "--skip-notification"])

    assert args.batch and args.submit and args.skip_notification
    assert args.performed_by == "Merlin"


def test_load_photo_guesses_mime_type(tmp_path):
    path = tmp_path / "label.png"
    path.write_bytes(b"\x89PNG")

    photo = load_photo(path)

    assert photo.data == b"\x89PNG"
    assert photo.mime_type == "image/png"


def test_settle_pending_discards_without_accept_uncertain():
    controller = QueueController([ScanItemStatus.UNCERTAIN, ScanItemStatus.FAILED])

    _settle_pending(controller, accept_uncertain=False)

    assert controller.pending_item is None
    assert len(controller.discarded) == 2


def test_settle_pending_keeps_uncertain_matches():
    controller = QueueController([ScanItemStatus.UNCERTAIN, ScanItemStatus.FAILED])

    _settle_pending(controller, accept_uncertain=True)

    assert [item.status for item in controller.confirmed] == [ScanItemStatus.UNCERTAIN]
    assert [item.status for item in controller.discarded] == [ScanItemStatus.FAILED]


def test_submit_without_staff_member_stops_before_any_request(tmp_path, capsys):
    photo = tmp_path / "label.jpg"
    photo.write_bytes(b"jpeg")

    with patch("mailroom.scan.cli.SmartMatchClient") as client_cls, patch("mailroom.scan.cli.run") as run:
        assert main(["--submit", "--token", "t", str(photo)]) == 2

    client_cls.assert_not_called()
    run.assert_not_called()
    assert "--performed-by is required with --submit" in capsys.readouterr().err
