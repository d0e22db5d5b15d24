"""
Recipient-name OCR over Tesseract.

Backup path for scan sessions when the AI match fails: photos are
downscaled, run through Tesseract, and the recipient line is picked out of
the recognised text with a label-then-capitalisation heuristic.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO

import pytesseract
from PIL import Image, UnidentifiedImageError

from mailroom.config import OCR_MAX_HEIGHT, OCR_MAX_WIDTH
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, time_block

logger = get_logger(__name__)

# Longest first so "SHIP TO" wins over "TO"
_LABEL = re.compile(
    r"^\s*(SHIP\s+TO|DELIVER\s+TO|ATTENTION|ATTN|RECIPIENT|TO)\b\s*:?\s*(.*)$",
    re.IGNORECASE,
)
_LABEL_WITH_COLON = re.compile(
    r"\b(SHIP\s+TO|DELIVER\s+TO|ATTENTION|ATTN|RECIPIENT|TO)\s*:\s*(.*)$",
    re.IGNORECASE,
)
_CAPITALISED_RUN = re.compile(r"\b[A-Z][A-Za-z'.\-]*(?:[ \t]+[A-Z][A-Za-z'.\-]*)*")

BOILERPLATE_TOKENS = frozenset(
    {
        "LLC",
        "INC",
        "CORP",
        "CORPORATION",
        "STREET",
        "ST",
        "AVENUE",
        "AVE",
        "ROAD",
        "RD",
        "BOULEVARD",
        "BLVD",
        "SUITE",
        "STE",
        "FLOOR",
        "USPS",
        "UPS",
        "FEDEX",
        "DHL",
        "POSTAGE",
    }
)

# Fallback scans only the top of the label
_FALLBACK_SCAN_LINES = 5


class OCRError(RuntimeError):
    """Tesseract is unavailable or could not process the image."""


class UnreadableImageError(OCRError):
    """The photo bytes are not an image Pillow can decode."""


@dataclass(frozen=True)
class OCRResult:
    text: str
    confidence: float


def _label_remainder(line: str) -> str | None:
    """Text after a recipient label on this line ("" if none), or None if no label."""
    match = _LABEL.match(line) or _LABEL_WITH_COLON.search(line)
    if match is None:
        return None
    return match.group(2).strip()


def _is_candidate_name(sequence: str) -> bool:
    words = sequence.split()
    if len(sequence) <= 2 or len(words) > 4:
        return False
    if sequence[0].isdigit():
        return False
    return not any(word.strip(".,").upper() in BOILERPLATE_TOKENS for word in words)


def pick_recipient(lines: list[str]) -> str:
    """
    Choose the recipient text from OCR lines.

    1. A line starting with TO / ATTN / RECIPIENT / SHIP TO (or containing
       "LABEL:") yields the next one or two lines; text after the label on
       the same line counts as the first of them.
    2. Otherwise the first three capitalised word runs from the top lines,
       skipping address and company boilerplate.
    3. Otherwise the first three lines verbatim.
    """
    lines = [line.strip() for line in lines if line.strip()]

    for index, line in enumerate(lines):
        remainder = _label_remainder(line)
        if remainder is None:
            continue
        following = lines[index + 1 :]
        picked = [remainder, *following[:1]] if remainder else following[:2]
        text = " ".join(picked).strip()
        if text:
            return text

    candidates: list[str] = []
    for line in lines[:_FALLBACK_SCAN_LINES]:
        candidates.extend(run.strip() for run in _CAPITALISED_RUN.findall(line))
    names = [run for run in candidates if _is_candidate_name(run)]
    if names:
        return " ".join(names[:3])

    return " ".join(lines[:3]).strip()


class OCRExtractor:
    """
    Lazily-initialised Tesseract wrapper.

    Use get_ocr_extractor() for the shared instance; initialize() can be
    called early to pay the engine check before the first scan.
    """

    def __init__(self, max_width: int = OCR_MAX_WIDTH, max_height: int = OCR_MAX_HEIGHT, lang: str = "eng"):
        self.max_width = max_width
        self.max_height = max_height
        self.lang = lang
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Raises:
            OCRError: Tesseract binary not installed or not runnable
        """
        with self._lock:
            if self._initialized:
                return
            try:
                version = pytesseract.get_tesseract_version()
            except pytesseract.TesseractNotFoundError as e:
                raise OCRError("Tesseract OCR binary not found") from e
            except Exception as e:
                raise OCRError(f"Tesseract OCR not available: {e}") from e
            self._initialized = True
            logger.info("Tesseract OCR initialized (version %s)", version)

    def terminate(self) -> None:
        with self._lock:
            if self._initialized:
                self._initialized = False
                logger.info("Tesseract OCR terminated")

    def _prepare(self, image_bytes: bytes) -> Image.Image:
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise UnreadableImageError(f"Unreadable image: {e}") from e
        image = image.convert("L")
        image.thumbnail((self.max_width, self.max_height))
        return image

    def extract_recipient_name(self, image_bytes: bytes) -> OCRResult:
        """
        Returns:
            OCRResult with the picked recipient text and the mean word
            confidence in [0, 1]

        Raises:
            UnreadableImageError: The bytes are not a decodable image
            OCRError: Engine unavailable or Tesseract failure
        """
        if not self._initialized:
            self.initialize()

        image = self._prepare(image_bytes)

        try:
            with time_block("ocr.extract"):
                data = pytesseract.image_to_data(image, lang=self.lang, output_type=pytesseract.Output.DICT)
        except pytesseract.TesseractError as e:
            counter("ocr.extract.error")
            raise OCRError(f"Tesseract failed: {e}") from e

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for position, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            key = (data["block_num"][position], data["par_num"][position], data["line_num"][position])
            lines.setdefault(key, []).append(word)
            confidence = float(data["conf"][position])
            if confidence >= 0:
                confidences.append(confidence)

        text = pick_recipient([" ".join(words) for words in lines.values()])
        confidence = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0

        counter("ocr.extract.count")
        logger.debug("OCR picked %r (confidence %.2f)", text, confidence)
        return OCRResult(text=text, confidence=confidence)


@lru_cache(maxsize=1)
def get_ocr_extractor() -> OCRExtractor:
    return OCRExtractor()
