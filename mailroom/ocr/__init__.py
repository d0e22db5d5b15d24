"""OCR - Tesseract recipient-name extraction"""

from mailroom.ocr.extractor import (
    OCRError,
    OCRExtractor,
    OCRResult,
    UnreadableImageError,
    get_ocr_extractor,
    pick_recipient,
)

__all__ = ["OCRError", "OCRExtractor", "OCRResult", "UnreadableImageError", "get_ocr_extractor", "pick_recipient"]
