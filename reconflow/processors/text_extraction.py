"""
Raw text extraction from uploaded documents.

1. PDF text layer via PyPDF2
2. OCR via pytesseract for images
3. OCR of rendered pages (pdf2image) for scanned PDFs
"""
import io
import re
from dataclasses import dataclass, field
from typing import List

import pytesseract
from PIL import Image
from PyPDF2 import PdfReader
from pdf2image import convert_from_bytes

from ..utils.config import get_settings

IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/tiff"}


@dataclass
class TextExtraction:
    """Text read from a document and how it was read."""
    text: str
    method: str
    confidence: float
    errors: List[str] = field(default_factory=list)


def extract_text(file_bytes: bytes, mime_type: str, file_name: str = "") -> TextExtraction:
    """Pick an extraction method from the mime type (falling back to the file suffix)."""
    mime_type = (mime_type or "").lower()
    suffix = file_name.lower().rsplit(".", 1)[-1] if "." in file_name else ""

    if mime_type.startswith("text/") or suffix in ("txt", "csv"):
        return TextExtraction(text=file_bytes.decode("utf-8", errors="replace"), method="text", confidence=1.0)
    if mime_type == "application/pdf" or suffix == "pdf":
        return _extract_pdf(file_bytes)
    if mime_type in IMAGE_MIME_TYPES or suffix in ("png", "jpg", "jpeg", "tiff"):
        return _extract_image(file_bytes)

    return TextExtraction(text="", method="none", confidence=0.0,
                          errors=[f"Unsupported file format: {mime_type or suffix}"])


def _configure_tesseract():
    settings = get_settings()
    if settings.TESSERACT_PATH:
        pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_PATH


def _extract_pdf(file_bytes: bytes) -> TextExtraction:
    """Extract text from the PDF text layer, falling back to OCR for scanned PDFs."""
    try:
        reader = PdfReader(io.BytesIO(file_bytes))
        text_parts = []

        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)

        raw_text = "\n".join(text_parts)
    except Exception as e:
        return TextExtraction(text="", method="pdf", confidence=0.0, errors=[f"PDF extraction error: {e}"])

    # No text layer: probably scanned
    if not raw_text.strip():
        return _extract_scanned_pdf(file_bytes)

    return TextExtraction(text=normalize_text(raw_text), method="pdf_text", confidence=1.0)


def _extract_image(file_bytes: bytes) -> TextExtraction:
    try:
        _configure_tesseract()
        image = Image.open(io.BytesIO(file_bytes))
        raw_text = pytesseract.image_to_string(image)
    except Exception as e:
        return TextExtraction(text="", method="ocr", confidence=0.0, errors=[f"OCR error: {e}"])

    return TextExtraction(text=normalize_text(raw_text), method="ocr", confidence=0.9)


def _extract_scanned_pdf(file_bytes: bytes) -> TextExtraction:
    """Render each page and run OCR on it."""
    try:
        _configure_tesseract()
        images = convert_from_bytes(file_bytes, poppler_path=get_settings().POPPLER_PATH)
        raw_text = "\n".join(pytesseract.image_to_string(image) for image in images)
    except Exception as e:
        return TextExtraction(text="", method="pdf_ocr", confidence=0.0,
                              errors=[f"Scanned PDF processing error: {e}"])

    return TextExtraction(text=normalize_text(raw_text), method="pdf_ocr", confidence=0.85)


def normalize_text(text: str) -> str:
    """
    Normalize text extracted from PDFs that have character spacing issues.

    Some PDFs extract with spaces between every character. In such text,
    runs of two or more spaces mark the real word boundaries.
    """
    space_ratio = text.count(" ") / max(len(text), 1)

    if space_ratio > 0.3:
        word_boundary = "<<<SPACE>>>"
        normalized = re.sub(r" {2,}", word_boundary, text)
        normalized = normalized.replace(" ", "")
        return normalized.replace(word_boundary, " ").strip()

    return text
