"""OCR and PDF helpers used by the receipt pipeline.

The heavy libraries (PaddleOCR, PyMuPDF, pdfplumber) are imported when first
used so the web app and the test-suite load without them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol


logger = logging.getLogger(__name__)

DEFAULT_OCR_CONFIDENCE = 0.7


@dataclass(frozen=True)
class OcrResult:
    text: str
    confidence: float


def normalize_confidence(value: Optional[float]) -> float:
    """Engines report either 0-1 or 0-100; always return 0-1."""
    if value is None or value <= 0:
        return DEFAULT_OCR_CONFIDENCE
    if value > 1:
        return min(1.0, value / 100)
    return float(value)


class OcrEngine(Protocol):
    def recognize(self, image_path: Path) -> OcrResult: ...


class PdfTextExtractor(Protocol):
    def extract(self, pdf_path: Path) -> str: ...


class PdfRasterizer(Protocol):
    def rasterize(self, pdf_path: Path, out_dir: Path) -> list[Path]: ...


class PaddleOcrEngine:
    def __init__(self, lang: str = "en") -> None:
        self.lang = lang
        self._ocr = None

    def _engine(self):
        if self._ocr is None:
            from paddleocr import PaddleOCR

            self._ocr = PaddleOCR(use_angle_cls=True, lang=self.lang, show_log=False)
        return self._ocr

    def recognize(self, image_path: Path) -> OcrResult:
        results = self._engine().ocr(str(image_path), cls=True)
        lines: list[str] = []
        scores: list[float] = []
        for page in results or []:
            for _box, (text, score) in page or []:
                lines.append(text)
                scores.append(float(score))
        confidence = sum(scores) / len(scores) if scores else None
        logger.info(f"ocr_recognized: path={image_path.name} lines={len(lines)}")
        return OcrResult(text="\n".join(lines), confidence=normalize_confidence(confidence))


class PdfPlumberTextExtractor:
    def extract(self, pdf_path: Path) -> str:
        try:
            import pdfplumber

            with pdfplumber.open(str(pdf_path)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:
            logger.warning(f"pdf_text_layer_failed: path={pdf_path.name} error={exc}")
            return ""
        # Form feeds keep page boundaries for segmentation downstream.
        return "\f".join(pages)


class PyMuPdfRasterizer:
    def __init__(self, zoom: float = 2.0) -> None:
        self.zoom = zoom

    def rasterize(self, pdf_path: Path, out_dir: Path) -> list[Path]:
        try:
            import fitz

            images: list[Path] = []
            with fitz.open(str(pdf_path)) as doc:
                matrix = fitz.Matrix(self.zoom, self.zoom)
                for index, page in enumerate(doc, start=1):
                    target = out_dir / f"page-{index:03d}.png"
                    page.get_pixmap(matrix=matrix).save(str(target))
                    images.append(target)
        except Exception as exc:
            logger.warning(f"pdf_rasterize_failed: path={pdf_path.name} error={exc}")
            return []
        return images
