from __future__ import annotations

import json
import logging
import re
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from gemini_client import AIServiceError, AIServiceUnavailable, GeminiClient
from models import Transaction, TransactionSource, TransactionType
from ocr import (
    OcrEngine,
    PaddleOcrEngine,
    PdfPlumberTextExtractor,
    PdfRasterizer,
    PdfTextExtractor,
    PyMuPdfRasterizer,
)
from schemas import ExtractedTransaction, TransactionIn
from services import TransactionService, get_current_user_id, signed_amount


logger = logging.getLogger(__name__)

TEXT_LAYER_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.6
REQUIRED_FIELDS = ("type", "amount", "date")

TRANSACTION_SCHEMA = (
    '{ type: "income" | "expense", category: "string", '
    'subcategory: "string (optional)", amount: number, currency: "string", '
    'date: "ISO format string", description: "short transaction note", '
    'paymentMethod: "cash" | "card" | "upi" | "bank_transfer" | "other", '
    'tags: ["string"], source: "receipt", status: "confirmed", '
    "metadata: { extractedFromOCR: true, confidenceScore: number between 0 and 1 } }"
)


class ReceiptValidationError(ValueError):
    pass


class ReceiptProcessingError(RuntimeError):
    pass


@dataclass
class ReceiptResult:
    status: str  # "created" | "none_detected" | "fallback"
    transactions: list[Any] = field(default_factory=list)
    ocr_text: str = ""
    processing_method: str = "ai"
    message: Optional[str] = None


@dataclass(frozen=True)
class AcquiredText:
    text: str
    confidence: float
    pages: Optional[list[str]] = None  # set when each page was OCR'd on its own


def build_page_prompt(page_text: str) -> str:
    return (
        "Extract all financial transactions from this receipt page text. "
        "If there are multiple bills or transactions, return a JSON array of "
        f"objects, each matching this schema: {TRANSACTION_SCHEMA}. "
        "Amounts must be positive numbers without currency symbols for both "
        "expenses and income; the caller applies the sign. Most receipts are "
        'expenses, so use type "expense" unless the text is clearly income '
        "such as a refund or a payment received. If there is only one "
        "transaction, return an array with a single object. If no transaction "
        "is found, return an empty array []. Return only the JSON array, with "
        "no explanations or markdown.\n\n"
        f"Receipt page text: {page_text}"
    )


def build_single_prompt(page_text: str) -> str:
    return (
        "Extract a single financial transaction from this receipt page text. "
        f"Return one JSON object matching this schema: {TRANSACTION_SCHEMA}. "
        "The amount is a positive number without currency symbol. If no "
        "transaction is found, return {}. Return only the JSON object, with no "
        "explanations or markdown.\n\n"
        f"Receipt page text: {page_text}"
    )


_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_STRAY_FENCE_RE = re.compile(r"^```(?:json)?|```$", re.IGNORECASE)


def _as_records(data: Any) -> list[dict]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict) and item]
    if isinstance(data, dict) and data:
        return [data]
    return []


def recover_json(text: str) -> list[dict]:
    """Best-effort parse of model output into a list of transaction dicts.

    Tries, in order: the body of a fenced code block, the text cut after its
    last closing bracket, then the first bracketed span of the raw text.
    Anything still unparseable yields an empty list.
    """
    raw = text or ""
    fenced = _FENCE_RE.search(raw)
    candidate = fenced.group(1) if fenced else raw
    if "]" in candidate:
        candidate = candidate[: candidate.rindex("]") + 1]
    elif "}" in candidate:
        candidate = candidate[: candidate.rindex("}") + 1]
    candidate = _STRAY_FENCE_RE.sub("", candidate.strip()).strip()
    try:
        return _as_records(json.loads(candidate))
    except json.JSONDecodeError:
        pass

    block = _ARRAY_RE.search(raw) or _OBJECT_RE.search(raw)
    if not block:
        return []
    try:
        return _as_records(json.loads(_STRAY_FENCE_RE.sub("", block.group(0)).strip()))
    except json.JSONDecodeError:
        logger.info("json_recovery_failed: treating page as empty")
        return []


_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


def parse_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    negative = text.startswith("-") or (text.startswith("(") and text.endswith(")"))
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    amount = float(match.group(0).replace(",", ""))
    return -amount if negative else amount


def normalize_sign(txn: dict) -> dict:
    """Force expenses negative and income positive. Idempotent."""
    amount = parse_amount(txn.get("amount"))
    txn_type = str(txn.get("type") or "").strip().lower()
    if amount is None or txn_type not in TransactionType._value2member_map_:
        return txn
    normalized = dict(txn)
    normalized["type"] = txn_type
    normalized["amount"] = signed_amount(txn_type, amount)
    return normalized


def parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = date_parser.parse(text)
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.parse(text, dayfirst=True)
        except (ValueError, OverflowError):
            return None
    return parsed.replace(tzinfo=None)


_TOTAL_RE = re.compile(
    r"(?:\btotal\b|\brs\.?(?=\s|\d|:)|\binr\b|₹|£|€|\$)\s*:?\s*(\d[\d,]*(?:\.\d+)?)",
    re.IGNORECASE,
)
_DATE_RE = re.compile(
    r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}"
    r"|\d{1,2}\s*[- ]\s*[A-Za-z]{3,9}\s*[- ,]\s*\d{4})"
)


def fallback_extract(
    ocr_text: str, *, currency: Optional[str] = None, now: Optional[datetime] = None
) -> dict:
    """Single low-confidence transaction guessed from raw OCR text."""
    lines = [line.strip() for line in (ocr_text or "").splitlines() if line.strip()]

    total = 0.0
    for line in lines:
        labelled = _TOTAL_RE.search(line)
        if labelled:
            total = float(labelled.group(1).replace(",", ""))
            break
        for token in _NUMBER_RE.findall(line):
            value = float(token.replace(",", ""))
            if value > total:
                total = value

    txn_date = now or datetime.now()
    for line in lines:
        match = _DATE_RE.search(line)
        if match:
            parsed = parse_date(match.group(1))
            if parsed:
                txn_date = parsed
                break

    description = "Receipt Upload"
    head = " ".join(lines[:3]).strip()
    if head:
        description = f"Receipt: {head[:50]}{'...' if len(head) > 50 else ''}"

    return {
        "type": TransactionType.expense.value,
        "category": "Shopping",
        "amount": -abs(total),
        "currency": currency or get_settings().default_currency,
        "date": txn_date.isoformat(),
        "description": description,
        "paymentMethod": "other",
        "tags": ["receipt", "fallback-processed"],
        "source": TransactionSource.receipt.value,
        "status": "confirmed",
        "metadata": {
            "extractedFromOCR": True,
            "ocrRawText": ocr_text,
            "confidenceScore": FALLBACK_CONFIDENCE,
            "processingMethod": "fallback",
        },
    }


def call_with_retry(
    complete: Callable[[str], str],
    prompt: str,
    *,
    attempts: int,
    backoff_secs: float,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Retry overload-class errors with 2s, 4s... backoff; re-raise the rest."""
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = backoff_secs * (attempt - 1)
            logger.info(f"ai_retry: attempt={attempt}/{attempts} delay={delay}s")
            sleep(delay)
        try:
            return complete(prompt)
        except AIServiceUnavailable:
            raise
        except AIServiceError as exc:
            logger.warning(
                f"ai_call_failed: attempt={attempt}/{attempts} status={exc.status} error={exc}"
            )
            if not exc.is_overloaded or attempt == attempts:
                raise
    raise AIServiceError("No attempts made")


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ReceiptExtractionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        ocr_engine: Optional[OcrEngine] = None,
        pdf_text: Optional[PdfTextExtractor] = None,
        rasterizer: Optional[PdfRasterizer] = None,
        ai: Optional[GeminiClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = get_settings()
        self.ocr_engine = ocr_engine or PaddleOcrEngine()
        self.pdf_text = pdf_text or PdfPlumberTextExtractor()
        self.rasterizer = rasterizer or PyMuPdfRasterizer()
        self.ai = ai or GeminiClient()
        self.sleep = sleep
        self.transactions = TransactionService(session, self.user_id)

    def process_upload(self, file_path: Path, original_name: str) -> ReceiptResult:
        """Run the whole pipeline; the uploaded file is removed on every path."""
        try:
            return self._process(file_path, original_name)
        finally:
            file_path.unlink(missing_ok=True)

    def _process(self, file_path: Path, original_name: str) -> ReceiptResult:
        is_pdf = Path(original_name).suffix.lower() == ".pdf"
        acquired = self._acquire_text(file_path, is_pdf)
        pages = self._segment(acquired)
        logger.info(
            f"receipt_ocr: file={original_name} pdf={is_pdf} pages={len(pages)} "
            f"confidence={acquired.confidence:.2f}"
        )
        for index, page in enumerate(pages, start=1):
            logger.debug(f"receipt_ocr_page: page={index}\n{page}")

        candidates: list[dict] = []
        for index, page_text in enumerate(pages, start=1):
            try:
                extracted = self._extract_page(page_text)
            except AIServiceError as exc:
                if exc.is_overloaded:
                    logger.warning(
                        f"receipt_ai_fallback: file={original_name} page={index} error={exc}"
                    )
                    return self._fallback(acquired.text)
                raise ReceiptProcessingError(f"AI extraction failed: {exc}") from exc
            for txn in extracted:
                candidates.append({**normalize_sign(txn), "page": index})

        if not candidates:
            return ReceiptResult(
                status="none_detected",
                ocr_text=acquired.text,
                message="No transactions detected in this receipt.",
            )

        validated = [self._validate(c) for c in candidates]
        saved = self._persist(validated, acquired)
        logger.info(
            f"receipt_processed: file={original_name} user_id={self.user_id} "
            f"transactions={len(saved)}"
        )
        return ReceiptResult(status="created", transactions=saved, ocr_text=acquired.text)

    def _acquire_text(self, file_path: Path, is_pdf: bool) -> AcquiredText:
        if not is_pdf:
            result = self.ocr_engine.recognize(file_path)
            return AcquiredText(text=result.text, confidence=result.confidence)

        text = self.pdf_text.extract(file_path)
        if text.strip():
            return AcquiredText(text=text, confidence=TEXT_LAYER_CONFIDENCE)

        # Scanned PDF: OCR each rasterized page; pages dir goes away with the block.
        with tempfile.TemporaryDirectory(prefix="receipt-pages-") as tmp:
            images = self.rasterizer.rasterize(file_path, Path(tmp))
            page_texts: list[str] = []
            min_confidence = 1.0
            for image in images:
                result = self.ocr_engine.recognize(image)
                page_texts.append(result.text)
                min_confidence = min(min_confidence, result.confidence)
        if not page_texts:
            return AcquiredText(text="", confidence=0.0, pages=[])
        return AcquiredText(
            text="\n".join(page_texts), confidence=min_confidence, pages=page_texts
        )

    @staticmethod
    def _segment(acquired: AcquiredText) -> list[str]:
        if acquired.pages is not None:
            pages = acquired.pages
        elif "\f" in acquired.text:
            pages = acquired.text.split("\f")
        else:
            pages = [acquired.text]
        return [page for page in pages if page.strip()]

    def _extract_page(self, page_text: str) -> list[dict]:
        response = call_with_retry(
            self.ai.complete,
            build_page_prompt(page_text),
            attempts=self.settings.ai_max_attempts,
            backoff_secs=self.settings.ai_backoff_secs,
            sleep=self.sleep,
        )
        transactions = recover_json(response)
        if transactions:
            return transactions

        try:
            single = recover_json(self.ai.complete(build_single_prompt(page_text)))
        except AIServiceError as exc:
            logger.warning(f"receipt_single_prompt_failed: error={exc}")
            return []
        for txn in single:
            if all(not _missing(txn.get(name)) for name in REQUIRED_FIELDS):
                return [txn]
        return []

    def _validate(self, candidate: dict) -> ExtractedTransaction:
        for name in REQUIRED_FIELDS:
            if _missing(candidate.get(name)):
                raise ReceiptValidationError(f"Missing required field: {name}")
        amount = parse_amount(candidate["amount"])
        if amount is None:
            raise ReceiptValidationError("Invalid amount from AI extraction")
        parsed_date = parse_date(candidate["date"])
        if parsed_date is None:
            raise ReceiptValidationError("Invalid date format from AI extraction")
        try:
            return ExtractedTransaction.model_validate(
                {**candidate, "amount": amount, "date": parsed_date}
            )
        except ValidationError as exc:
            raise ReceiptValidationError(str(exc)) from exc

    def _persist(
        self, extracted: list[ExtractedTransaction], acquired: AcquiredText
    ) -> list[Transaction]:
        saved: list[Transaction] = []
        try:
            for item in extracted:
                data = TransactionIn(
                    type=item.type,
                    category=self.transactions.resolve_category(item.category),
                    subcategory=item.subcategory,
                    amount=item.amount,
                    currency=item.currency,
                    date=item.date,
                    description=item.description,
                    payment_method=item.payment_method,
                    tags=item.tags,
                )
                saved.append(
                    self.transactions.create(
                        data,
                        source=TransactionSource.receipt,
                        extra={
                            "extractedFromOCR": True,
                            "ocrRawText": acquired.text,
                            "confidenceScore": acquired.confidence,
                            "ocrPage": item.page,
                            "processingMethod": "ai",
                        },
                    )
                )
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            raise ReceiptProcessingError(f"Could not save transactions: {exc}") from exc
        for txn in saved:
            self.session.refresh(txn)
        return saved

    def _fallback(self, ocr_text: str) -> ReceiptResult:
        txn = fallback_extract(ocr_text)
        return ReceiptResult(
            status="fallback",
            transactions=[txn],
            ocr_text=ocr_text,
            processing_method="fallback",
            message=(
                "Receipt processed with basic extraction "
                "(AI service temporarily unavailable)"
            ),
        )
