"""
Import flow for new patents.

Text and PDF sources go to Gemini first when a key is configured; whatever the AI
cannot deliver is filled in by the heuristic extractor. Excel workbooks are read
directly.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import config
import gemini_service
from patent_processing import (
    TYPE_INVENTION,
    Now,
    compute_term_fields,
    extract_patent_from_text,
    extract_text_from_pdf,
)
from portfolio import Patent, import_from_xlsx, normalize_record


logger = logging.getLogger(__name__)

SOURCE_AI = "ai"
SOURCE_HEURISTIC = "heuristic"

SUPPORTED_EXTENSIONS = (".pdf", ".xlsx", ".txt")


def ai_available() -> bool:
    return bool(config.GEMINI_API_KEY)


def _fill_derived(record: Dict[str, Any], now: Now) -> Dict[str, Any]:
    # AI output often lacks the computed fields; derive them the same way the extractor does
    if record.get("duration") and record.get("annuityDate"):
        return record
    derived = compute_term_fields(record.get("appDate"), record.get("type") or TYPE_INVENTION, now)
    for k, v in derived.items():
        if not record.get(k) or k == "annuityYear":
            record[k] = v
    return record


def _finish(partial: Dict[str, Any], now: Now) -> Patent:
    rec = normalize_record(partial)
    return normalize_record(_fill_derived(rec, now))


def import_from_text(text: str, now: Now = None, use_ai: bool = True) -> Tuple[Patent, str]:
    """Return (record, source) where source is 'ai' or 'heuristic'."""
    if use_ai and ai_available():
        parsed = gemini_service.parse_patent_from_text(text)
        if parsed:
            return _finish(parsed, now), SOURCE_AI
        logger.info("AI parse returned nothing; using heuristic extractor")
    return _finish(extract_patent_from_text(text, now=now), now), SOURCE_HEURISTIC


def import_from_pdf(data: bytes, now: Now = None, use_ai: bool = True) -> Tuple[Patent, str]:
    if use_ai and ai_available():
        parsed = gemini_service.parse_patent_from_file(data, "application/pdf")
        if parsed:
            return _finish(parsed, now), SOURCE_AI
        logger.info("AI file parse returned nothing; extracting PDF text")
    text = extract_text_from_pdf(data)
    return import_from_text(text, now=now, use_ai=False)


def import_from_upload(file_name: str, data: bytes, now: Now = None, use_ai: bool = True) -> List[Patent]:
    ext = Path(file_name).suffix.lower()
    if ext == ".pdf":
        rec, source = import_from_pdf(data, now=now, use_ai=use_ai)
        logger.info("Imported %s via %s", file_name, source)
        return [rec]
    if ext == ".xlsx":
        return import_from_xlsx(data)
    if ext == ".txt":
        rec, source = import_from_text(data.decode("utf-8", errors="replace"), now=now, use_ai=use_ai)
        logger.info("Imported %s via %s", file_name, source)
        return [rec]
    raise ValueError(f"Unsupported file type: {file_name}")
