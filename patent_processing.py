import io
import re
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Pattern, Union

import pdfplumber
try:
    from pdf2image import convert_from_bytes
    import pytesseract
except Exception:  # optional OCR deps may not be installed at runtime
    convert_from_bytes = None  # type: ignore
    pytesseract = None  # type: ignore


logger = logging.getLogger(__name__)

STATUS_ACTIVE = "Active"
STATUS_EXPIRED = "Expired"
STATUS_PENDING = "Pending"
STATUSES = (STATUS_ACTIVE, STATUS_EXPIRED, STATUS_PENDING)

TYPE_INVENTION = "Invention"
TYPE_UTILITY = "Utility"
TYPE_DESIGN = "Design"
TYPES = (TYPE_INVENTION, TYPE_UTILITY, TYPE_DESIGN)

COUNTRY_TW = "TW"
COUNTRY_US = "US"
COUNTRY_CN = "CN"

DEFAULT_NAME = "未命名專利"

# Legal protection term in years, counted from the filing date
TERM_YEARS: Dict[str, int] = {
    TYPE_INVENTION: 20,
    TYPE_UTILITY: 10,
    TYPE_DESIGN: 15,
}

Now = Union[date, datetime, None]


def clean_text(text: str) -> str:
    """Basic cleanup for extracted document text.

    - Remove soft-hyphen
    - Heal hyphen-newline breaks
    - Normalize excessive blank lines
    """
    s = text.replace("\u00AD", "")
    s = re.sub(r"-\n(?=[A-Za-z])", "", s)
    s = re.sub(r"\n{2,}", "\n\n", s)
    return s.strip()


def _normalize_fullwidth_digits(s: str) -> str:
    # Convert fullwidth digits to ASCII
    return s.translate(str.maketrans({
        '０': '0', '１': '1', '２': '2', '３': '3', '４': '4',
        '５': '5', '６': '6', '７': '7', '８': '8', '９': '9',
    }))


def _normalize_fullwidth_punct(s: str) -> str:
    """Fold fullwidth date/number punctuation common in TW/CN gazettes to ASCII."""
    table = str.maketrans({
        '．': '.', '，': ',', '／': '/', '－': '-', '～': '~',
        '［': '[', '］': ']',
    })
    return _normalize_fullwidth_digits(s).translate(table)


# ---------- field patterns ----------
# Gazette numbered fields come first, then Chinese labels, then English labels.

_DATE = r"(\d{4}[-/.]\d{1,2}[-/.]\d{1,2})"
_ID = r"([A-Za-z]{0,3}\s?\d[A-Za-z0-9/.,\-]*)"


def _tag(num: str) -> str:
    # [54] / (54) / （54） / 【54】
    return rf"[\[(（【]\s*{num}\s*[\])）】]"


_LABELS = (
    r"專利名稱|發明名稱|新型名稱|設計名稱|申請案號|申請號碼?|申請日期?|公告號碼?|公告編號|公告日期?"
    r"|公開號碼?|公開日期?|證書號數?|專利號碼?|專利權人|申請人|發明人|創作人|設計人|代理人|國際分類|摘要|狀態"
    r"|Title|Application\s*No\.?|Application\s*Number|Appl\.?\s*No\.?|Publication\s*No\.?|Publication\s*Number"
    r"|Patent\s*No\.?|Patent\s*Number|Filing\s*Date|Filed|Publication\s*Date|Date\s*of\s*Patent|Issue\s*Date"
    r"|Assignee(?:\(s\))?|Applicant|Patentee|Inventors?|Status|Abstract"
)
# Free-text values run until the next numbered field, the next "label:" or the end
_NEXT_FIELD = rf"(?=\s*[\[(（【]\s*\d{{2}}\s*[\])）】]|\s*(?:{_LABELS})\s*[:：]|$)"


def _compile(patterns: List[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.I) for p in patterns]


NAME_PATTERNS = _compile([
    _tag("54") + r"\s*(?:發明名稱|新型名稱|設計名稱|專利名稱|名稱)?\s*[:：]?\s*(.+?)" + _NEXT_FIELD,
    r"(?:專利名稱|發明名稱|新型名稱|設計名稱)\s*[:：]\s*(.+?)" + _NEXT_FIELD,
    r"\bTitle(?:\s+of\s+(?:the\s+)?Invention)?\s*[:：]\s*(.+?)" + _NEXT_FIELD,
])

PATENTEE_PATTERNS = _compile([
    _tag("73") + r"\s*(?:專利權人|權利人|申請人)?\s*[:：]?\s*(.+?)" + _NEXT_FIELD,
    _tag("71") + r"\s*(?:申請人)?\s*[:：]?\s*(.+?)" + _NEXT_FIELD,
    r"(?:專利權人|申請人)\s*[:：]\s*(.+?)" + _NEXT_FIELD,
    r"\b(?:Patentee|Assignee(?:\(s\))?|Applicant)\s*[:：]\s*(.+?)" + _NEXT_FIELD,
])

APP_NUMBER_PATTERNS = _compile([
    _tag("21") + r"\s*(?:申請案號|申請號碼?)?\s*[:：]?\s*" + _ID,
    r"(?:申請案號|申請號碼?)\s*[:：]?\s*" + _ID,
    r"\b(?:Application|Appl\.?)\s*(?:No\.?|Number)\s*[:：]?\s*" + _ID,
])

PUB_NUMBER_PATTERNS = _compile([
    _tag("11") + r"\s*(?:證書號數?|公告號碼?|公告編號|公開號碼?|專利號碼?)?\s*[:：]?\s*" + _ID,
    r"(?:證書號數?|公告號碼?|公告編號|公開號碼?|專利號碼?)\s*[:：]?\s*" + _ID,
    r"\b(?:Publication|Patent|Pub\.?)\s*(?:No\.?|Number)\s*[:：]?\s*" + _ID,
])

APP_DATE_PATTERNS = _compile([
    _tag("22") + r"\s*(?:申請日期?)?\s*[:：]?\s*" + _DATE,
    r"申請日期?\s*[:：]?\s*" + _DATE,
    r"\b(?:Filing\s*Date|Application\s*Date|Filed)\s*[:：]?\s*" + _DATE,
])

PUB_DATE_PATTERNS = _compile([
    _tag("4[35]") + r"\s*(?:公告日期?|公開日期?)?\s*[:：]?\s*" + _DATE,
    r"(?:公告日期?|公開日期?)\s*[:：]?\s*" + _DATE,
    r"\b(?:Publication\s*Date|Date\s*of\s*Patent|Issue\s*Date|Pub\.?\s*Date)\s*[:：]?\s*" + _DATE,
])

EXPIRED_CUES = re.compile(r"消滅|屆期|Expired|Lapsed", re.I)
PENDING_CUES = re.compile(r"審查|Pending", re.I)
UTILITY_CUES = re.compile(r"新型|Utility", re.I)
DESIGN_CUES = re.compile(r"設計|Design", re.I)
US_CUES = re.compile(r"United\s+States|USPTO|\bU\.?S\.?\s*Pat(?:ent)?\b|美國", re.I)
ROC_CUES = re.compile(r"中華民國|臺灣|台灣|Taiwan|\bR\.O\.C\b|\bTIPO\b", re.I)
CN_CUES = re.compile(r"中華人民共和國|中华人民共和国|國家知識產權局|国家知识产权局|\bCNIPA\b|People'?s\s+Republic\s+of\s+China", re.I)


def find(text: str, patterns: List[Pattern[str]]) -> str:
    """Return the first non-empty capture of the first matching pattern, else ''."""
    for pat in patterns:
        m = pat.search(text)
        if m and m.group(1) and m.group(1).strip():
            return m.group(1).strip()
    return ""


def _clean_id(value: str) -> str:
    return value.strip().rstrip(".,-")


# ---------- dates ----------

def reference_date(now: Now = None) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def parse_date(value: Any) -> Optional[date]:
    """Parse 'YYYY-MM-DD' (or with / or . separators) into a date, None if invalid."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = _normalize_fullwidth_punct(str(value).strip())
    m = re.match(r"(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})", s)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def normalize_date(value: Any) -> str:
    d = parse_date(value)
    return d.isoformat() if d else ""


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return d.replace(year=d.year + years, day=28)


def compute_term_fields(app_date: Any, patent_type: str = TYPE_INVENTION, now: Now = None) -> Dict[str, Any]:
    """Derive duration, next annuity date and annuity year from the filing date.

    Returns an empty dict when the filing date is not a valid calendar date.
    """
    filed = parse_date(app_date)
    if filed is None:
        return {}
    today = reference_date(now)

    years = TERM_YEARS.get(patent_type, TERM_YEARS[TYPE_INVENTION])
    try:
        expiry = _add_years(filed, years)
        next_due = _add_years(filed, today.year - filed.year)
        if next_due < today:
            next_due = _add_years(filed, today.year - filed.year + 1)
    except (ValueError, OverflowError):
        # term or anniversary lands outside the supported calendar range
        logger.debug("Term computation out of range for filing date %s", filed)
        return {}

    return {
        "duration": f"{filed.isoformat()} ~ {expiry.isoformat()}",
        "annuityDate": next_due.isoformat(),
        "annuityYear": max(1, today.year - filed.year + 1),
    }


# ---------- classification cues ----------

def infer_status(text: str) -> str:
    # Only one status exists: expiry cues override pending cues
    if EXPIRED_CUES.search(text):
        return STATUS_EXPIRED
    if PENDING_CUES.search(text):
        return STATUS_PENDING
    return STATUS_ACTIVE


def infer_type(text: str, pub_number: str = "") -> str:
    prefix = pub_number[:1].upper()
    patent_type = TYPE_INVENTION
    if UTILITY_CUES.search(text) or prefix == "M":
        patent_type = TYPE_UTILITY
    if DESIGN_CUES.search(text) or prefix == "D":
        patent_type = TYPE_DESIGN
    return patent_type


def infer_country(text: str) -> str:
    country = COUNTRY_TW
    if US_CUES.search(text) and not ROC_CUES.search(text):
        country = COUNTRY_US
    if CN_CUES.search(text):
        country = COUNTRY_CN
    return country


def _first_line(text: str) -> str:
    lines = text.splitlines()
    return lines[0].strip() if lines else ""


def extract_patent_from_text(text: Any, now: Now = None) -> Dict[str, Any]:
    """Best-effort patent record from free text (pasted documents, PDF/OCR output).

    Never raises: fields that cannot be found are returned as '' (or their default),
    and the derived duration/annuity fields are only filled from a valid filing date.
    `now` pins the reference date used for the annuity computation.
    """
    source = text if isinstance(text, str) else ("" if text is None else str(text))
    raw = _normalize_fullwidth_punct(source)
    flat = re.sub(r"\s+", " ", raw).strip()

    name = find(flat, NAME_PATTERNS)
    if not name:
        # unfolded first line; only surrounding whitespace is dropped
        first = _first_line(source)
        name = first if first and len(first) < 50 else DEFAULT_NAME

    pub_number = _clean_id(find(flat, PUB_NUMBER_PATTERNS))
    patent_type = infer_type(raw, pub_number)
    app_date = normalize_date(find(flat, APP_DATE_PATTERNS))

    record: Dict[str, Any] = {
        "name": name,
        "patentee": find(flat, PATENTEE_PATTERNS),
        "country": infer_country(raw),
        "status": infer_status(raw),
        "type": patent_type,
        "appNumber": _clean_id(find(flat, APP_NUMBER_PATTERNS)),
        "pubNumber": pub_number,
        "appDate": app_date,
        "pubDate": normalize_date(find(flat, PUB_DATE_PATTERNS)),
        "duration": "",
        "annuityDate": "",
        "annuityYear": 1,
        "inventor": "",
        "link": "",
    }
    record.update(compute_term_fields(app_date, patent_type, now))
    if not app_date:
        logger.debug("No valid filing date found; skipping term/annuity fields")
    return record


# ---------- PDF text ----------

def _page_text_robust(page) -> str:
    # 1) basic
    txt = page.extract_text() or ""
    if txt and txt.strip():
        return txt

    # 2) word-based reconstruction (handles some vector-text PDFs that fail extract_text)
    try:
        words = page.extract_words() or []
    except Exception:
        words = []
    if not words:
        return ""
    # group by line using 'top' with small tolerance
    words_sorted = sorted(words, key=lambda w: (round(float(w.get("top", 0)) / 2) * 2, float(w.get("x0", 0))))
    lines: List[List[str]] = []
    cur_top: Optional[float] = None
    cur_line: List[str] = []
    for w in words_sorted:
        top = round(float(w.get("top", 0)) / 2) * 2
        if cur_top is None:
            cur_top = top
        if abs(top - cur_top) <= 2:
            cur_line.append(str(w.get("text", "")))
        else:
            if cur_line:
                lines.append(cur_line)
            cur_top = top
            cur_line = [str(w.get("text", ""))]
    if cur_line:
        lines.append(cur_line)
    return "\n".join(" ".join(line) for line in lines)


def _needs_ocr(pages_text: List[str]) -> bool:
    total_chars = sum(len(t) for t in pages_text)
    nonempty_pages = sum(1 for t in pages_text if len(t.strip()) > 10)
    # Heuristics: if average chars per page is tiny or majority pages empty
    if len(pages_text) >= 2 and (total_chars / max(1, len(pages_text)) < 200 or nonempty_pages <= len(pages_text) // 3):
        return True
    return total_chars < 400


def _ocr_pages(file_bytes: bytes) -> List[str]:
    images = convert_from_bytes(file_bytes, dpi=300, fmt="png")
    out: List[str] = []
    for img in images:
        try:
            txt = pytesseract.image_to_string(img, lang="chi_tra+eng", config="--psm 6")
        except pytesseract.TesseractError:
            # language packs missing: fall back to tesseract's default
            txt = pytesseract.image_to_string(img, config="--psm 6")
        out.append(txt or "")
    return out


def extract_text_from_pdf(file_bytes: bytes) -> str:
    """Pull the text layer out of a patent PDF, with OCR for scanned documents."""
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        texts: List[str] = []
        for p in pdf.pages:
            try:
                txt = _page_text_robust(p)
            except Exception as e:
                logger.warning("Page %s text extraction failed: %s", p.page_number, e)
                txt = ""
            texts.append(txt or "")

    if _needs_ocr(texts) and convert_from_bytes is not None and pytesseract is not None:
        try:
            ocr_texts = _ocr_pages(file_bytes)
            if sum(len(t) for t in ocr_texts) > sum(len(t) for t in texts):
                texts = ocr_texts
        except Exception as e:
            # keep original texts if OCR fails
            logger.warning("OCR fallback failed: %s", e)

    return clean_text("\n".join(texts))
