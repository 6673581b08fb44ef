import math
import uuid
import logging
from io import BytesIO
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from patent_processing import (
    COUNTRY_TW,
    DEFAULT_NAME,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_PENDING,
    STATUSES,
    TYPE_DESIGN,
    TYPE_INVENTION,
    TYPE_UTILITY,
    TYPES,
    Now,
    compute_term_fields,
    reference_date,
    normalize_date,
    parse_date,
)


logger = logging.getLogger(__name__)

Patent = Dict[str, Any]

STATUS_ALL = "ALL"

RECORD_DEFAULTS: Dict[str, Any] = {
    "name": DEFAULT_NAME,
    "patentee": "",
    "country": COUNTRY_TW,
    "status": STATUS_ACTIVE,
    "type": TYPE_INVENTION,
    "appNumber": "",
    "pubNumber": "",
    "appDate": "",
    "pubDate": "",
    "duration": "",
    "annuityDate": "",
    "annuityYear": 1,
    "inventor": "",
    "link": "",
    "abstract": "",
    "notificationEmails": "",
}

# Export column header -> record key
EXPORT_COLUMNS: List[tuple] = [
    ("專利名稱", "name"),
    ("專利權人", "patentee"),
    ("申請國家", "country"),
    ("狀態", "status"),
    ("類型", "type"),
    ("申請號", "appNumber"),
    ("公告號", "pubNumber"),
    ("年費到期日", "annuityDate"),
]
EXPORT_SHEET_TITLE = "專利清單"

# Extra headers accepted on import
IMPORT_HEADER_ALIASES: Dict[str, str] = {
    **{h: k for h, k in EXPORT_COLUMNS},
    "國家": "country",
    "申請日": "appDate",
    "公告日": "pubDate",
    "專利期間": "duration",
    "年次": "annuityYear",
    "發明人": "inventor",
    "通知信箱": "notificationEmails",
    "name": "name",
    "title": "name",
    "patentee": "patentee",
    "assignee": "patentee",
    "country": "country",
    "status": "status",
    "type": "type",
    "application number": "appNumber",
    "publication number": "pubNumber",
    "application date": "appDate",
    "publication date": "pubDate",
    "annuity date": "annuityDate",
    "annuity year": "annuityYear",
    "inventor": "inventor",
    "notification emails": "notificationEmails",
}

# Localized labels seen in spreadsheets / AI output
_STATUS_ALIASES = {"存續中": STATUS_ACTIVE, "已屆期": STATUS_EXPIRED, "消滅": STATUS_EXPIRED, "審查中": STATUS_PENDING}
_TYPE_ALIASES = {"發明": TYPE_INVENTION, "新型": TYPE_UTILITY, "設計": TYPE_DESIGN}


SAMPLE_PATENTS: List[Patent] = [
    {
        "id": "1",
        "name": "智慧型太陽能追日系統",
        "patentee": "光電科技股份有限公司",
        "country": "TW",
        "status": STATUS_ACTIVE,
        "type": TYPE_INVENTION,
        "appNumber": "109101234",
        "pubNumber": "I712345",
        "appDate": "2020-01-15",
        "pubDate": "2021-03-01",
        "duration": "2020-01-15 ~ 2040-01-15",
        "annuityDate": "2027-01-15",
        "annuityYear": 8,
        "inventor": "王大明",
        "link": "",
        "abstract": "",
        "notificationEmails": "ip@example.com",
    },
    {
        "id": "2",
        "name": "可折疊式行動電源支架",
        "patentee": "光電科技股份有限公司",
        "country": "TW",
        "status": STATUS_ACTIVE,
        "type": TYPE_UTILITY,
        "appNumber": "110205678",
        "pubNumber": "M623456",
        "appDate": "2021-11-30",
        "pubDate": "2022-02-11",
        "duration": "2021-11-30 ~ 2031-11-30",
        "annuityDate": "2026-11-30",
        "annuityYear": 6,
        "inventor": "",
        "link": "",
        "abstract": "",
        "notificationEmails": "",
    },
    {
        "id": "3",
        "name": "Battery Thermal Management Module",
        "patentee": "Sunrise Energy Inc.",
        "country": "US",
        "status": STATUS_PENDING,
        "type": TYPE_INVENTION,
        "appNumber": "17/123,456",
        "pubNumber": "US2023/0123456A1",
        "appDate": "2022-05-20",
        "pubDate": "2023-11-23",
        "duration": "2022-05-20 ~ 2042-05-20",
        "annuityDate": "2027-05-20",
        "annuityYear": 5,
        "inventor": "",
        "link": "",
        "abstract": "",
        "notificationEmails": "",
    },
    {
        "id": "4",
        "name": "燈具外觀",
        "patentee": "明亮照明有限公司",
        "country": "TW",
        "status": STATUS_EXPIRED,
        "type": TYPE_DESIGN,
        "appNumber": "098300111",
        "pubNumber": "D134567",
        "appDate": "2009-08-03",
        "pubDate": "2010-05-01",
        "duration": "2009-08-03 ~ 2024-08-03",
        "annuityDate": "",
        "annuityYear": 15,
        "inventor": "",
        "link": "",
        "abstract": "",
        "notificationEmails": "",
    },
]


def new_patent_id() -> str:
    return uuid.uuid4().hex[:12]


def _canonical(value: Any, allowed: Iterable[str], aliases: Dict[str, str], default: str) -> str:
    s = str(value or "").strip()
    if not s:
        return default
    for a in allowed:
        if s.lower() == a.lower():
            return a
    return aliases.get(s, default)


def normalize_record(partial: Optional[Patent]) -> Patent:
    """Return a full-shape record: defaults for missing keys, canonical enums, an id."""
    rec: Patent = dict(RECORD_DEFAULTS)
    for k, v in (partial or {}).items():
        if v is None:
            continue
        rec[k] = v

    rec["name"] = str(rec.get("name") or "").strip() or DEFAULT_NAME
    rec["status"] = _canonical(rec.get("status"), STATUSES, _STATUS_ALIASES, STATUS_ACTIVE)
    rec["type"] = _canonical(rec.get("type"), TYPES, _TYPE_ALIASES, TYPE_INVENTION)
    rec["country"] = str(rec.get("country") or COUNTRY_TW).strip().upper()
    for key in ("appDate", "pubDate", "annuityDate"):
        raw = rec.get(key)
        rec[key] = normalize_date(raw) if raw else ""
    try:
        rec["annuityYear"] = max(1, int(rec.get("annuityYear") or 1))
    except (TypeError, ValueError):
        rec["annuityYear"] = 1
    for key in ("patentee", "appNumber", "pubNumber", "duration", "inventor", "link", "abstract", "notificationEmails"):
        rec[key] = str(rec.get(key) or "").strip()
    if not rec.get("id"):
        rec["id"] = new_patent_id()
    else:
        rec["id"] = str(rec["id"])
    return rec


TERM_FIELDS = ("duration", "annuityDate", "annuityYear")


def apply_term_fields(record: Patent, now: Now = None) -> Patent:
    """Recompute duration/annuity from appDate; reset them when appDate is not a valid date."""
    rec = dict(record)
    derived = compute_term_fields(rec.get("appDate"), rec.get("type") or TYPE_INVENTION, now)
    for key in TERM_FIELDS:
        rec[key] = derived.get(key, RECORD_DEFAULTS[key])
    return rec


# ---------- CRUD ----------

def add_patents(patents: List[Patent], incoming: Union[Patent, List[Patent]]) -> List[Patent]:
    """Newly imported records go to the top of the list."""
    new = incoming if isinstance(incoming, list) else [incoming]
    return [normalize_record(p) for p in new] + list(patents)


def update_patent(patents: List[Patent], updated: Patent) -> List[Patent]:
    return [updated if str(p.get("id")) == str(updated.get("id")) else p for p in patents]


def delete_patent(patents: List[Patent], patent_id: Any) -> List[Patent]:
    return [p for p in patents if str(p.get("id")) != str(patent_id)]


def get_patent(patents: List[Patent], patent_id: Any) -> Optional[Patent]:
    for p in patents:
        if str(p.get("id")) == str(patent_id):
            return p
    return None


# ---------- views ----------

def filter_patents(patents: List[Patent], search_term: str = "", status_filter: str = STATUS_ALL) -> List[Patent]:
    term = search_term or ""
    low = term.lower()
    out: List[Patent] = []
    for p in patents:
        matches_search = (
            low in str(p.get("name", "")).lower()
            or term in str(p.get("appNumber", ""))
            or term in str(p.get("country", ""))
            or low in str(p.get("patentee", "")).lower()
        )
        matches_status = status_filter == STATUS_ALL or p.get("status") == status_filter
        if matches_search and matches_status:
            out.append(p)
    return out


def days_until(value: Any, today: date) -> Optional[int]:
    due = parse_date(value)
    if due is None:
        return None
    return (due - today).days


def upcoming_annuities(patents: List[Patent], now: Now = None, window_days: int = 90) -> List[Patent]:
    """Active patents whose annuity falls due within the next `window_days` days."""
    today = reference_date(now)
    out: List[Patent] = []
    for p in patents:
        if p.get("status") != STATUS_ACTIVE:
            continue
        diff = days_until(p.get("annuityDate"), today)
        if diff is not None and 0 < diff <= window_days:
            out.append(p)
    return sorted(out, key=lambda p: p.get("annuityDate", ""))


def count_upcoming_annuities(patents: List[Patent], now: Now = None, window_days: int = 90) -> int:
    return len(upcoming_annuities(patents, now, window_days))


def survival_rate(patents: List[Patent]) -> int:
    if not patents:
        return 0
    active = sum(1 for p in patents if p.get("status") == STATUS_ACTIVE)
    # round half up
    return int(math.floor(active / len(patents) * 100 + 0.5))


def _count_by(patents: List[Patent], key: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for p in patents:
        k = str(p.get(key) or "")
        counts[k] = counts.get(k, 0) + 1
    return counts


def portfolio_stats(patents: List[Patent], now: Now = None, window_days: int = 90) -> Dict[str, Any]:
    by_status = {s: 0 for s in STATUSES}
    by_status.update(_count_by(patents, "status"))
    by_type = {t: 0 for t in TYPES}
    by_type.update(_count_by(patents, "type"))
    return {
        "total": len(patents),
        "by_status": by_status,
        "by_type": by_type,
        "by_country": _count_by(patents, "country"),
        "survival_rate": survival_rate(patents),
        "upcoming_annuities": count_upcoming_annuities(patents, now, window_days),
    }


# ---------- Excel ----------

def export_file_name(now: Now = None) -> str:
    return f"Patent_Export_{reference_date(now).isoformat()}.xlsx"


def export_to_xlsx(patents: List[Patent]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = EXPORT_SHEET_TITLE
    ws.append([h for h, _ in EXPORT_COLUMNS])
    for p in patents:
        ws.append([p.get(k, "") for _, k in EXPORT_COLUMNS])

    # rough column widths; CJK glyphs count double
    for col_idx, (header, key) in enumerate(EXPORT_COLUMNS, start=1):
        values = [header] + [str(p.get(key, "") or "") for p in patents]
        width = max(sum(2 if ord(ch) > 0x2E80 else 1 for ch in v) for v in values)
        ws.column_dimensions[get_column_letter(col_idx)].width = min(60, width + 2)

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().replace("\u00A0", " ")


def _map_header(value: Any) -> Optional[str]:
    h = normalize_header(value)
    if not h:
        return None
    return IMPORT_HEADER_ALIASES.get(h) or IMPORT_HEADER_ALIASES.get(h.lower())


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()[:10]
    return str(value).strip()


def import_from_xlsx(data: bytes) -> List[Patent]:
    """Read patents from a workbook laid out like the export (first sheet)."""
    wb = load_workbook(filename=BytesIO(data), data_only=True, read_only=True)
    try:
        ws = wb.worksheets[0]
        rows = list(ws.iter_rows(values_only=True))
    finally:
        wb.close()

    # header row: the first of the top 50 rows that maps to a name column
    header_row_idx = None
    headers: Dict[int, str] = {}
    for r_idx, row in enumerate(rows[:50]):
        mapped = {c_idx: _map_header(v) for c_idx, v in enumerate(row)}
        mapped = {c: k for c, k in mapped.items() if k}
        if "name" in mapped.values():
            header_row_idx = r_idx
            headers = mapped
            break
    if header_row_idx is None:
        raise ValueError("找不到「專利名稱」欄位，請確認 Excel 標題列。")

    patents: List[Patent] = []
    for row in rows[header_row_idx + 1:]:
        rec: Patent = {}
        for c_idx, key in headers.items():
            rec[key] = _cell_to_str(row[c_idx]) if c_idx < len(row) else ""
        if not any(v for v in rec.values()):
            continue
        patents.append(normalize_record(rec))
    logger.info("Imported %d patents from workbook", len(patents))
    return patents
