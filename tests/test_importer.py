from datetime import date

import pytest

import config
import gemini_service
import importer
from importer import SOURCE_AI, SOURCE_HEURISTIC, ai_available, import_from_text, import_from_upload
from portfolio import export_to_xlsx, SAMPLE_PATENTS


NOW = date(2024, 6, 1)

GAZETTE = "[54] 發明名稱 太陽能板\n[22] 申請日 2020-01-15"


@pytest.fixture
def no_key(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "")


@pytest.fixture
def with_key(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "test-key")


def test_ai_available_follows_config(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "")
    assert ai_available() is False
    monkeypatch.setattr(config, "GEMINI_API_KEY", "abc")
    assert ai_available() is True


def test_without_key_uses_heuristic(no_key, monkeypatch):
    def fail(*a, **kw):
        raise AssertionError("Gemini must not be called without a key")

    monkeypatch.setattr(gemini_service, "parse_patent_from_text", fail)
    rec, source = import_from_text(GAZETTE, now=NOW)

    assert source == SOURCE_HEURISTIC
    assert rec["name"] == "太陽能板"
    assert rec["annuityDate"] == "2025-01-15"
    assert rec["id"]


def test_ai_result_gets_derived_fields(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_text",
                        lambda text: {"name": "折疊支架", "type": "新型", "appDate": "2020/01/15", "annuityYear": 99})
    rec, source = import_from_text("whatever", now=NOW)

    assert source == SOURCE_AI
    assert rec["type"] == "Utility"
    assert rec["appDate"] == "2020-01-15"
    assert rec["duration"] == "2020-01-15 ~ 2030-01-15"
    assert rec["annuityDate"] == "2025-01-15"
    assert rec["annuityYear"] == 5


def test_ai_complete_record_is_kept(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_text", lambda text: {
        "name": "A", "appDate": "2020-01-15", "duration": "2020-01-15 ~ 2040-01-15",
        "annuityDate": "2026-01-15", "annuityYear": 7,
    })
    rec, _ = import_from_text("whatever", now=NOW)

    assert rec["annuityDate"] == "2026-01-15"
    assert rec["annuityYear"] == 7


def test_ai_failure_falls_back(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_text", lambda text: None)
    rec, source = import_from_text(GAZETTE, now=NOW)

    assert source == SOURCE_HEURISTIC
    assert rec["name"] == "太陽能板"


def test_use_ai_false_skips_gemini(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_text", lambda text: {"name": "from ai"})
    rec, source = import_from_text(GAZETTE, now=NOW, use_ai=False)
    assert source == SOURCE_HEURISTIC
    assert rec["name"] == "太陽能板"


def test_upload_txt(no_key):
    records = import_from_upload("gazette.TXT", GAZETTE.encode("utf-8"), now=NOW)
    assert len(records) == 1
    assert records[0]["appDate"] == "2020-01-15"


def test_upload_xlsx(no_key):
    records = import_from_upload("list.xlsx", export_to_xlsx(SAMPLE_PATENTS), now=NOW)
    assert [r["name"] for r in records] == [p["name"] for p in SAMPLE_PATENTS]


def test_upload_pdf_uses_text_layer(no_key, monkeypatch):
    monkeypatch.setattr(importer, "extract_text_from_pdf", lambda data: GAZETTE)
    records = import_from_upload("scan.pdf", b"%PDF-1.4", now=NOW)
    assert records[0]["name"] == "太陽能板"


def test_upload_pdf_prefers_ai(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_file", lambda data, mime: {"name": "AI 專利"})

    def fail(data):
        raise AssertionError("text layer should not be read when AI succeeds")

    monkeypatch.setattr(importer, "extract_text_from_pdf", fail)
    records = import_from_upload("doc.pdf", b"%PDF-1.4", now=NOW)
    assert records[0]["name"] == "AI 專利"


def test_upload_unsupported_type():
    with pytest.raises(ValueError):
        import_from_upload("notes.docx", b"")


def test_upload_real_pdf_without_ai(lens_holder_pdf, no_ocr, with_key, monkeypatch):
    def fail(*a, **kw):
        raise AssertionError("Gemini must not be called when AI is off")

    monkeypatch.setattr(gemini_service, "parse_patent_from_file", fail)
    records = import_from_upload("x.pdf", lens_holder_pdf, now=NOW, use_ai=False)

    assert len(records) == 1
    assert records[0]["name"] == "Lens Holder"
    assert records[0]["appDate"] == "2022-05-20"
    assert records[0]["annuityDate"] == "2025-05-20"


def test_ai_record_with_far_future_date(with_key, monkeypatch):
    monkeypatch.setattr(gemini_service, "parse_patent_from_text", lambda text: {"name": "A", "appDate": "9995-01-15"})
    rec, source = import_from_text("whatever", now=NOW)

    assert source == SOURCE_AI
    assert rec["duration"] == ""
    assert rec["annuityYear"] == 1
