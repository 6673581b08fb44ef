from datetime import date, datetime

import pytest

from patent_processing import (
    DEFAULT_NAME,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_PENDING,
    TYPE_DESIGN,
    TYPE_INVENTION,
    TYPE_UTILITY,
    _needs_ocr,
    compute_term_fields,
    extract_patent_from_text,
    extract_text_from_pdf,
    infer_country,
    infer_status,
    infer_type,
    normalize_date,
)


NOW = date(2024, 6, 1)

TW_GAZETTE = """中華民國專利公報
[11] 證書號數：I712345
[45] 公告日：2021/03/01
[21] 申請案號：109101234
[22] 申請日：2020/01/15
[54] 發明名稱：智慧型太陽能追日系統
[73] 專利權人：光電科技股份有限公司
[72] 發明人：王大明
"""

US_PUBLICATION = """Title: Battery Thermal Management Module
Applicant: Sunrise Energy Inc.
Appl. No.: 17/123,456
Filed: 2022-05-20
Publication No.: US2023/0123456A1
Publication Date: 2023-11-23
United States Patent Application Publication
"""


def test_unrecognized_text_uses_first_line_and_empty_fields():
    rec = extract_patent_from_text("hello world\nrandom notes without fields", now=NOW)

    assert rec["name"] == "hello world"
    for key in ("patentee", "appNumber", "pubNumber", "appDate", "pubDate", "duration", "annuityDate", "inventor", "link"):
        assert rec[key] == ""
    assert rec["annuityYear"] == 1
    assert rec["status"] == STATUS_ACTIVE
    assert rec["type"] == TYPE_INVENTION
    assert rec["country"] == "TW"


def test_long_first_line_falls_back_to_placeholder():
    rec = extract_patent_from_text("x" * 60 + "\nmore text", now=NOW)
    assert rec["name"] == DEFAULT_NAME


@pytest.mark.parametrize("text", ["", None, "   \n\n", 12345])
def test_malformed_input_never_raises(text):
    rec = extract_patent_from_text(text, now=NOW)
    assert rec["name"]
    assert rec["duration"] == ""


def test_gazette_snippet_name_and_filing_date():
    rec = extract_patent_from_text("[54] 發明名稱 太陽能板\n[22] 申請日 2020-01-15", now=NOW)

    assert "太陽能板" in rec["name"]
    assert rec["appDate"] == "2020-01-15"
    assert rec["duration"] == "2020-01-15 ~ 2040-01-15"
    assert rec["annuityDate"] == "2025-01-15"
    assert rec["annuityYear"] == 5


def test_full_tw_gazette():
    rec = extract_patent_from_text(TW_GAZETTE, now=NOW)

    assert rec["name"] == "智慧型太陽能追日系統"
    assert rec["patentee"] == "光電科技股份有限公司"
    assert rec["pubNumber"] == "I712345"
    assert rec["appNumber"] == "109101234"
    assert rec["appDate"] == "2020-01-15"
    assert rec["pubDate"] == "2021-03-01"
    assert rec["country"] == "TW"
    assert rec["type"] == TYPE_INVENTION
    assert rec["inventor"] == ""


def test_english_labels():
    rec = extract_patent_from_text(US_PUBLICATION, now=NOW)

    assert rec["name"] == "Battery Thermal Management Module"
    assert rec["patentee"] == "Sunrise Energy Inc."
    assert rec["appNumber"] == "17/123,456"
    assert rec["pubNumber"] == "US2023/0123456A1"
    assert rec["appDate"] == "2022-05-20"
    assert rec["pubDate"] == "2023-11-23"
    assert rec["country"] == "US"
    assert rec["annuityDate"] == "2025-05-20"
    assert rec["annuityYear"] == 3


def test_chinese_label_takes_precedence_over_english():
    rec = extract_patent_from_text("Title: English Name\n專利名稱：中文名稱", now=NOW)
    assert rec["name"] == "中文名稱"


def test_fullwidth_and_unpadded_dates_are_normalized():
    assert extract_patent_from_text("申請日：２０２０／０１／１５", now=NOW)["appDate"] == "2020-01-15"
    assert extract_patent_from_text("申請日: 2020.1.5", now=NOW)["appDate"] == "2020-01-05"


def test_invalid_filing_date_skips_derived_fields():
    rec = extract_patent_from_text("[54] 測試裝置\n[22] 申請日 2020-13-45", now=NOW)

    assert rec["appDate"] == ""
    assert rec["duration"] == ""
    assert rec["annuityDate"] == ""
    assert rec["annuityYear"] == 1


def test_utility_from_publication_prefix():
    rec = extract_patent_from_text("Patent No.: M123456\nFiling Date: 2020-01-15", now=NOW)

    assert rec["pubNumber"] == "M123456"
    assert rec["type"] == TYPE_UTILITY
    assert rec["duration"] == "2020-01-15 ~ 2030-01-15"


def test_design_from_publication_prefix():
    rec = extract_patent_from_text("Patent No.: D212345\nFiling Date: 2020-01-15", now=NOW)

    assert rec["type"] == TYPE_DESIGN
    assert rec["duration"] == "2020-01-15 ~ 2035-01-15"


def test_design_check_overrides_utility():
    assert infer_type("新型 ... 設計") == TYPE_DESIGN
    assert infer_type("新型專利") == TYPE_UTILITY
    assert infer_type("nothing here", "D123") == TYPE_DESIGN
    assert infer_type("nothing here", "I123") == TYPE_INVENTION


def test_expiry_cue_wins_over_pending_cue():
    rec = extract_patent_from_text("本案已屆期\n先前審查中", now=NOW)
    assert rec["status"] == STATUS_EXPIRED


@pytest.mark.parametrize("text,expected", [
    ("審查中", STATUS_PENDING),
    ("Status: pending", STATUS_PENDING),
    ("Status: LAPSED", STATUS_EXPIRED),
    ("專利權已消滅", STATUS_EXPIRED),
    ("核准公告", STATUS_ACTIVE),
])
def test_status_cues(text, expected):
    assert infer_status(text) == expected


@pytest.mark.parametrize("text,expected", [
    ("United States Patent", "US"),
    ("United States Patent, priority Taiwan", "TW"),
    ("USPTO 中華民國", "TW"),
    ("中华人民共和国国家知识产权局 United States", "CN"),
    ("no cues", "TW"),
])
def test_country_cues(text, expected):
    assert infer_country(text) == expected


def test_term_by_type():
    assert compute_term_fields("2020-01-15", TYPE_INVENTION, NOW)["duration"] == "2020-01-15 ~ 2040-01-15"
    assert compute_term_fields("2020-01-15", TYPE_UTILITY, NOW)["duration"] == "2020-01-15 ~ 2030-01-15"
    assert compute_term_fields("2020-01-15", TYPE_DESIGN, NOW)["duration"] == "2020-01-15 ~ 2035-01-15"


def test_annuity_date_this_year_when_not_passed():
    fields = compute_term_fields("2020-01-15", TYPE_INVENTION, date(2024, 1, 10))
    assert fields["annuityDate"] == "2024-01-15"
    assert fields["annuityYear"] == 5

    same_day = compute_term_fields("2020-01-15", TYPE_INVENTION, datetime(2024, 1, 15, 18, 30))
    assert same_day["annuityDate"] == "2024-01-15"


def test_leap_day_filing():
    fields = compute_term_fields("2020-02-29", TYPE_UTILITY, date(2023, 3, 1))
    assert fields["duration"] == "2020-02-29 ~ 2030-02-28"
    assert fields["annuityDate"] == "2024-02-29"


def test_annuity_year_is_at_least_one():
    fields = compute_term_fields("2025-03-01", TYPE_INVENTION, NOW)
    assert fields["annuityYear"] == 1


def test_unparseable_date_gives_no_term_fields():
    assert compute_term_fields("", TYPE_INVENTION, NOW) == {}
    assert compute_term_fields("not a date", TYPE_INVENTION, NOW) == {}
    assert normalize_date("2021/2/30") == ""


def test_same_input_same_output():
    assert extract_patent_from_text(TW_GAZETTE, now=NOW) == extract_patent_from_text(TW_GAZETTE, now=NOW)


def test_far_future_filing_date_does_not_raise():
    rec = extract_patent_from_text("[54] 測試裝置\n[22] 申請日 9995-01-15", now=NOW)

    assert rec["appDate"] == "9995-01-15"
    assert rec["duration"] == ""
    assert rec["annuityDate"] == ""
    assert rec["annuityYear"] == 1
    assert compute_term_fields("9995-01-15", TYPE_UTILITY, NOW) == {}


def test_first_line_fallback_is_not_folded():
    rec = extract_patent_from_text("  型號ＡＢ－１２  \n其他內容", now=NOW)
    assert rec["name"] == "型號ＡＢ－１２"


@pytest.mark.parametrize("pages,expected", [
    (["x" * 399], True),
    (["x" * 400], False),
    (["", ""], True),
    (["x" * 300, "x" * 50], True),
    (["x" * 1000, "", ""], True),
    (["x" * 300] * 3, False),
])
def test_needs_ocr_thresholds(pages, expected):
    assert _needs_ocr(pages) is expected


def test_extract_text_from_pdf_reads_text_layer(lens_holder_pdf, no_ocr):
    text = extract_text_from_pdf(lens_holder_pdf)

    assert "Title: Lens Holder" in text
    assert "Filing Date: 2022-05-20" in text
    rec = extract_patent_from_text(text, now=NOW)
    assert rec["name"] == "Lens Holder"
    assert rec["appDate"] == "2022-05-20"
    assert rec["country"] == "US"
