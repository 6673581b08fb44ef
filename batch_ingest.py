import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from tqdm import tqdm

import config
from importer import import_from_upload
from portfolio import Patent, export_to_xlsx


logger = logging.getLogger(__name__)


def _iter_input_files(input_dir: Path) -> List[Path]:
    return sorted([p for p in input_dir.rglob("*") if p.is_file() and p.suffix.lower() in (".pdf", ".txt")])


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def process_one_file(path: Path, out_docs: Path, use_ai: bool, today: Optional[date]) -> Tuple[Optional[Patent], str]:
    try:
        records = import_from_upload(path.name, path.read_bytes(), now=today, use_ai=use_ai)
        record = records[0]

        doc_out_path = out_docs / f"{path.stem}.patent.json"
        doc_out_path.write_text(json.dumps(record, ensure_ascii=False, indent=2), encoding="utf-8")
        return record, "ok"
    except Exception as e:
        logger.exception("Failed to process %s", path)
        return None, str(e)


def _parse_today(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Batch convert patent PDFs/text files to patent records (JSON + Excel)")
    parser.add_argument("--in", dest="inp", required=True, help="Input directory containing PDF/TXT files")
    parser.add_argument("--out", dest="out", required=True, help="Output directory for docs/ and patents.xlsx")
    parser.add_argument("--ai", action="store_true", help="Try Gemini extraction before the heuristic extractor")
    parser.add_argument("--today", type=_parse_today, default=None, help="Reference date for annuity computation (YYYY-MM-DD)")

    args = parser.parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

    in_dir = Path(args.inp).expanduser().resolve()
    out_dir = Path(args.out).expanduser().resolve()

    if not in_dir.exists() or not in_dir.is_dir():
        print(f"Input directory not found: {in_dir}", file=sys.stderr)
        sys.exit(1)

    out_docs = out_dir / "docs"
    _ensure_dir(out_docs)

    files = _iter_input_files(in_dir)
    if not files:
        print("No PDF/TXT files found.")
        return

    patents: List[Patent] = []
    errors = []
    for p in tqdm(files, desc="Extracting patents"):
        record, msg = process_one_file(p, out_docs, args.ai, args.today)
        if record is None:
            errors.append({"file": str(p), "error": msg})
        else:
            patents.append(record)

    if patents:
        (out_dir / "patents.xlsx").write_bytes(export_to_xlsx(patents))

    if errors:
        err_path = out_dir / "errors.jsonl"
        with err_path.open("w", encoding="utf-8") as fw:
            for e in errors:
                fw.write(json.dumps(e, ensure_ascii=False) + "\n")
        print(f"Completed with {len(errors)} errors. See: {err_path}")
    else:
        print(f"Completed successfully. {len(patents)} patents extracted.")


if __name__ == "__main__":
    main()
