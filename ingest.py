"""CLI for bulk-importing qualifying runs and rebuilding dog levels.

Import file: tab-separated with a header row and the columns
``Dog, Date, Level, Class`` (dates as M/D/YYYY).  Every imported row is a
qualifying run.  Because rows can arrive in any order, the incremental
level-up check is skipped and each affected dog is recalculated once at
the end.

Usage:
    python ingest.py --tsv path/to/qs.tsv
    python ingest.py --tsv path/to/qs.tsv --dry-run
    python ingest.py --recalculate "Dog Name"
    python ingest.py --progress "Dog Name"
    python ingest.py --stats
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

import config
from persistence import Persistence
from progress_report import build_dog_progress, dog_progress_to_text
from progression_rules import is_valid_competition_class, levels_in_chain, normalize_class_name
from recalculate import RecalculationError, recalculate_dog_levels

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = ["Dog", "Date", "Level", "Class"]


@dataclass
class ImportRow:
    row_number: int
    dog: str
    date: str
    level: str
    competition_class: str
    errors: List[str] = field(default_factory=list)
    dog_id: Optional[str] = None
    parsed_date: Optional[str] = None


def parse_import_frame(df: pd.DataFrame, db: Persistence) -> List[ImportRow]:
    """Validate each row; rows with errors are kept so they can be reported."""
    missing = [c for c in IMPORT_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Import file is missing columns: {', '.join(missing)}")

    df = df[IMPORT_COLUMNS].astype(str).apply(lambda col: col.str.strip())
    parsed_dates = pd.to_datetime(df["Date"], format="%m/%d/%Y", errors="coerce")

    rows = []
    dog_cache: Dict[str, Optional[str]] = {}
    for idx, rec in enumerate(df.itertuples(index=False)):
        # +2: header row and 1-based numbering
        row = ImportRow(idx + 2, rec.Dog, rec.Date, rec.Level, normalize_class_name(rec.Class))

        if not row.dog:
            row.errors.append("Dog name is required")
        else:
            key = row.dog.lower()
            if key not in dog_cache:
                dog = db.get_dog_by_name(row.dog)
                dog_cache[key] = dog.id if dog else None
            row.dog_id = dog_cache[key]
            if row.dog_id is None:
                row.errors.append(f'Dog "{row.dog}" not found')

        stamp = parsed_dates.iloc[idx]
        if not row.date:
            row.errors.append("Date is required")
        elif pd.isna(stamp):
            row.errors.append("Date must be in M/D/YYYY format")
        else:
            row.parsed_date = stamp.strftime("%Y-%m-%d")

        if not is_valid_competition_class(row.competition_class):
            row.errors.append(f'Invalid class "{rec.Class}"')
        elif row.level not in levels_in_chain(row.competition_class):
            row.errors.append(f'Invalid level "{row.level}" for {row.competition_class}')

        rows.append(row)
    return rows


def import_rows(db: Persistence, rows: List[ImportRow]) -> Dict[str, int]:
    """Insert valid rows as qualifying runs, then recalculate each touched dog."""
    imported = 0
    touched: List[str] = []
    for row in rows:
        if row.errors:
            continue
        db.create_run(
            row.dog_id, row.parsed_date, row.competition_class, row.level,
            qualified=True, notes="Imported",
        )
        imported += 1
        if row.dog_id not in touched:
            touched.append(row.dog_id)

    failed = 0
    for dog_id in touched:
        try:
            result = recalculate_dog_levels(db, dog_id)
        except RecalculationError as exc:
            logger.error("Recalculation failed for dog %s: %s", dog_id, exc)
            failed += 1
            continue
        for change in result.changes:
            print(f"  {result.dog_name}: {change.competition_class} "
                  f"{change.from_level} -> {change.to_level}")

    return {"imported": imported, "errors": sum(1 for r in rows if r.errors),
            "dogs_recalculated": len(touched) - failed, "recalculation_failures": failed}


def ingest_tsv(db: Persistence, path: str, dry_run: bool = False) -> Dict[str, int]:
    df = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
    rows = parse_import_frame(df, db)
    for row in rows:
        for err in row.errors:
            print(f"Row {row.row_number}: {err}")
    valid = sum(1 for r in rows if not r.errors)
    print(f"{len(rows)} rows, {valid} valid, {len(rows) - valid} with errors")
    if dry_run:
        return {"imported": 0, "errors": len(rows) - valid,
                "dogs_recalculated": 0, "recalculation_failures": 0}
    result = import_rows(db, rows)
    print(f"Imported {result['imported']} runs; recalculated {result['dogs_recalculated']} dogs")
    return result


def _dog_by_name_or_exit(db: Persistence, name: str):
    dog = db.get_dog_by_name(name)
    if dog is None:
        print(f"Dog {name!r} not found", file=sys.stderr)
        sys.exit(1)
    return dog


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Agility Qs bulk import and maintenance")
    parser.add_argument("--tsv", help="Tab-separated import file (Dog, Date, Level, Class)")
    parser.add_argument("--dry-run", action="store_true", help="Validate only, write nothing")
    parser.add_argument("--recalculate", metavar="DOG", help="Rebuild a dog's class levels")
    parser.add_argument("--progress", metavar="DOG", help="Print a dog's progress report")
    parser.add_argument("--stats", action="store_true", help="Print database stats")
    parser.add_argument("--db", help="SQLite path (overrides AGILITY_DB_PATH)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL)
    db = Persistence(args.db) if args.db else Persistence()

    if args.tsv:
        result = ingest_tsv(db, args.tsv, dry_run=args.dry_run)
        return 1 if result["recalculation_failures"] else 0
    if args.recalculate:
        dog = _dog_by_name_or_exit(db, args.recalculate)
        try:
            result = recalculate_dog_levels(db, dog.id)
        except RecalculationError as exc:
            print(f"Recalculation failed: {exc}", file=sys.stderr)
            return 1
        print(json.dumps(result.to_dict(), indent=2))
        return 0
    if args.progress:
        dog = _dog_by_name_or_exit(db, args.progress)
        print(dog_progress_to_text(build_dog_progress(dog, db.get_runs_for_dog(dog.id))))
        return 0
    if args.stats:
        print(json.dumps(db.get_db_stats(), indent=2))
        return 0
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
