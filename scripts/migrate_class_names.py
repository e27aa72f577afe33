#!/usr/bin/env python3
"""One-time migration: rewrite legacy class names to the canonical names.

Usage:
    python scripts/migrate_class_names.py [--db agility.db] [--dry-run]

The script:
  1. Renames legacy class names on dog class entries (e.g. "Jumpers With
     Weaves" -> "Jumpers"); a duplicate entry for the same dog is dropped
  2. Renames legacy class names on runs
  3. Recalculates class levels for every dog that had runs renamed
"""
import argparse
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from persistence import Persistence
from progression_rules import is_valid_competition_class, normalize_class_name
from recalculate import RecalculationError, recalculate_dog_levels


def migrate(db: Persistence, dry_run: bool = False) -> dict:
    stats = {"dog_classes": 0, "runs": 0, "dogs_recalculated": 0}

    print("[1/3] Scanning dog class entries...")
    entries = db.conn.execute("SELECT dog_id, class_name, level FROM dog_classes").fetchall()
    existing = {(r["dog_id"], r["class_name"]) for r in entries}
    for r in entries:
        new_name = normalize_class_name(r["class_name"])
        if new_name == r["class_name"]:
            continue
        print(f"       {r['dog_id']}: {r['class_name']} -> {new_name}")
        stats["dog_classes"] += 1
        if dry_run:
            continue
        if (r["dog_id"], new_name) in existing:
            db.conn.execute(
                "DELETE FROM dog_classes WHERE dog_id = ? AND class_name = ?",
                (r["dog_id"], r["class_name"]),
            )
        else:
            db.conn.execute(
                "UPDATE dog_classes SET class_name = ? WHERE dog_id = ? AND class_name = ?",
                (new_name, r["dog_id"], r["class_name"]),
            )
            existing.add((r["dog_id"], new_name))
    db.conn.commit()

    print("[2/3] Scanning runs...")
    touched_dogs = set()
    names = db.conn.execute("SELECT DISTINCT class_name FROM runs").fetchall()
    for r in names:
        old = r["class_name"]
        new_name = normalize_class_name(old)
        if new_name == old:
            if not is_valid_competition_class(old):
                print(f"       WARN: unknown class {old!r} left unchanged")
            continue
        dogs = db.conn.execute(
            "SELECT DISTINCT dog_id FROM runs WHERE class_name = ?", (old,)
        ).fetchall()
        touched_dogs.update(d["dog_id"] for d in dogs)
        count = db.conn.execute(
            "SELECT COUNT(*) FROM runs WHERE class_name = ?", (old,)
        ).fetchone()[0]
        print(f"       {old} -> {new_name}: {count} runs")
        stats["runs"] += int(count)
        if not dry_run:
            db.conn.execute("UPDATE runs SET class_name = ? WHERE class_name = ?", (new_name, old))
    db.conn.commit()

    print(f"[3/3] Recalculating {len(touched_dogs)} dogs...")
    if not dry_run:
        for dog_id in sorted(touched_dogs):
            try:
                recalculate_dog_levels(db, dog_id)
                stats["dogs_recalculated"] += 1
            except RecalculationError as e:
                print(f"       WARN: {dog_id} recalculation failed: {e}")

    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--db", help="SQLite path (default: AGILITY_DB_PATH / DATABASE_URL)")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    db = Persistence(args.db) if args.db else Persistence()
    stats = migrate(db, dry_run=args.dry_run)
    print(f"Done: {stats['dog_classes']} class entries, {stats['runs']} runs renamed, "
          f"{stats['dogs_recalculated']} dogs recalculated")
    return 0


if __name__ == "__main__":
    sys.exit(main())
