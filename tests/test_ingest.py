"""Tests for the bulk TSV import CLI."""
import json
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pandas as pd
import pytest

from models import DogClass
from ingest import IMPORT_COLUMNS, import_rows, ingest_tsv, main, parse_import_frame
from persistence import Persistence


def _write_tsv(path, rows):
    lines = ["\t".join(IMPORT_COLUMNS)] + ["\t".join(r) for r in rows]
    path.write_text("\n".join(lines) + "\n")
    return path


class TestParseImportFrame:
    def test_valid_rows(self, db, rex):
        df = pd.DataFrame([["rex", "1/5/2024", "Novice", "JWW"]], columns=IMPORT_COLUMNS)
        (row,) = parse_import_frame(df, db)
        assert row.errors == []
        assert row.dog_id == rex.id
        assert row.parsed_date == "2024-01-05"
        assert row.competition_class == "Jumpers"
        assert row.row_number == 2

    def test_row_errors(self, db, rex):
        df = pd.DataFrame([
            ["Fido", "1/5/2024", "Novice", "Standard"],
            ["Rex", "2024-01-05", "Novice", "Standard"],
            ["Rex", "1/5/2024", "Novice", "Snooker"],
            ["Rex", "1/5/2024", "Novice", "Premier Std"],
            ["", "", "Open", "FAST"],
        ], columns=IMPORT_COLUMNS)
        rows = parse_import_frame(df, db)
        assert 'Dog "Fido" not found' in rows[0].errors
        assert "Date must be in M/D/YYYY format" in rows[1].errors
        assert 'Invalid class "Snooker"' in rows[2].errors
        assert "Invalid level" in rows[3].errors[0]
        assert "Dog name is required" in rows[4].errors
        assert "Date is required" in rows[4].errors

    def test_missing_columns(self, db):
        with pytest.raises(ValueError, match="Class"):
            parse_import_frame(pd.DataFrame(columns=["Dog", "Date", "Level"]), db)


class TestImport:
    def test_out_of_order_import_recalculates(self, db, rex, tmp_path):
        path = _write_tsv(tmp_path / "qs.tsv", [
            ["Rex", "3/2/2024", "Open", "Standard"],
            ["Rex", "1/3/2024", "Novice", "Standard"],
            ["Rex", "3/1/2024", "Open", "Standard"],
            ["Rex", "1/1/2024", "Novice", "Standard"],
            ["Rex", "3/3/2024", "Open", "Standard"],
            ["Rex", "1/2/2024", "Novice", "Standard"],
            ["Nobody", "1/2/2024", "Novice", "Standard"],
        ])
        result = ingest_tsv(db, str(path))
        assert result == {"imported": 6, "errors": 1,
                          "dogs_recalculated": 1, "recalculation_failures": 0}
        assert db.get_dog(rex.id).level_for("Standard") == "Excellent"
        runs = db.get_runs_for_dog(rex.id)
        assert all(r.qualified and r.notes == "Imported" for r in runs)

    def test_dry_run_writes_nothing(self, db, rex, tmp_path):
        path = _write_tsv(tmp_path / "qs.tsv", [["Rex", "1/1/2024", "Novice", "Standard"]])
        result = ingest_tsv(db, str(path), dry_run=True)
        assert result["imported"] == 0
        assert db.list_runs(dog_id=rex.id) == []

    def test_import_rows_skips_errors(self, db, rex):
        df = pd.DataFrame([["Rex", "bad", "Novice", "Standard"]], columns=IMPORT_COLUMNS)
        result = import_rows(db, parse_import_frame(df, db))
        assert result["imported"] == 0
        assert result["dogs_recalculated"] == 0


class TestMain:
    def test_tsv_and_recalculate(self, tmp_path, capsys):
        db_path = tmp_path / "cli.db"
        db = Persistence(db_path)
        db.create_dog("Rex", [DogClass("FAST", "Novice")])
        path = _write_tsv(tmp_path / "qs.tsv", [
            ["Rex", f"1/{d}/2024", "Novice", "FAST"] for d in (1, 2, 3)
        ])
        assert main(["--db", str(db_path), "--tsv", str(path)]) == 0
        assert main(["--db", str(db_path), "--recalculate", "rex"]) == 0
        out = capsys.readouterr().out
        payload = json.loads(out[out.index("{"):])
        assert payload["levels"] == {"FAST": "Open"}

    def test_progress_and_stats(self, tmp_path, capsys):
        db_path = tmp_path / "cli.db"
        Persistence(db_path).create_dog("Rex", [DogClass("Standard", "Masters")])
        assert main(["--db", str(db_path), "--progress", "Rex"]) == 0
        assert "=== Rex ===" in capsys.readouterr().out
        assert main(["--db", str(db_path), "--stats"]) == 0
        assert json.loads(capsys.readouterr().out)["dogs"] == 1

    def test_unknown_dog_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["--db", str(tmp_path / "cli.db"), "--progress", "Nobody"])
