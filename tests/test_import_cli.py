import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines import hierarchy
from scripts import import_problems


def test_cli_imports_file(catalog, tmp_path, capsys):
    batch = tmp_path / "batch.json"
    batch.write_text(
        json.dumps([{"title": "Q1", "url": "https://example.com/q1", "platform": "LeetCode", "platformId": "9"}]),
        encoding="utf-8",
    )
    exit_code = import_problems.main([catalog["sub"].id, "--file", str(batch)])
    captured = capsys.readouterr()
    assert exit_code == 0
    report = json.loads(captured.out)
    assert report["added"] == 1
    assert report["problems"][0]["order"] == 4
    _, children = hierarchy.list_children(catalog["sub"].id)
    assert children[-1].title == "Q1"


def test_cli_rejects_malformed_batch(catalog, tmp_path, capsys):
    batch = tmp_path / "batch.json"
    batch.write_text('[{"title": "Q1"}]', encoding="utf-8")
    exit_code = import_problems.main([catalog["sub"].id, "--file", str(batch)])
    captured = capsys.readouterr()
    assert exit_code == 1
    assert "Import rejected" in captured.err
    _, children = hierarchy.list_children(catalog["sub"].id)
    assert len(children) == 3


def test_cli_reports_missing_file(temp_db, tmp_path, capsys):
    exit_code = import_problems.main(["sub", "--file", str(tmp_path / "nope.json")])
    assert exit_code == 1
    assert "Cannot read" in capsys.readouterr().err
