"""Tests for the civicwatch command line."""
import json
from datetime import datetime, timedelta, timezone

import pytest

from civicwatch.cli import build_parser, main

from conftest import DEG_PER_M, JHB_LAT, JHB_LNG


def _recent(hours=1):
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


@pytest.fixture
def files(tmp_path):
    draft = tmp_path / "draft.json"
    draft.write_text(json.dumps({
        "lat": JHB_LAT, "lng": JHB_LNG, "category": "water", "title": "Burst pipe on Main Street",
    }))
    reports = tmp_path / "reports.json"
    reports.write_text(json.dumps([
        {"id": "dup", "lat": JHB_LAT + 300 * DEG_PER_M, "lng": JHB_LNG, "category": "water",
         "title": "Water pipe burst near Main St", "createdAt": _recent(), "upvoteCount": 2},
        {"id": "old", "lat": JHB_LAT, "lng": JHB_LNG, "category": "water",
         "title": "Burst pipe", "createdAt": _recent(24 * 30)},
        {"id": "road", "lat": JHB_LAT, "lng": JHB_LNG, "category": "roads",
         "title": "Pothole", "createdAt": _recent()},
    ]))
    return draft, reports, tmp_path


class TestDuplicatesCommand:
    def test_json_output(self, files, capsys):
        draft, reports, _ = files
        assert main(["duplicates", str(draft), "--reports", str(reports), "-f", "json", "--no-config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [c["report"]["id"] for c in data] == ["dup"]

    def test_max_age_flag(self, files, capsys):
        draft, reports, _ = files
        main(["duplicates", str(draft), "--reports", str(reports), "-f", "json", "--max-age", "60d",
              "--no-config"])
        ids = [c["report"]["id"] for c in json.loads(capsys.readouterr().out)]
        assert ids == ["old", "dup"]

    def test_message(self, files, capsys):
        draft, reports, _ = files
        assert main(["duplicates", str(draft), "--reports", str(reports), "--message", "--no-config"]) == 0
        out = capsys.readouterr().out
        assert "We found a similar report nearby" in out
        assert "👍 2 upvotes" in out

    def test_message_when_nothing_found(self, files, capsys):
        draft, reports, _ = files
        main(["duplicates", str(draft), "--reports", str(reports), "--message", "--max-distance", "0.1",
              "--min-similarity", "1.0", "--policy", "confidence", "--min-confidence", "0.99", "--no-config"])
        assert "No similar reports found nearby." in capsys.readouterr().out

    def test_output_file(self, files, capsys):
        draft, reports, tmp_path = files
        out_file = tmp_path / "out.json"
        main(["duplicates", str(draft), "--reports", str(reports), "-f", "json", "-o", str(out_file),
              "--no-config"])
        assert json.loads(out_file.read_text())[0]["report"]["id"] == "dup"
        assert "Wrote 1 candidates" in capsys.readouterr().err

    def test_missing_source(self, files, capsys):
        draft, _, _ = files
        assert main(["duplicates", str(draft), "--no-config"]) == 1
        assert "--reports" in capsys.readouterr().err

    def test_missing_draft(self, tmp_path, capsys):
        assert main(["duplicates", str(tmp_path / "nope.json"), "--reports", "x.json", "--no-config"]) == 1
        assert "Error loading draft" in capsys.readouterr().err

    def test_bad_max_age(self, files, capsys):
        draft, reports, _ = files
        assert main(["duplicates", str(draft), "--reports", str(reports), "--max-age", "whenever",
                     "--no-config"]) == 1

    def test_message_to_output_file(self, files, capsys):
        draft, reports, tmp_path = files
        out_file = tmp_path / "prompt.txt"
        assert main(["duplicates", str(draft), "--reports", str(reports), "--message", "-o", str(out_file),
                     "--no-config"]) == 0
        assert "We found a similar report nearby" in out_file.read_text()
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Wrote 1 candidates" in captured.err


class TestSubmitCommand:
    def test_upvote_existing(self, files, capsys):
        draft, reports, _ = files
        assert main(["submit", str(draft), "--reports", str(reports), "--on-duplicate", "upvote",
                     "-f", "json", "--no-config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["action"] == "upvoted"
        assert data["report"]["id"] == "dup"
        saved = {r["id"]: r for r in json.loads(reports.read_text())["reports"]}
        assert len(saved) == 3
        assert saved["dup"]["upvote_count"] == 3

    def test_continue_flags_new_report(self, files, capsys):
        draft, reports, _ = files
        assert main(["submit", str(draft), "--reports", str(reports), "-f", "json", "--no-config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["action"] == "created"
        assert data["flagged"] is True
        assert data["report"]["metadata"] == {
            "flagged_as_potential_duplicate": True,
            "duplicate_check_performed": True,
        }
        saved = json.loads(reports.read_text())["reports"]
        assert len(saved) == 4
        assert saved[-1]["metadata"]["flagged_as_potential_duplicate"] is True

    def test_no_duplicates_files_plain_report(self, files, capsys):
        draft, reports, _ = files
        assert main(["submit", str(draft), "--reports", str(reports), "--on-duplicate", "upvote",
                     "--max-distance", "0.1", "--policy", "both", "--no-config"]) == 0
        assert "submitted successfully" in capsys.readouterr().out
        saved = json.loads(reports.read_text())["reports"]
        assert len(saved) == 4
        assert "metadata" not in saved[-1]

    def test_requires_source(self, files):
        draft, _, _ = files
        with pytest.raises(SystemExit):
            main(["submit", str(draft), "--no-config"])

    def test_store_failure(self, files, monkeypatch, capsys):
        from civicwatch.store import HTTPReportStore, ReportStoreError

        def refuse(self, report):
            raise ReportStoreError("Unauthorized (HTTP 401)")

        monkeypatch.setattr(HTTPReportStore, "search_nearby", lambda self, *a, **kw: [])
        monkeypatch.setattr(HTTPReportStore, "create", refuse)
        draft, _, _ = files
        assert main(["submit", str(draft), "--api-url", "https://api.test", "--no-config"]) == 1
        assert "Unauthorized" in capsys.readouterr().err


class TestMarkersCommand:
    def _reports(self, tmp_path):
        reports = tmp_path / "reports.yaml"
        rows = "\n".join(
            f"- {{id: m{i}, lat: {JHB_LAT + i * 0.0001}, lng: {JHB_LNG}, category: water}}" for i in range(40)
        )
        reports.write_text(rows + "\n- {id: far, lat: 0.0, lng: 0.0, category: water}\n")
        return reports

    def test_json_output(self, tmp_path, capsys):
        reports = self._reports(tmp_path)
        code = main(["markers", "--reports", str(reports), "--lat", str(JHB_LAT), "--lng", str(JHB_LNG),
                     "--lat-delta", "0.05", "--lng-delta", "0.05", "--low-spec", "-f", "json", "--no-config"])
        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["viewport"]["center_lat"] == JHB_LAT
        assert data["ceiling"] == 15
        assert data["count"] == 15
        assert data["markers"][0]["id"] == "m0"

    def test_negative_centre_as_separate_values(self, tmp_path, capsys):
        reports = self._reports(tmp_path)
        assert main(["markers", "--reports", str(reports), "--lat", "-26.2041", "--lng", "28.0473",
                     "-f", "json", "--no-config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["viewport"]["center_lat"] == -26.2041
        assert data["viewport"]["lat_delta"] == 0.1
        assert data["count"] == data["ceiling"]

    def test_viewport_with_equals(self, tmp_path, capsys):
        reports = self._reports(tmp_path)
        assert main(["markers", "--reports", str(reports), f"--viewport={JHB_LAT},{JHB_LNG},0.05,0.05",
                     "-f", "json", "--no-config"]) == 0
        assert json.loads(capsys.readouterr().out)["viewport"]["center_lat"] == JHB_LAT

    def test_console_output(self, tmp_path, capsys):
        reports = tmp_path / "reports.json"
        reports.write_text(json.dumps([{"id": "a", "lat": JHB_LAT, "lng": JHB_LNG, "category": "roads",
                                        "title": "Pothole"}]))
        assert main(["markers", "--reports", str(reports), "--lat", str(JHB_LAT), "--lng", str(JHB_LNG),
                     "--no-config"]) == 0
        assert "Pothole" in capsys.readouterr().out

    def test_region_fetch_from_api(self, monkeypatch, capsys):
        from civicwatch.store import HTTPReportStore
        from civicwatch.models import Report

        calls = []

        def fake_search(self, lat, lng, radius_km, category=None, limit=None):
            calls.append((lat, lng, radius_km, limit))
            return [Report(id="api1", lat=JHB_LAT, lng=JHB_LNG, category="water", title="Leak")]

        monkeypatch.setattr(HTTPReportStore, "search_nearby", fake_search)
        assert main(["markers", "--api-url", "https://api.test", "--lat", str(JHB_LAT), "--lng", str(JHB_LNG),
                     "--lat-delta", "0.5", "--lng-delta", "0.5", "-f", "json", "--no-config"]) == 0
        lat, lng, radius_km, limit = calls[0]
        assert (lat, lng) == (JHB_LAT, JHB_LNG)
        assert radius_km == pytest.approx(55.5)
        assert limit == 10
        assert [m["id"] for m in json.loads(capsys.readouterr().out)["markers"]] == ["api1"]

    def test_region_fetch_failure(self, monkeypatch, capsys):
        from civicwatch.store import HTTPReportStore, ReportStoreError

        def down(self, *args, **kwargs):
            raise ReportStoreError("GET failed")

        monkeypatch.setattr(HTTPReportStore, "search_nearby", down)
        assert main(["markers", "--api-url", "https://api.test", "--lat", "0", "--lng", "0", "--no-config"]) == 1
        assert "could not load reports" in capsys.readouterr().err

    def test_missing_centre(self, tmp_path, capsys):
        assert main(["markers", "--reports", str(self._reports(tmp_path)), "--lat", "1", "--no-config"]) == 1
        assert "--lng" in capsys.readouterr().err

    def test_viewport_and_lat_conflict(self, tmp_path, capsys):
        assert main(["markers", "--reports", str(self._reports(tmp_path)), "--viewport=1,2,0.1,0.1",
                     "--lat", "1", "--lng", "2", "--no-config"]) == 1
        assert "not both" in capsys.readouterr().err

    def test_invalid_viewport(self, capsys):
        with pytest.raises(SystemExit):
            main(["markers", "--reports", "r.json", "--viewport", "1,2,0,0"])

    def test_missing_reports_file(self, tmp_path, capsys):
        code = main(["markers", "--reports", str(tmp_path / "none.json"), "--viewport", "0,0,1,1", "--no-config"])
        assert code == 1


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "duplicates" in capsys.readouterr().out


def test_init_config(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert main(["init-config"]) == 0
    assert (tmp_path / ".civicwatch.yaml").exists()


def test_parser_knows_subcommands():
    parser = build_parser()
    assert set(parser.subcommands) == {"duplicates", "submit", "markers"}
