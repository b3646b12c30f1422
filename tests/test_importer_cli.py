import json

from flask import Flask

from artwork_app.importer import init_importer
from artwork_app.models import Artwork, ImportRun, db


def _write_batch(tmp_path, records, name="batch.json"):
    path = tmp_path / name
    path.write_text(json.dumps(records))
    return path


def test_run_prints_report(runner, tmp_path):
    batch = _write_batch(
        tmp_path,
        [
            {"externalId": "A-1", "title": "Blue Whale", "lat": 49.28, "lon": -123.12, "artistNames": "Jane Doe"},
            {"title": "Broken", "lat": 200, "lon": 0},
        ],
    )

    result = runner.invoke(
        args=[
            "importer",
            "run",
            "--file",
            str(batch),
            "--import-id",
            "cli-batch-1",
            "--source",
            "vancouver",
            "--create-missing-artists",
        ]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["importId"] == "cli-batch-1"
    assert payload["totals"] == {"created": 1, "updated": 0, "merged": 0, "skipped": 0, "duplicates": 0, "errors": 1}
    assert payload["records"][1]["errors"] == ["INVALID_COORDINATES"]

    db.session.expire_all()
    run = db.session.query(ImportRun).filter_by(import_id="cli-batch-1").one()
    assert run.source == "vancouver"
    assert run.config_json["create_missing_artists"] is True


def test_run_generates_import_id(runner, tmp_path):
    batch = _write_batch(tmp_path, [{"title": "Blue Whale", "lat": 49.28, "lon": -123.12}])

    result = runner.invoke(args=["importer", "run", "--file", str(batch)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["importId"].startswith("cli-")


def test_run_dry_run_writes_nothing(runner, tmp_path):
    batch = _write_batch(tmp_path, [{"title": "Blue Whale", "lat": 49.28, "lon": -123.12}])

    result = runner.invoke(args=["importer", "run", "--file", str(batch), "--import-id", "cli-dry", "--dry-run"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["dryRun"] is True
    assert payload["totals"]["created"] == 1
    db.session.expire_all()
    assert db.session.query(Artwork).count() == 0


def test_run_reads_csv_with_tag_columns(runner, tmp_path):
    batch = tmp_path / "batch.csv"
    batch.write_text("title,lat,lon,tag:material\nBlue Whale,49.28,-123.12,bronze\n")

    result = runner.invoke(args=["importer", "run", "--file", str(batch), "--import-id", "cli-csv"])

    assert result.exit_code == 0, result.output
    artwork_id = json.loads(result.output)["records"][0]["resultingArtworkId"]
    db.session.expire_all()
    assert db.session.get(Artwork, artwork_id).tags == {"material": "bronze"}


def test_run_rejects_invalid_threshold(runner, tmp_path):
    batch = _write_batch(tmp_path, [])

    result = runner.invoke(args=["importer", "run", "--file", str(batch), "--threshold", "1.5"])

    assert result.exit_code != 0
    assert "merge_confidence_threshold" in result.output


def test_run_rejects_reused_import_id(runner, tmp_path):
    batch = _write_batch(tmp_path, [{"title": "Blue Whale", "lat": 49.28, "lon": -123.12}])
    args = ["importer", "run", "--file", str(batch), "--import-id", "cli-twice"]

    assert runner.invoke(args=args).exit_code == 0
    second = runner.invoke(args=args)

    assert second.exit_code != 0
    assert "already been run" in second.output


def test_run_rejects_malformed_batch(runner, tmp_path):
    batch = tmp_path / "batch.json"
    batch.write_text('{"records": "nope"}')

    result = runner.invoke(args=["importer", "run", "--file", str(batch)])

    assert result.exit_code != 0
    assert "records" in result.output


def test_run_async_queues_task(runner, app, tmp_path, monkeypatch):
    batch = _write_batch(tmp_path, [{"title": "Blue Whale", "lat": 49.28, "lon": -123.12}])
    sent = {}

    class _FakeResult:
        id = "task-123"

    class _FakeCelery:
        def send_task(self, name, kwargs=None):
            sent["name"] = name
            sent["kwargs"] = kwargs
            return _FakeResult()

    monkeypatch.setattr("artwork_app.importer.cli._resolve_celery", lambda app: _FakeCelery())

    result = runner.invoke(
        args=["importer", "run", "--file", str(batch), "--import-id", "cli-async", "--async", "--max-workers", "2"]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"importId": "cli-async", "taskId": "task-123", "status": "queued"}
    assert sent["name"] == "importer.pipeline.run_artwork_import"
    assert sent["kwargs"]["config_overrides"] == {"max_workers": 2}
    assert sent["kwargs"]["file_path"].endswith("batch.json")
    assert db.session.query(ImportRun).count() == 0


def test_report_and_runs_commands(runner, tmp_path):
    batch = _write_batch(tmp_path, [{"title": "Blue Whale", "lat": 49.28, "lon": -123.12}, {"title": "x", "lat": 95}])
    assert runner.invoke(args=["importer", "run", "--file", str(batch), "--import-id", "cli-report"]).exit_code == 0

    report = runner.invoke(args=["importer", "report", "cli-report"])
    assert report.exit_code == 0, report.output
    payload = json.loads(report.output)
    assert [record["action"] for record in payload["records"]] == ["created", "error"]
    assert payload["totals"]["errors"] == 1

    runs = runner.invoke(args=["importer", "runs", "--status", "partially_failed"])
    assert runs.exit_code == 0, runs.output
    assert [item["importId"] for item in json.loads(runs.output)] == ["cli-report"]


def test_report_unknown_import_id(runner):
    result = runner.invoke(args=["importer", "report", "missing"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_runs_rejects_unknown_status(runner):
    result = runner.invoke(args=["importer", "runs", "--status", "bogus"])
    assert result.exit_code != 0
    assert "Unsupported status filter" in result.output


def test_disabled_importer_registers_stub_cli():
    app = Flask(__name__)
    app.config.update(TESTING=True, IMPORTER_ENABLED=False)
    init_importer(app)

    result = app.test_cli_runner().invoke(args=["importer"])

    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output
    assert app.extensions["importer"]["celery_app"] is None
