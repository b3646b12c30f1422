import json
import logging

from flask import Flask

from artwork_app.utils.logging_config import JSONFormatter, setup_logging


def _record(**extra):
    record = logging.makeLogRecord({"name": "artwork_app", "levelname": "INFO", "msg": "Record merged"})
    record.__dict__.update(extra)
    return record


def test_json_formatter_lifts_importer_extras():
    payload = json.loads(JSONFormatter().format(_record(importer_import_id="batch-1", importer_record_index=3)))

    assert payload["message"] == "Record merged"
    assert payload["importer_import_id"] == "batch-1"
    assert payload["importer_record_index"] == 3
    assert "msg" not in payload


def test_setup_logging_replaces_its_own_handlers(tmp_path):
    app = Flask(__name__)
    app.config.update(
        LOG_LEVEL="debug",
        LOG_FORMAT="json",
        ENABLE_CONSOLE_LOGGING=True,
        ENABLE_FILE_LOGGING=True,
        LOG_DIR=str(tmp_path / "logs"),
    )

    setup_logging(app)
    setup_logging(app)

    ours = [handler for handler in app.logger.handlers if getattr(handler, "_artwork_app_handler", False)]
    assert len(ours) == 2
    assert app.logger.level == logging.DEBUG
    assert all(isinstance(handler.formatter, JSONFormatter) for handler in ours)
    assert (tmp_path / "logs" / "importer.log").exists()
    for handler in ours:
        app.logger.removeHandler(handler)
        handler.close()
