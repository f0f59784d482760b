import json
import logging

from perplexity_mcp.config import default_config
from perplexity_mcp.server import JsonFormatter


def test_logging_level_config():
    level = getattr(logging, default_config.log_level.upper(), logging.INFO)
    assert level in (
        logging.DEBUG,
        logging.INFO,
        logging.WARNING,
        logging.ERROR,
        logging.CRITICAL,
    )


def test_json_formatter_includes_extras():
    record = logging.LogRecord(
        name="perplexity_mcp.server",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="tool=%s outcome=error",
        args=("perplexity_ask",),
        exc_info=None,
    )
    record.tool = "perplexity_ask"
    record.request_id = "req-1"
    record.error = "Invalid messages."

    payload = json.loads(JsonFormatter().format(record))
    assert payload == {
        "level": "WARNING",
        "message": "tool=perplexity_ask outcome=error",
        "name": "perplexity_mcp.server",
        "tool": "perplexity_ask",
        "request_id": "req-1",
        "error": "Invalid messages.",
    }


def test_json_formatter_without_extras():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
    assert json.loads(JsonFormatter().format(record)) == {"level": "INFO", "message": "hello", "name": "x"}
