import json
import logging

import pytest

from flowcore import logging_setup
from flowcore.config.schemas.observability import LoggingConfig
from flowcore.config.schemas.stream import StreamConfig
from flowcore.pubsub import MemoryPubSub
from flowcore.stream import MemoryStreamRegistry, create_backend


@pytest.mark.asyncio
async def test_memory_backend_from_config():  # noqa: D401
    backend = await create_backend(
        StreamConfig(retention_seconds=5, max_stream_age_seconds=50)
    )
    assert backend.name == "memory"
    assert isinstance(backend.registry, MemoryStreamRegistry)
    assert isinstance(backend.pubsub, MemoryPubSub)
    assert backend.registry.retention_s == 5
    assert backend.registry.max_age_s == 50
    await backend.aclose()


def test_json_formatter_renders_one_line():  # noqa: D401
    record = logging.LogRecord(
        "flowcore.stream", logging.INFO, __file__, 1, "hello %s", ("x",), None
    )
    payload = json.loads(logging_setup.JsonFormatter().format(record))
    assert payload["message"] == "hello x"
    assert payload["level"] == "info"
    assert payload["logger"] == "flowcore.stream"


def test_configure_logging_installs_handler_once():  # noqa: D401
    logging_setup.reset_for_tests()
    try:
        logging_setup.configure_logging(LoggingConfig(level="debug", format="json"))
        logging_setup.configure_logging(LoggingConfig(level="error"))
        lg = logging.getLogger("flowcore")
        assert len(lg.handlers) == 1
        assert lg.level == logging.DEBUG
        assert isinstance(lg.handlers[0].formatter, logging_setup.JsonFormatter)
    finally:
        logging_setup.reset_for_tests()
