"""Shared test fixtures."""

import pytest

from terra_verify.config.logging import configure_logging
from terra_verify.utils.logging import configure_structured_logging


@pytest.fixture(autouse=True)
def _restore_logging_sinks():
    """Re-install log sinks after each test.

    CliRunner swaps sys.stdout/sys.stderr for temporary streams and closes
    them afterwards; a CLI invocation that reconfigures logging (--log-level)
    would otherwise leave the sinks pointing at closed files.
    """
    yield
    configure_logging()
    configure_structured_logging()
