"""
Unit tests for routing stdlib log records into loguru.
"""

import logging

import pytest
from loguru import logger

from sha_claims.utils.logging import InterceptHandler


@pytest.mark.unit
def test_stdlib_records_reach_loguru():
    messages: list[str] = []
    sink_id = logger.add(messages.append, format="{level} {message}", level="INFO")
    std_logger = logging.getLogger("sha_claims.intercept_test")
    handler = InterceptHandler()
    std_logger.addHandler(handler)
    std_logger.setLevel(logging.INFO)
    std_logger.propagate = False
    try:
        std_logger.info("Claim %s submitted to SHA", "CLM-202511-000001")
        std_logger.debug("not shown")
    finally:
        std_logger.removeHandler(handler)
        logger.remove(sink_id)

    assert len(messages) == 1
    assert "INFO Claim CLM-202511-000001 submitted to SHA" in messages[0]
