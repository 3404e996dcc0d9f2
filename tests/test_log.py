"""Tests for logging setup."""

import logging
import sys

import pytest

from perfmon_agent.log import VERBOSE, configure_logging, format_payload

pytestmark = pytest.mark.usefixtures("restore_root_logger")


@pytest.mark.skipif(sys.platform == "win32", reason="goes to the event log on Windows")
def test_quiet_mode_keeps_stdout_for_records(capsys):
    configure_logging(verbose=False)
    log = logging.getLogger("perfmon_agent.test")
    log.critical("emission failed")
    log.warning("counter failed")
    log.log(VERBOSE, "hidden detail")

    out, err = capsys.readouterr()
    assert out == ""
    assert "[CRITICAL] perfmon_agent.test: emission failed" in err
    assert "counter failed" in err
    assert "hidden detail" not in err


def test_verbose_mode_prefixes_thread_name(capsys):
    configure_logging(verbose=True)
    logging.getLogger("perfmon_agent.test").log(VERBOSE, "detail")
    _, err = capsys.readouterr()
    assert "MainThread : detail" in err
    assert "[VERBOSE]" in err


def test_format_payload_is_indented_json():
    text = format_payload("starting with options", {"computer_name": "web01"})
    assert text == 'starting with options:\n{\n  "computer_name": "web01"\n}'
