import logging

from src.exchange_admin.cli import _MsalInfoToDebugFilter


def test_msal_info_is_suppressed_unless_debug() -> None:
    """Ensure msal INFO logs are suppressed unless running at DEBUG."""

    record = logging.LogRecord(
        name="msal.token_cache",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Cache hit for account",
        args=(),
        exc_info=None,
    )

    root_logger = logging.getLogger()
    previous_level = root_logger.level

    try:
        root_logger.setLevel(logging.INFO)
        f = _MsalInfoToDebugFilter()
        assert f.filter(record) is False

        root_logger.setLevel(logging.DEBUG)
        assert f.filter(record) is True
    finally:
        root_logger.setLevel(previous_level)


def test_msal_warnings_and_other_loggers_pass_through() -> None:
    """Only msal records at INFO or below are affected."""

    f = _MsalInfoToDebugFilter()
    warning = logging.LogRecord("msal.application", logging.WARNING, __file__, 1, "w", (), None)
    info = logging.LogRecord("src.exchange_admin.scanner", logging.INFO, __file__, 1, "i", (), None)

    assert f.filter(warning) is True
    assert f.filter(info) is True
