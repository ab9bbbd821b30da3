import logging

from checkdeposit.core.logging import PIISafeFilter


def _logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.filters = []
    logger.addFilter(PIISafeFilter())
    return logger


def test_pii_filter_redacts_email_and_account_numbers(caplog):
    logger = _logger("test.pii")

    with caplog.at_level(logging.INFO, logger="test.pii"):
        logger.info("Deposit from alice@example.com into 987654321")

    assert "alice@example.com" not in caplog.text
    assert "987654321" not in caplog.text
    assert "[REDACTED]" in caplog.text


def test_pii_filter_redacts_args(caplog):
    logger = _logger("test.pii.args")

    with caplog.at_level(logging.INFO, logger="test.pii.args"):
        logger.info("Admitted %s with routing %s", "bob@example.com^1^2.00.png", "123456789")

    assert "bob@example.com" not in caplog.text
    assert "123456789" not in caplog.text


def test_pii_filter_redacts_micr_assignments(caplog):
    logger = _logger("test.micr")

    with caplog.at_level(logging.INFO, logger="test.micr"):
        logger.info("parsed plaintext=[1234[ from_account=AB12 for record r-1")

    assert "plaintext=[REDACTED]" in caplog.text
    assert "from_account=[REDACTED]" in caplog.text
    assert "AB12" not in caplog.text
    assert "r-1" in caplog.text
