"""
Logging configuration

Customer phone numbers appear in most routing log lines. With
LOG_MASK_PHONES=true the middle digits are masked before a record is
written, keeping the country/area prefix and the last four digits.
"""
import logging
import re
import sys
from crm_bridge.config import get_settings

settings = get_settings()

# Only digit runs that are recognizably phones are masked; epoch
# timestamps and numeric ids in the same lines are left alone
PHONE_PATTERNS = [
    # "+5511999998888", "+14155550123"
    re.compile(r"(?<!\d)(\+\d{2,4})(\d{4,7})(\d{4})(?!\d)"),
    # "14155550123@s.whatsapp.net"
    re.compile(r"(?<!\d)(\d{2,4})(\d{4,7})(\d{4})(?=@(?:s\.whatsapp\.net|c\.us))"),
    # "5511999998888": default country code, area code, 8-9 digit number
    re.compile(rf"(?<!\d)({re.escape(settings.default_country_code)}\d{{2}})(\d{{4,5}})(\d{{4}})(?!\d)"),
]


def mask_phone_numbers(text: str) -> str:
    """
    Mask the middle digits of phone numbers in text

    Examples:
        >>> mask_phone_numbers("Message from 5511999998888")
        'Message from 5511*****8888'
    """
    if not text:
        return text
    for pattern in PHONE_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}{'*' * len(m.group(2))}{m.group(3)}", text)
    return text


class PhoneMaskingFilter(logging.Filter):
    """Rewrites the formatted message with phone numbers masked"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_phone_numbers(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logger(name: str) -> logging.Logger:
    """
    Setup logger with standard format

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # Modules may be imported more than once (scripts, reloads)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    if settings.log_mask_phones:
        handler.addFilter(PhoneMaskingFilter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    return setup_logger(name)
