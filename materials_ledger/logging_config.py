from __future__ import annotations

import logging
import re
from typing import Iterable

from materials_ledger.config import Settings

DEV_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s'
PROD_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
PII_PATTERNS = {
    'email': re.compile(r'[A-Za-z0-9_.+-]+@[A-Za-z0-9-]+\.[A-Za-z0-9-.]+'),
    'token': re.compile(r'(token|api[_-]?key|secret|password|passwd|authorization)\s*[:=]\s*([^\s,;]+)', re.IGNORECASE),
    'bearer': re.compile(r'Bearer\s+[A-Za-z0-9\-_.=:+/]+', re.IGNORECASE),
}
NOISY_LOGGERS = ('sqlalchemy.engine', 'uvicorn.access', 'httpx')


class PiiRedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        msg = PII_PATTERNS['email'].sub('[REDACTED_EMAIL]', msg)
        msg = PII_PATTERNS['token'].sub(lambda m: f'{m.group(1)}=[REDACTED]', msg)
        msg = PII_PATTERNS['bearer'].sub('Bearer [REDACTED]', msg)
        record.msg = msg
        record.args = None
        return True


def coerce_level(raw_level) -> int:
    if isinstance(raw_level, int):
        return raw_level
    if isinstance(raw_level, str):
        candidate = raw_level.strip().upper()
        level = logging.getLevelName(candidate)
        if isinstance(level, int):
            return level
    return logging.INFO


def configure_logging(settings: Settings) -> None:
    level = coerce_level(settings.log_level)
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())

    if level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    formatter = logging.Formatter(PROD_FORMAT if settings.log_format == 'prod' else DEV_FORMAT)
    _apply_formatter(root.handlers, formatter, settings.log_redact_pii)


def _apply_formatter(handlers: Iterable[logging.Handler], formatter: logging.Formatter, redact_pii: bool) -> None:
    for handler in handlers:
        handler.setFormatter(formatter)
        if redact_pii and not any(isinstance(f, PiiRedactionFilter) for f in handler.filters):
            handler.addFilter(PiiRedactionFilter())
