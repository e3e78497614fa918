from __future__ import annotations

import logging
import unittest

from materials_ledger.config import Settings
from materials_ledger.logging_config import PiiRedactionFilter, _apply_formatter, coerce_level, configure_logging


class CoerceLevelTests(unittest.TestCase):
    def test_names_and_numbers(self) -> None:
        self.assertEqual(coerce_level('debug'), logging.DEBUG)
        self.assertEqual(coerce_level(' Warning '), logging.WARNING)
        self.assertEqual(coerce_level(logging.ERROR), logging.ERROR)

    def test_unknown_falls_back_to_info(self) -> None:
        self.assertEqual(coerce_level('chatty'), logging.INFO)
        self.assertEqual(coerce_level(None), logging.INFO)


class RedactionTests(unittest.TestCase):
    def _render(self, msg: str, *args) -> str:
        record = logging.LogRecord('materials_ledger', logging.INFO, __file__, 1, msg, args, None)
        PiiRedactionFilter().filter(record)
        return record.getMessage()

    def test_redacts_email_and_secrets(self) -> None:
        self.assertEqual(self._render('Notified %s', 'crew@example.com'), 'Notified [REDACTED_EMAIL]')
        self.assertEqual(self._render('api_key=abc123 sent'), 'api_key=[REDACTED] sent')
        self.assertEqual(self._render('retrying with Bearer abc.def'), 'retrying with Bearer [REDACTED]')

    def test_plain_messages_pass_through(self) -> None:
        self.assertEqual(self._render('Approved claim %s', 'CLM-000001'), 'Approved claim CLM-000001')

    def test_filter_attached_once(self) -> None:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(message)s')
        _apply_formatter([handler], formatter, True)
        _apply_formatter([handler], formatter, True)
        self.assertEqual(len(handler.filters), 1)
        self.assertIs(handler.formatter, formatter)


class ConfigureLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.root = logging.getLogger()
        self.saved_level = self.root.level
        self.saved_handlers = list(self.root.handlers)
        self.saved_engine_level = logging.getLogger('sqlalchemy.engine').level

    def tearDown(self) -> None:
        self.root.setLevel(self.saved_level)
        self.root.handlers[:] = self.saved_handlers
        logging.getLogger('sqlalchemy.engine').setLevel(self.saved_engine_level)

    def test_quiets_noisy_loggers_above_debug(self) -> None:
        handler = logging.StreamHandler()
        self.root.handlers[:] = [handler]
        configure_logging(Settings(log_level='info', log_format='prod', log_redact_pii=False))

        self.assertEqual(self.root.level, logging.INFO)
        self.assertEqual(logging.getLogger('sqlalchemy.engine').level, logging.WARNING)
        self.assertEqual(handler.filters, [])
        self.assertNotIn('lineno', handler.formatter._fmt)


if __name__ == '__main__':
    unittest.main()
