"""
Tests for the logging helpers.
"""

import logging

from neuralmarkup.utils.logger import (
    ROOT_LOGGER_NAME,
    ColoredFormatter,
    get_logger,
    log_model_event,
    log_training_metrics,
)


class TestGetLogger:

    def test_names_are_namespaced(self):
        assert get_logger('trainer').name == f'{ROOT_LOGGER_NAME}.trainer'

    def test_module_names_kept(self):
        assert get_logger('neuralmarkup.ai.network').name == 'neuralmarkup.ai.network'


class TestLogHelpers:

    def test_training_metrics_line(self, caplog):
        caplog.set_level(logging.DEBUG, logger=ROOT_LOGGER_NAME)
        log_training_metrics(2, 5, {'loss': [0.25], 'mae': [0.5], 'empty': []})
        assert 'epoch=2 | batch=5 | loss=0.250000 | mae=0.500000' in caplog.text
        assert 'empty' not in caplog.text

    def test_model_event(self, caplog):
        caplog.set_level(logging.INFO, logger=ROOT_LOGGER_NAME)
        log_model_event('save', 'model.pt', layers=3)
        assert 'SAVE | model.pt | layers=3' in caplog.text


class TestColoredFormatter:

    def test_record_is_not_modified(self):
        formatter = ColoredFormatter('%(levelname)s %(message)s')
        formatter.use_colors = True
        record = logging.LogRecord('x', logging.INFO, __file__, 1, 'hello', None, None)
        output = formatter.format(record)
        assert output.endswith('hello')
        assert record.levelname == 'INFO'
