"""
Tests for configuration loading and the typed event bus
"""

import json
import logging

import pytest

import confluence
from confluence.core import Config, EventBus, EventType, LoggingEventSink
from confluence.utils.logging_config import setup_logging


class TestConfig:

    def test_defaults(self):
        config = Config()
        assert config.get('minimum_alignment') == 10
        assert config.get('confidence_cap') == 0.95
        assert config.get('calibration_gate') == 50
        assert config.get('missing', 'fallback') == 'fallback'

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv('FUSION_MINIMUM_ALIGNMENT', '12')
        monkeypatch.setenv('FUSION_LOG_LEVEL', 'debug')
        config = Config()
        assert config.get('minimum_alignment') == 12
        assert config.get('log_level') == 'DEBUG'

    def test_unparseable_environment_value_is_ignored(self, monkeypatch):
        monkeypatch.setenv('FUSION_CALIBRATION_GATE', 'many')
        assert Config().get('calibration_gate') == 50

    def test_config_file_and_overrides(self, tmp_path):
        path = tmp_path / 'fusion.json'
        path.write_text(json.dumps({'confidence_cap': 0.9, 'vote_threshold': 0.2}))
        config = Config(str(path), overrides={'vote_threshold': 0.3})
        assert config.get('confidence_cap') == 0.9
        assert config.get('vote_threshold') == 0.3

    def test_validation_rejects_bad_values(self):
        with pytest.raises(ValueError):
            Config(overrides={'confidence_cap': 1.0})
        with pytest.raises(ValueError):
            Config(overrides={'minimum_alignment': 30})
        with pytest.raises(ValueError):
            Config(overrides={'log_level': 'LOUD'})
        with pytest.raises(ValueError):
            Config(overrides={'calibration_history_size': 10})

    def test_update_setting_reverts_on_failure(self):
        config = Config()
        config.update_setting('calibration_gate', 10)
        assert config.get('calibration_gate') == 10
        with pytest.raises(ValueError):
            config.update_setting('calibration_gate', 0)
        assert config.get('calibration_gate') == 10

    def test_section_views(self):
        config = Config()
        assert config.get_convergence_config()['total_domains'] == 21
        assert config.get_calibration_config()['calibration_min_samples'] == 30
        assert config.get_calibration_config()['calibration_history_size'] == 1000
        assert config.get_convergence_config()['convergence_history_size'] == 1000
        assert config.as_dict()['phase_sync_tolerance'] == 0.1


class TestEventBus:

    def setup_method(self):
        self.bus = EventBus()
        self.calls = []

    def test_handlers_run_by_priority(self):
        self.bus.subscribe('low', lambda e: self.calls.append('low'), EventType.OUTCOME_RECORDED, priority=1)
        self.bus.subscribe('high', lambda e: self.calls.append('high'), EventType.OUTCOME_RECORDED, priority=5)
        self.bus.emit(EventType.OUTCOME_RECORDED, 'test')
        assert self.calls == ['high', 'low']

    def test_typed_subscription_and_filter(self):
        self.bus.subscribe('typed', self.calls.append, [EventType.CONVERGENCE_DETECTED],
                           filter_func=lambda e: e.data.get('aligned', 0) >= 12)
        self.bus.emit(EventType.CONVERGENCE_DETECTED, 'test', {'aligned': 10})
        self.bus.emit(EventType.CONVERGENCE_DETECTED, 'test', {'aligned': 15})
        self.bus.emit(EventType.PHASE_LOCK_DETECTED, 'test', {'aligned': 20})
        assert [e.data['aligned'] for e in self.calls] == [15]

    def test_failing_handler_is_isolated(self):
        def explode(event):
            raise RuntimeError("handler failure")

        self.bus.subscribe('broken', explode, priority=10)
        self.bus.subscribe('working', self.calls.append)
        self.bus.emit(EventType.PREDICTION_GENERATED, 'test')
        assert len(self.calls) == 1
        assert self.bus.get_event_statistics()['handler_errors'] == 1

    def test_unsubscribe(self):
        self.bus.subscribe('gone', self.calls.append, EventType.OUTCOME_RECORDED)
        self.bus.unsubscribe('gone')
        self.bus.emit(EventType.OUTCOME_RECORDED, 'test')
        assert self.calls == []

    def test_statistics_and_history(self):
        self.bus.emit(EventType.OUTCOME_RECORDED, 'engine', timestamp=5.0)
        self.bus.emit(EventType.PREDICTION_GENERATED, 'engine')
        stats = self.bus.get_event_statistics()
        assert stats['total_events'] == 2
        assert stats['events_by_source'] == {'engine': 2}
        recent = self.bus.get_recent_events(event_type=EventType.OUTCOME_RECORDED)
        assert recent[0].timestamp == 5.0

    def test_history_is_bounded(self):
        bus = EventBus({'event_history_size': 3})
        for _ in range(5):
            bus.emit(EventType.SIGNATURE_INGESTED, 'test')
        assert len(bus.get_recent_events()) == 3


class TestLoggingEventSink:

    def teardown_method(self):
        logging.getLogger('confluence').setLevel(logging.NOTSET)

    def test_failures_logged_as_warnings(self, caplog):
        bus = EventBus()
        LoggingEventSink(bus)
        with caplog.at_level(logging.DEBUG, logger='confluence.events'):
            bus.emit(EventType.MODIFIER_FAILED, 'engine', {'modifier': 'quantum_cloud'})
            bus.emit(EventType.PREDICTION_GENERATED, 'engine', {'direction': 'up'})

        records = [r for r in caplog.records if r.name == 'confluence.events']
        assert [r.levelno for r in records] == [logging.WARNING, logging.DEBUG]
        assert 'modifier=quantum_cloud' in records[0].getMessage()

    def test_setup_logging_quiets_library_warnings(self):
        setup_logging('warning')
        assert logging.getLogger('py.warnings').level == logging.ERROR
        assert logging.getLogger('confluence').level == logging.WARNING

    def test_factory_applies_configured_log_level(self, monkeypatch):
        levels = []
        monkeypatch.setattr(confluence, 'setup_logging', levels.append)
        config = Config(overrides={'log_level': 'error'})
        confluence.create_fusion_engine(config, log_events=False, configure_logging=True)
        confluence.create_fusion_engine(config, log_events=False)
        assert levels == ['ERROR']
