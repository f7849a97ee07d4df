"""
Tests for the web dashboard server.

Tests cover:
- Utility functions
- MetricsPublisher state and callbacks
- REST routes
- SocketIO control events
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from neuralmarkup.ai.trainer import TrainingMetrics
from neuralmarkup.web.server import (
    DashboardState,
    LogMessage,
    MetricsPublisher,
    WebDashboard,
    _make_json_safe,
)


@pytest.fixture
def dashboard():
    return WebDashboard(port=5999)


@pytest.fixture
def fake_trainer():
    return SimpleNamespace(
        train=True,
        loop=None,
        metrics=TrainingMetrics(),
        epochs=3,
        batch_size=16,
        samples=128,
        request_train=MagicMock(),
    )


class TestMakeJsonSafe:
    """Tests for the _make_json_safe utility function."""

    def test_native_types_unchanged(self):
        assert _make_json_safe(42) == 42
        assert _make_json_safe("hello") == "hello"
        assert _make_json_safe(None) is None

    def test_numpy_scalars_converted(self):
        assert isinstance(_make_json_safe(np.int64(42)), int)
        assert isinstance(_make_json_safe(np.float32(0.5)), float)

    def test_nested_structures_converted(self):
        result = _make_json_safe({'values': (np.float64(1.0), np.array([1, 2]))})
        assert result == {'values': [1.0, [1, 2]]}


class TestMetricsPublisher:
    """MetricsPublisher bridges training and the dashboard."""

    def test_initial_state(self):
        publisher = MetricsPublisher()
        assert publisher.state == DashboardState()
        assert publisher.plots == []

    def test_update_builds_plots_and_state(self):
        publisher = MetricsPublisher()
        metrics = TrainingMetrics()
        metrics.push({'loss': [0.3]})
        publisher.update(metrics, state='running', epoch=2, unknown_field=1)
        assert publisher.plots[0]['name'] == 'loss'
        assert publisher.state.state == 'running'
        assert publisher.state.epoch == 2

    def test_update_notifies_callbacks(self):
        publisher = MetricsPublisher()
        callback = MagicMock()
        publisher.on_update(callback)
        publisher.update(TrainingMetrics())
        callback.assert_called_once()
        assert 'state' in callback.call_args[0][0]

    def test_set_paused_notifies(self):
        publisher = MetricsPublisher()
        callback = MagicMock()
        publisher.on_update(callback)
        publisher.set_paused(True)
        assert publisher.state.is_paused
        callback.assert_called_once()

    def test_log_messages(self):
        publisher = MetricsPublisher()
        received = []
        publisher.on_log(received.append)
        publisher.log("hello", level='action')
        assert isinstance(received[0], LogMessage)
        logs = publisher.get_console_logs()
        assert logs[0]['message'] == 'hello'
        assert logs[0]['level'] == 'action'


class TestAttach:
    """Wiring a Train component to the dashboard."""

    def test_attach_sets_run_parameters(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        assert dashboard.publisher.state.epochs == 3
        assert dashboard.publisher.state.batch_size == 16
        assert dashboard.publisher.state.samples == 128
        assert dashboard.publisher.state.is_paused is False

    def test_metric_pushes_are_published(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        fake_trainer.metrics.push({'loss': [0.25]})
        assert dashboard.publisher.plots[0]['data'][0]['y'] == [0.25]

    def test_pause_and_resume_actions(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        dashboard.handle_action('pause')
        fake_trainer.request_train.assert_called_with(False)
        dashboard.handle_action('resume')
        fake_trainer.request_train.assert_called_with(True)

    def test_toggle_uses_current_flag(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        dashboard.handle_action('toggle')
        fake_trainer.request_train.assert_called_with(False)

        fake_trainer.train = False
        dashboard.handle_action('toggle')
        fake_trainer.request_train.assert_called_with(True)

    def test_unknown_action_ignored(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        dashboard.handle_action('explode')
        fake_trainer.request_train.assert_not_called()


class TestRoutes:
    """REST API."""

    def test_index_renders(self, dashboard):
        response = dashboard.app.test_client().get('/')
        assert response.status_code == 200
        assert b'Train' in response.data

    def test_status(self, dashboard):
        dashboard.publisher.set_paused(True)
        data = dashboard.app.test_client().get('/api/status').get_json()
        assert data['is_paused'] is True
        assert data['state'] == 'idle'

    def test_metrics(self, dashboard):
        metrics = TrainingMetrics()
        metrics.push({'loss': [0.5], 'mae': [0.1]})
        dashboard.publisher.update(metrics)
        data = dashboard.app.test_client().get('/api/metrics').get_json()
        assert [figure['name'] for figure in data] == ['loss', 'mae']

    def test_logs(self, dashboard):
        dashboard.publisher.log("started")
        data = dashboard.app.test_client().get('/api/logs').get_json()
        assert data['logs'][0]['message'] == 'started'


class TestSocketEvents:
    """SocketIO events."""

    def test_connect_sends_snapshot(self, dashboard):
        client = dashboard.socketio.test_client(dashboard.app)
        names = [message['name'] for message in client.get_received()]
        assert 'metrics_update' in names
        assert 'console_logs' in names
        client.disconnect()

    def test_control_event_pauses(self, dashboard, fake_trainer):
        dashboard.attach(fake_trainer)
        client = dashboard.socketio.test_client(dashboard.app)
        client.emit('control', {'action': 'pause'})
        fake_trainer.request_train.assert_called_once_with(False)
        client.disconnect()
