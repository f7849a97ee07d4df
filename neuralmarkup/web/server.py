"""
Web Dashboard Server
====================

Flask + SocketIO server for live training metrics and pause/resume control.

Features:
    - One Plotly chart per metric, updated as batches finish
    - REST API for training status and metric series
    - WebSocket events for live metric streaming
    - Pause / resume / toggle control wired to a Train component
    - Runs in a background thread alongside the asyncio training loop

Usage:
    >>> from neuralmarkup.web import WebDashboard
    >>> dashboard = WebDashboard(port=5000)
    >>> dashboard.start()
    >>> trainer = Train(model, ..., dashboard=dashboard)   # attaches itself
    >>> ...
    >>> dashboard.stop()
"""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np
from flask import Flask, jsonify, make_response, render_template
from flask_socketio import SocketIO, emit

from ..ai.trainer import TrainingMetrics
from ..config import Config
from ..utils.logger import get_logger

# Keep werkzeug request logging out of the training console
logging.getLogger('werkzeug').setLevel(logging.ERROR)

_logger = get_logger(__name__)


def _make_json_safe(obj: Any) -> Any:
    """
    Convert NumPy types to native Python types for JSON serialization.

    Recursively processes dictionaries and lists.
    """
    if isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: _make_json_safe(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_make_json_safe(item) for item in obj]
    return obj


@dataclass
class LogMessage:
    """A single console entry."""
    timestamp: str
    level: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DashboardState:
    """Current training state for the API."""
    state: str = 'idle'
    is_paused: bool = False
    is_running: bool = False
    epoch: int = 0
    batch: int = 0
    fit_calls: int = 0
    epochs: int = 0
    batch_size: int = 0
    samples: int = 0


class MetricsPublisher:
    """
    Bridge between the training loop and the dashboard.

    Keeps the latest state snapshot and metric plot data, and notifies
    registered callbacks (the SocketIO broadcasters) on every update.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.state = DashboardState()
        self.plots: List[Dict[str, Any]] = []
        self.console_logs: Deque[LogMessage] = deque(maxlen=500)

        self._callback_lock = threading.Lock()
        self._on_update_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._on_log_callbacks: List[Callable[[LogMessage], None]] = []

    def update(self, metrics: TrainingMetrics, **state) -> None:
        """Refresh plot data and state fields, then notify listeners."""
        self.plots = metrics.to_plot_data(
            color=self.config.PLOT_COLOR,
            width=self.config.PLOT_WIDTH,
            height=self.config.PLOT_HEIGHT,
        )
        for key, value in state.items():
            if hasattr(self.state, key):
                setattr(self.state, key, value)
        self._notify_update()

    def log(self, message: str, level: str = 'info') -> None:
        entry = LogMessage(
            timestamp=datetime.now().strftime('%H:%M:%S'),
            level=level,
            message=message,
        )
        self.console_logs.append(entry)
        with self._callback_lock:
            callbacks = list(self._on_log_callbacks)
        for callback in callbacks:
            callback(entry)

    def get_snapshot(self) -> Dict[str, Any]:
        return {
            'state': asdict(self.state),
            'plots': self.plots,
        }

    def get_console_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        logs = list(self.console_logs)[-limit:]
        return [log.to_dict() for log in logs]

    def on_update(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback for metric updates."""
        with self._callback_lock:
            self._on_update_callbacks.append(callback)

    def on_log(self, callback: Callable[[LogMessage], None]) -> None:
        """Register a callback for log messages."""
        with self._callback_lock:
            self._on_log_callbacks.append(callback)

    def set_paused(self, paused: bool) -> None:
        """Set training paused state."""
        self.state.is_paused = paused
        self._notify_update()

    def set_running(self, running: bool) -> None:
        """Set server running state."""
        self.state.is_running = running

    def _notify_update(self) -> None:
        snapshot = _make_json_safe(self.get_snapshot())
        with self._callback_lock:
            callbacks = list(self._on_update_callbacks)
        for callback in callbacks:
            callback(snapshot)


class WebDashboard:
    """
    Flask + SocketIO dashboard for one Train component.

    Attributes:
        publisher (MetricsPublisher): State and plot data served to clients
        on_pause_callback: Called for a 'pause' control action
        on_resume_callback: Called for a 'resume' control action
        is_paused_callback: Returns the current pause state for 'toggle'
    """

    def __init__(self, config: Optional[Config] = None, port: Optional[int] = None, host: Optional[str] = None):
        self.config = config or Config()
        self.port = port or self.config.DASHBOARD_PORT
        self.host = host or self.config.DASHBOARD_HOST
        self.publisher = MetricsPublisher(self.config)

        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = 'neuralmarkup-dashboard'
        self.socketio = SocketIO(self.app, cors_allowed_origins='*', async_mode='threading')

        self.on_pause_callback: Optional[Callable[[], None]] = None
        self.on_resume_callback: Optional[Callable[[], None]] = None
        self.is_paused_callback: Optional[Callable[[], bool]] = None

        self._running = False
        self._server_thread: Optional[threading.Thread] = None

        self._register_routes()
        self._register_socket_events()

    def attach(self, trainer) -> None:
        """Wire a Train component's metrics and pause flag to this dashboard."""
        self.on_pause_callback = lambda: trainer.request_train(False)
        self.on_resume_callback = lambda: trainer.request_train(True)
        self.is_paused_callback = lambda: not trainer.train

        def publish(metrics: TrainingMetrics) -> None:
            loop = trainer.loop
            state = {'is_paused': not trainer.train}
            if loop is not None:
                state.update(
                    state=loop.state.value,
                    epoch=loop.epoch,
                    batch=loop.batch,
                    fit_calls=loop.fit_calls,
                )
            self.publisher.update(metrics, **state)

        trainer.metrics.on_update(publish)
        self.publisher.state.epochs = trainer.epochs
        self.publisher.state.batch_size = trainer.batch_size
        self.publisher.state.samples = trainer.samples
        self.publisher.set_paused(not trainer.train)

    def _register_routes(self) -> None:
        """Register Flask routes."""

        @self.app.route('/')
        def index():
            response = make_response(render_template('dashboard.html'))
            response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
            return response

        @self.app.route('/api/status')
        def api_status():
            return jsonify(_make_json_safe(asdict(self.publisher.state)))

        @self.app.route('/api/metrics')
        def api_metrics():
            return jsonify(_make_json_safe(self.publisher.plots))

        @self.app.route('/api/logs')
        def api_logs():
            return jsonify({'logs': self.publisher.get_console_logs(100)})

    def _register_socket_events(self) -> None:
        """Register SocketIO events."""

        @self.socketio.on('connect')
        def handle_connect():
            emit('metrics_update', _make_json_safe(self.publisher.get_snapshot()))
            emit('console_logs', {'logs': self.publisher.get_console_logs(100)})

        @self.socketio.on('control')
        def handle_control(data):
            action = (data or {}).get('action')
            self.handle_action(action)

        def broadcast_update(snapshot):
            if self.socketio and self._running:
                self.socketio.emit('metrics_update', snapshot)

        def broadcast_log(log_entry: LogMessage):
            if self.socketio and self._running:
                self.socketio.emit('console_log', log_entry.to_dict())

        self.publisher.on_update(broadcast_update)
        self.publisher.on_log(broadcast_log)

    def handle_action(self, action: Optional[str]) -> None:
        """Dispatch a control action ('pause', 'resume' or 'toggle')."""
        if action == 'toggle':
            paused = self.is_paused_callback() if self.is_paused_callback else self.publisher.state.is_paused
            action = 'resume' if paused else 'pause'

        if action == 'pause':
            if self.on_pause_callback:
                self.on_pause_callback()
            self.publisher.log('Training paused', level='action')
        elif action == 'resume':
            if self.on_resume_callback:
                self.on_resume_callback()
            self.publisher.log('Training resumed', level='action')
        else:
            _logger.warning(f"Unknown dashboard action: {action!r}")

    def start(self) -> None:
        """Start the web server in a background thread."""
        if self._running:
            return

        self._running = True
        self.publisher.set_running(True)

        logging.getLogger('engineio').setLevel(logging.ERROR)
        logging.getLogger('socketio').setLevel(logging.ERROR)

        def run_server():
            _logger.info(f"Web Dashboard running at http://localhost:{self.port}")
            try:
                self.socketio.run(
                    self.app,
                    host=self.host,
                    port=self.port,
                    debug=False,
                    use_reloader=False,
                    log_output=False,
                    allow_unsafe_werkzeug=True
                )
            except OSError as e:
                _logger.error(f"Failed to start web dashboard on port {self.port}: {e}")
                _logger.error(f"Port {self.port} may already be in use. Try a different port with --port")

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()

    def stop(self) -> None:
        """Stop the web server and release the port."""
        self._running = False
        self.publisher.set_running(False)
        try:
            self.socketio.stop()
        except RuntimeError as e:
            # stop() only works from inside a request context
            _logger.debug(f"Server stop (best effort): {e}")
