"""
Web Module
==========

Flask-based dashboard for watching and pausing training.

Components:
    server.py    - Flask + SocketIO server
    templates/   - HTML templates
"""

from .server import WebDashboard, MetricsPublisher

__all__ = ['WebDashboard', 'MetricsPublisher']
