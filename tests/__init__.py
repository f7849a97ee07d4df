"""
Tests for neuralmarkup
======================

Run all tests:
    pytest tests/

Run with coverage:
    pytest tests/ --cov=neuralmarkup --cov-report=html
"""
