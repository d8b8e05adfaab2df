"""
Tests Package

This package contains all test files for the matrix game orchestrator:
- Unit tests for acting units, settings and resolution strategies
- Integration tests for the action lifecycle against an in-memory database
- Timeout sweep and worker tests
- Notification delivery tests

Run tests with: pytest tests/
"""
