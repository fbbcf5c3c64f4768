"""
TSDB Test Suite.

This package contains:
- unit/: Unit tests (no network, temporary directories only)
- integration/: WebSocket server, SDK client, and restart round trips
"""
