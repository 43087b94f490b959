"""
Test suite for tablesync.

This package contains tests for all tablesync components:
- Unit tests for the resilience primitives and schema logic
- Driver tests against an in-memory remote service
- REST binding tests against a mocked HTTP transport
"""
