"""
Premium listing test suite

Tests cover the upgrade workflow, payment records, gateway adapter,
listing store, expiration sweeper and analytics aggregation.
"""
