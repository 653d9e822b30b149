"""
Regulatory Truth Test Suite
===========================

Test organization:
- tests/unit/                       - pure functions and in-process components
- tests/services/regulatory_truth/  - stages, queues and API against in-memory SQLite and Redis

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
"""
