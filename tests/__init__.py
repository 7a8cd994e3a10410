"""
WhatsApp Notification Gateway Tests

Running Tests:
    # Run all tests
    pytest -v

    # Unit tests only
    pytest tests/unit -v

    # HTTP and websocket surface
    pytest tests/test_api_integration.py -v

Test Coverage:
    - Session state machine and lifecycle manager (lock, timers, stale events)
    - Status broadcaster (replay, ceiling, slow subscribers)
    - Recipient normalization, image resolution, caption templates
    - Send orchestration and error mapping
    - Credential store
    - HTTP routes and realtime channel

No test needs Redis, a database or a real messaging network: the protocol
adapter and template store are replaced by the fakes in conftest.py.
"""
