"""Contract tests for fake-vs-real implementation parity.

Contract tests validate that fake implementations behave like their real
counterparts and that fakes fully implement the gantry protocols.

Run contract tests:
    pytest tests/contracts/ -v
"""
