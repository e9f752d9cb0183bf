"""
Real Functionality Tests Package.

Real ledger, caller, pipeline, poster and stores wired together.

Mock vs Real Strategy:
- Mock: X API client, answer engine HTTP (httpx.MockTransport), time
- Real: All internal logic, rate windows, checkpointing, persistence
"""
