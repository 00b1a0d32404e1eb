"""
pytest suite for the QRIS Checkout backend.

Test categories:
- Unit tests: state machine, pricing, validators, models
- Integration tests: lifecycle service against SQLite and the simulated provider
- API tests: FastAPI routes through httpx ASGITransport
"""
