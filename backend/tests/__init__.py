"""
pytest suite for the order reconciliation backend.

Test categories:
- Unit tests: services and helpers, upstreams faked with httpx.MockTransport
- API tests: full FastAPI app over ASGITransport with in-memory SQLite
- Integration tests: multi-step flows (approve → dispatch → deliver)
"""
