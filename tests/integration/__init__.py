"""
Integration tests.

These tests run against real components instead of fakes:
- SQLite database (aiosqlite) in a temporary directory
- uvicorn listeners bound to ephemeral ports on 127.0.0.1
- The FastAPI application through httpx's ASGI transport

Run with: pytest tests/integration/ -v
"""
