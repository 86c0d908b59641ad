"""Domain layer (pure logic).

- Keep the fairness protocol and settlement rules here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI, no Redis.
- Prefer deterministic functions (time/random passed in as arguments if needed).
"""
