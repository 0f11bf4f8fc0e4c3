"""Infrastructure Layer: external service clients and cross-cutting concerns.

Invariants:
    - Infrastructure never imports decision logic from core/ (error types only)
    - All external calls wrapped with retry/timeout/error mapping
"""
