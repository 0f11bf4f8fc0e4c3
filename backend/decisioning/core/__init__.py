"""Core Layer: pure decision logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, models/ or db/
    - All functions are pure and deterministic given their inputs

Design Decisions:
    - Functional core separated from imperative shell: rules, planner and guards are
      testable without mocks; the executor re-reads state and feeds it in
"""
