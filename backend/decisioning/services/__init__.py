"""Services Layer: the imperative shell around the pure core.

Invariants:
    - Services own I/O (database session, extraction provider); core/ stays pure
    - Only step_handlers.py mutates the application aggregate, and only when
      called by the GuardedExecutor

Design Decisions:
    - Runners (shadow, execution) compose the same builder/planner pieces;
      the difference is whether the plan reaches the executor's mutating path
"""
