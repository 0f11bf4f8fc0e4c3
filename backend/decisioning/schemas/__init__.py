"""Contract Schemas: EmailFacts, DecisionInput, DecisionPlan.

Invariants:
    - Pure data plus validation rules; no IO
    - DecisionPlan is closed; EmailFacts and DecisionInput are additive-by-default
"""
