"""Evidence Grounding: citations must appear verbatim in the canonical body.

Invariants:
    - PURE, case-sensitive, literal substring check (no normalization of either side)
    - A step with no citations is ungrounded (fail closed)
"""


def is_grounded(citation: str, body: str) -> bool:
    return bool(citation) and citation in (body or "")


def ungrounded_citations(citations: list[str], body: str) -> list[str]:
    """Citations that are not literal substrings of body."""
    return [c for c in citations if not is_grounded(c, body)]


def step_is_grounded(citations: list[str], body: str) -> bool:
    return bool(citations) and not ungrounded_citations(citations, body)
