"""Canonical Email Event: the single body text every downstream check sees.

Invariants:
    - All functions are PURE: no IO, no DB
    - Body source preference: body_preview > body_html (tags stripped) > snippet
    - Reply chains and forwarded blocks are cut at the first separator line
    - Quoted lines ("> ...") are dropped; whitespace collapsed to single spaces
    - Links are unique, in order of appearance, capped at MAX_EVENT_LINKS

Design Decisions:
    - The facts prompt, the planner and the evidence check all read the output of
      canonicalize_text, so an evidence span quoted by the provider from the prompt
      body is a literal substring of event.body.text
"""

import html
import re

from decisioning.core.domain_types import MAX_EVENT_LINKS
from decisioning.core.repository_protocols import EmailLike

REPLY_SEPARATORS = (
    re.compile(r"^On .+ wrote:$", re.IGNORECASE),
    re.compile(r"^On .+sent:$", re.IGNORECASE),
    re.compile(r"^On .+wrote$", re.IGNORECASE),
    re.compile(r"^From:\s+", re.IGNORECASE),
    re.compile(r"^Sent:\s+", re.IGNORECASE),
    re.compile(r"^To:\s+", re.IGNORECASE),
    re.compile(r"^Subject:\s+", re.IGNORECASE),
    re.compile(r"^-----Original Message-----", re.IGNORECASE),
    re.compile(r"^-+ ?Forwarded message ?-+", re.IGNORECASE),
    re.compile(r"^Begin forwarded message:", re.IGNORECASE),
)

URL_PATTERN = re.compile(r"https?://[^\s<>\"')]+", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLOCK_TAG_PATTERN = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h\d)\s*/?>", re.IGNORECASE)
_SCRIPT_STYLE_PATTERN = re.compile(
    r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL,
)
_WHITESPACE = re.compile(r"\s+")


def strip_html(markup: str) -> str:
    """Drop tags, keep line structure at block boundaries, unescape entities."""
    text = _SCRIPT_STYLE_PATTERN.sub("", markup)
    text = _BLOCK_TAG_PATTERN.sub("\n", text)
    text = _TAG_PATTERN.sub("", text)
    return html.unescape(text)


def canonicalize_text(text: str | None) -> str:
    """Cut reply chain, drop quoted lines, collapse whitespace."""
    if not text or not text.strip():
        return ""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    cutoff = next(
        (
            i for i, line in enumerate(lines)
            if any(rx.search(line.strip()) for rx in REPLY_SEPARATORS)
        ),
        None,
    )
    kept = lines[:cutoff] if cutoff is not None else lines
    kept = [line for line in kept if not line.lstrip().startswith(">")]
    return _WHITESPACE.sub(" ", "\n".join(kept)).strip()


def extract_links(text: str) -> list[dict]:
    """Unique URLs in order of appearance."""
    seen: list[str] = []
    for url in URL_PATTERN.findall(text or ""):
        url = url.rstrip(".,;:!?]}")
        if url not in seen:
            seen.append(url)
        if len(seen) >= MAX_EVENT_LINKS:
            break
    return [{"url": url, "label_hint": None} for url in seen]


def best_body_source(email: EmailLike) -> tuple[str, str]:
    """Pick (raw_text, source) by preference order."""
    if email.body_preview and email.body_preview.strip():
        return email.body_preview, "body_preview"
    if email.body_html and email.body_html.strip():
        return strip_html(email.body_html), "body_html"
    return email.snippet or "", "snippet"


def build_email_event(email: EmailLike) -> dict:
    """Canonical event payload for DecisionInput.event."""
    raw_text, source = best_body_source(email)
    canonical = canonicalize_text(raw_text)
    when = email.email_date.isoformat() if email.email_date else None
    return {
        "event_type": "email",
        "synced_email_id": email.id,
        "thread_id": email.thread_id,
        "email_type": email.email_type,
        "received_at": when,
        "email_date": when,
        "from": {"email": email.from_email, "name": email.from_name},
        "to": [],
        "subject": email.subject,
        "body": {
            "text": canonical,
            "source": source,
            "truncated": False,
            "normalization": {
                "replies_removed": True,
                "html_stripped": source == "body_html",
                "whitespace_collapsed": True,
            },
        },
        "links": extract_links(canonical),
    }
