"""Canonical text forms used for storage and lexical comparison."""
from __future__ import annotations

import re

NON_WORD = re.compile(r"[^\w\s]+", re.UNICODE)
MULTISPACE = re.compile(r"\s+")

# Whisper emits these for silent or near-silent recordings.
NOISE_TRANSCRIPTS = frozenset(
    {
        "",
        "you",
        "you.",
        "bye",
        "bye.",
        "thanks",
        "thanks.",
        "thank you",
        "thank you.",
        ".",
        "..",
        ". .",
        "...",
        "hmm",
        "hmm.",
        "uh",
        "um",
    }
)
MIN_ALNUM_CHARS = 2


def normalize_text(value: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace and trim."""

    cleaned = NON_WORD.sub("", value.lower()).replace("_", "")
    cleaned = MULTISPACE.sub(" ", cleaned)
    return cleaned.strip()


def is_noise_transcript(transcript: str) -> bool:
    lowered = transcript.strip().lower()
    if lowered in NOISE_TRANSCRIPTS:
        return True
    alnum = [char for char in lowered if char.isalnum()]
    return len(alnum) < MIN_ALNUM_CHARS


__all__ = ["normalize_text", "is_noise_transcript", "NOISE_TRANSCRIPTS"]
