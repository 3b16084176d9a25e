"""Text normalization applied before chunking.

Lossy: anything outside the allow-list is dropped.
The allow-list is Unicode-aware so Arabic script and its diacritics survive.
"""
import re

# Arabic, Arabic Supplement, Arabic Extended-A, Presentation Forms A/B
ARABIC_RANGES = "\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF"
# Combining marks are not matched by \w
COMBINING_MARKS = "\u0300-\u036F"
PUNCTUATION = r".,!?;:()\[\]{}\"'\-–—…"

_DISALLOWED = re.compile(rf"[^\w\s{PUNCTUATION}{ARABIC_RANGES}{COMBINING_MARKS}]")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
_LINE_BREAKS = re.compile(r"\s*\n\s*")


def normalize_text(text: str) -> str:
    """Strip noise characters and collapse whitespace.

    Runs of spaces/tabs become one space, any whitespace run containing a
    newline becomes one newline, and the result is trimmed. Idempotent.
    """
    if not text:
        return ""

    # Filter first so removed characters cannot leave whitespace runs behind
    text = _DISALLOWED.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _LINE_BREAKS.sub("\n", text)
    return text.strip()
