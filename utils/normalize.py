import hashlib
import re
from typing import Iterable, List, Optional, Set

# \w is unicode-aware, so accented letters (ą, ł, é, ü ...) survive stripping
RE_PUNCTUATION = re.compile(r"[^\w\s]+")
RE_WHITESPACE = re.compile(r"\s+")
RE_UNDERSCORE = re.compile(r"_+")
RE_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

MIN_WORD_LENGTH = 3  # words shorter than this carry no signal


def collapse_whitespace(text: Optional[str]) -> str:
    return RE_WHITESPACE.sub(" ", text or "").strip()


def strip_punctuation(text: Optional[str]) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    lowered = (text or "").lower()
    lowered = RE_PUNCTUATION.sub(" ", lowered)
    lowered = RE_UNDERSCORE.sub(" ", lowered)
    return collapse_whitespace(lowered)


def normalize_question(question: Optional[str]) -> str:
    """
    Normalize question text for comparison and hashing.

    Punctuation is removed outright (not replaced by a space) so that
    "E-mail:" and "email" collapse to the same key.
    """
    if not question:
        return ""
    text = question.lower()
    text = RE_PUNCTUATION.sub("", text)
    text = RE_UNDERSCORE.sub("", text)
    return collapse_whitespace(text)


def question_hash(normalized: str) -> str:
    """Stable short hash for a normalized question."""
    if not normalized:
        return "0"
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()[:12]


def word_set(text: Optional[str], min_length: int = MIN_WORD_LENGTH) -> Set[str]:
    return {w for w in strip_punctuation(text).split(" ") if len(w) >= min_length}


def word_list(text: Optional[str], min_length: int = MIN_WORD_LENGTH) -> List[str]:
    return [w for w in strip_punctuation(text).split(" ") if len(w) >= min_length]


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def identifier_text(value: Optional[str]) -> str:
    """Spell out an identifier: firstName -> "first name", start_date--0 -> "start date 0"."""
    return strip_punctuation(RE_CAMEL.sub(" ", value or ""))


def identifier_tokens(values: Iterable[Optional[str]]) -> Set[str]:
    """
    Split HTML identifiers (ids, names, class lists, placeholders) into
    lowercase tokens: "birthDate" -> {"birth", "date"}, "start_date--0" ->
    {"start", "date", "0"}.
    """
    tokens: Set[str] = set()
    for value in values:
        tokens.update(t for t in identifier_text(value).split(" ") if t)
    return tokens
