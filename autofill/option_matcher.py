"""
Fuzzy option matcher.

Maps a free-text answer (from memory, profile or AI) onto one of the
options a field offers. Four passes, each short-circuiting on a hit:

1. exact        - case-insensitive equality, also after translating a
                  localized country name to English
2. substring    - either string contains the other, shortest option wins
3. word overlap - most shared words (> 2 chars) wins
4. semantic     - concept dictionary (work mode, contract type, country)

Returns None when nothing fits; callers must leave the field unfilled.
"""

import re
from typing import Optional, Sequence

from utils.normalize import collapse_whitespace, strip_punctuation, word_list

MIN_SUBSTRING_LENGTH = 4

# Short tokens specific enough to match at 3+ characters: calling codes
# (+48), numeric ranges (3-5) and open ranges (10+)
RE_SHORT_TOKEN = re.compile(r"(?<![\w+])(\+\d{2,4}|\d{1,2}-\d{1,2}|\d{1,2}\+)(?!\w)")
RE_RANGE_SPACING = re.compile(r"(\d)\s*[-–]\s*(\d)")
MIN_TOKEN_LENGTH = 3

# Localized country names -> English canonical name
COUNTRY_TRANSLATIONS = {
    "polska": "poland",
    "niemcy": "germany",
    "deutschland": "germany",
    "francja": "france",
    "wielka brytania": "united kingdom",
    "uk": "united kingdom",
    "usa": "united states",
    "stany zjednoczone": "united states",
    "hiszpania": "spain",
    "włochy": "italy",
    "holandia": "netherlands",
    "belgia": "belgium",
    "szwecja": "sweden",
    "norwegia": "norway",
    "dania": "denmark",
    "czechy": "czech republic",
    "słowacja": "slovakia",
    "austria": "austria",
    "szwajcaria": "switzerland",
    "irlandia": "ireland",
    "portugalia": "portugal",
    "ukraina": "ukraine",
    "litwa": "lithuania",
    "finlandia": "finland",
}

# Concept -> variants across locales. Order matters: first concept found in
# the answer decides which variants are searched for in the options.
SEMANTIC_CONCEPTS = {
    "remote": [
        "remote", "fully remote", "work from home", "home office", "telework",
        "zdalnie", "zdalna", "praca zdalna", "zdalny",
        "teletrabajo", "télétravail",
    ],
    "hybrid": ["hybrid", "hybrydowo", "hybrydowa", "praca hybrydowa", "hybride", "híbrido"],
    "onsite": [
        "on site", "onsite", "in office", "office based", "stacjonarnie",
        "stacjonarna", "praca stacjonarna", "w biurze", "presencial", "sur site",
    ],
    "b2b": [
        "b2b", "business to business", "self employed", "contractor",
        "kontrakt", "działalność gospodarcza", "freelance",
    ],
    "employment_contract": [
        "employment contract", "permanent contract", "permanent", "umowa o pracę",
        "uop", "etat", "pełny etat", "arbeitsvertrag", "cdi",
    ],
    "mandate_contract": ["umowa zlecenie", "zlecenie", "mandate contract", "civil law contract"],
    "task_contract": ["umowa o dzieło", "dzieło", "contract for specific work"],
    "internship": ["internship", "intern", "staż", "praktyki", "praktikum"],
    "poland": ["poland", "polska", "polen", "pologne", "polonia"],
    "germany": ["germany", "niemcy", "deutschland", "allemagne", "alemania"],
    "united_kingdom": ["united kingdom", "great britain", "wielka brytania", "england", "uk"],
    "united_states": ["united states", "usa", "stany zjednoczone", "america", "us"],
    "france": ["france", "francja", "frankreich", "francia"],
    "spain": ["spain", "hiszpania", "spanien", "españa", "espagne"],
    "italy": ["italy", "włochy", "italien", "italia", "italie"],
    "netherlands": ["netherlands", "holandia", "niederlande", "holland", "pays bas"],
    "czech_republic": ["czech republic", "czechia", "czechy", "tschechien"],
    "ukraine": ["ukraine", "ukraina", "ucrania"],
}


def _normalized_concepts():
    return {
        concept: [strip_punctuation(v) for v in variants]
        for concept, variants in SEMANTIC_CONCEPTS.items()
    }


_CONCEPTS = _normalized_concepts()


def _contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word phrase containment on normalized text."""
    if not text or not phrase:
        return False
    return f" {phrase} " in f" {text} "


def _compact_ranges(text: str) -> str:
    """Lowercase and close up ranges: "3 – 5 lat" -> "3-5 lat"."""
    return RE_RANGE_SPACING.sub(r"\1-\2", text.lower())


def _short_token(answer: str) -> Optional[str]:
    """First calling code or numeric range in the answer, if any."""
    m = RE_SHORT_TOKEN.search(_compact_ranges(answer))
    if not m:
        return None
    token = m.group(1)
    return token if len(token) >= MIN_TOKEN_LENGTH else None


def translate_answer(answer: str) -> str:
    """Translate a localized country name to its English form."""
    key = collapse_whitespace(answer.lower())
    return COUNTRY_TRANSLATIONS.get(key, answer)


def _exact_pass(candidates: Sequence[str], options: Sequence[str]) -> Optional[str]:
    if candidates[0] in options:
        return candidates[0]
    for candidate in candidates:
        wanted = collapse_whitespace(candidate.lower())
        for option in options:
            if collapse_whitespace(option.lower()) == wanted:
                return option
    return None


def _substring_pass(answer: str, options: Sequence[str]) -> Optional[str]:
    answer_norm = strip_punctuation(answer)
    token = _short_token(answer)
    token_re = None
    if token:
        token_re = re.compile(r"(?<![\w+])" + re.escape(token) + r"(?!\w)")

    best = None
    for option in options:
        option_norm = strip_punctuation(option)
        hit = False
        if token_re and token_re.search(_compact_ranges(option)):
            hit = True
        elif answer_norm and option_norm:
            if len(answer_norm) >= MIN_SUBSTRING_LENGTH and answer_norm in option_norm:
                hit = True
            elif len(option_norm) >= MIN_SUBSTRING_LENGTH and option_norm in answer_norm:
                hit = True
        if hit and (best is None or len(option) < len(best)):
            best = option
    return best


def _word_overlap_pass(answer: str, options: Sequence[str]) -> Optional[str]:
    answer_words = set(word_list(answer))
    if not answer_words:
        return None

    best, best_score = None, 0
    for option in options:
        option_words = set(word_list(option))
        score = len(answer_words & option_words)
        if score > best_score:
            best, best_score = option, score
    return best


def _semantic_pass(answer: str, options: Sequence[str]) -> Optional[str]:
    answer_norm = strip_punctuation(answer)
    if not answer_norm:
        return None

    for concept, variants in _CONCEPTS.items():
        in_answer = any(
            _contains_phrase(answer_norm, v)
            or (len(answer_norm) >= MIN_SUBSTRING_LENGTH and _contains_phrase(v, answer_norm))
            for v in variants
        )
        if not in_answer:
            continue
        for option in options:
            option_norm = strip_punctuation(option)
            if any(_contains_phrase(option_norm, v) for v in variants):
                return option
    return None


def match(answer: Optional[str], options: Optional[Sequence[str]]) -> Optional[str]:
    """Pick the option that best represents `answer`, or None."""
    if not options or answer is None:
        return None
    answer = str(answer).strip()
    if not answer:
        return None
    options = [o for o in options if isinstance(o, str) and o.strip()]
    if not options:
        return None

    translated = translate_answer(answer)
    candidates = [answer] if translated == answer else [answer, translated]

    return (
        _exact_pass(candidates, options)
        or _substring_pass(translated, options)
        or _word_overlap_pass(translated, options)
        or _semantic_pass(answer, options)
    )
