"""
Profile manager for form filling.

Handles:
- Loading the user's profile JSON
- Flattening nested sections into free-form key -> scalar profile data
- Heuristic question -> profile value matching (concept keyword table)
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from autofill import config
from autofill.option_matcher import match
from utils.normalize import identifier_text

logger = logging.getLogger(__name__)

ProfileData = Dict[str, Any]


# Concept -> (question triggers, profile key keywords). Order matters: the
# first concept whose trigger appears in the question wins, so specific
# concepts ("full name") come before generic ones ("name").
PROFILE_CONCEPTS: List[Tuple[str, List[str], List[str]]] = [
    ("experience",
     ["years of experience", "experience", "doświadczeni", "lata", "lat pracy", "berufserfahrung"],
     ["experience", "doświadczenie", "yearsOfExperience", "years", "lata", "lata doświadczenia"]),
    ("school",
     ["school", "university", "uczelni", "szkoł", "hochschule"],
     ["school", "university", "uczelnia", "szkoła"]),
    ("company",
     ["company", "employer", "pracodawc", "firma", "firmy", "arbeitgeber"],
     ["company", "currentCompany", "employer", "firma", "pracodawca"]),
    ("education",
     ["education","wykształcenie", "edukacja", "degree", "studia", "ausbildung"],
     ["education", "wykształcenie", "edukacja", "szkoła", "degree"]),
    ("email",
     ["email", "e-mail", "e mail", "adres mailowy"],
     ["email", "e-mail", "mail"]),
    ("phone",
     ["phone", "telefon", "mobile", "tel", "komórk", "handynummer"],
     ["telefon", "phone", "tel", "mobile", "numer telefonu"]),
    ("country",
     ["country", "kraj", "państwo", "land"],
     ["country", "kraj", "państwo"]),
    ("full_name",
     ["full name", "imię i nazwisko", "your name", "vollständiger name"],
     ["fullName", "full name", "imię i nazwisko", "name"]),
    ("first_name",
     ["first name", "imię", "given name", "vorname", "firstname"],
     ["imię", "firstName", "first name", "given name"]),
    ("last_name",
     ["last name", "nazwisko", "surname", "family name", "nachname", "lastname"],
     ["nazwisko", "lastName", "last name", "surname"]),
    ("city",
     ["city", "miasto", "location", "lokalizacja", "miejsce zamieszkania", "where are you based", "wohnort"],
     ["city", "miasto", "location", "lokalizacja"]),
    ("salary",
     ["salary", "wynagrodzeni", "oczekiwania finansowe", "expected pay", "compensation", "gehalt"],
     ["salary", "wynagrodzenie", "expectedSalary", "oczekiwania finansowe"]),
    ("linkedin", ["linkedin"], ["linkedin"]),
    ("github", ["github"], ["github"]),
    ("website",
     ["website", "portfolio", "strona", "personal site"],
     ["website", "portfolio", "strona"]),
    ("language",
     ["english", "angielski", "language", "języka", "język", "sprachkenntnisse"],
     ["english", "angielski", "language", "język", "languages"]),
    ("availability",
     ["availability", "notice period", "start date", "okres wypowiedzenia", "dostępność", "kiedy możesz", "verfügbarkeit"],
     ["availability", "notice period", "okres wypowiedzenia", "dostępność", "start date"]),
    ("work_authorization",
     ["authorized to work", "work permit", "pozwoleni", "sponsorship", "arbeitserlaubnis"],
     ["work authorization", "work permit", "pozwolenie na pracę", "sponsorship"]),
    ("consent",
     ["consent", "zgod", "przetwarzani", "gdpr", "rodo", "privacy", "einwilligung"],
     ["consent", "zgoda", "gdpr", "rodo"]),
    ("notifications",
     ["notification", "newsletter", "job alert", "powiadomieni", "przyszłych rekrutacj", "future recruitment"],
     ["notifications", "newsletter", "powiadomienia", "future recruitment", "przyszłe rekrutacje"]),
    ("name",
     ["name"],
     ["fullName", "full name", "name", "imię i nazwisko"]),
]

PREFIX_TRIGGER_MIN = 5  # shorter triggers must match a whole word


def _trigger_pattern(trigger: str) -> re.Pattern:
    escaped = re.escape(trigger)
    if len(trigger) >= PREFIX_TRIGGER_MIN:
        return re.compile(r"(?<!\w)" + escaped)
    return re.compile(r"(?<!\w)" + escaped + r"(?!\w)")


_CONCEPT_PATTERNS = [
    (concept, [_trigger_pattern(t) for t in triggers], keys)
    for concept, triggers, keys in PROFILE_CONCEPTS
]


def _is_filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def find_value_by_keywords(keywords: Sequence[str], profile: ProfileData) -> Optional[Any]:
    """Exact key match first, then substring key match, per keyword."""
    entries = [(identifier_text(str(k)), v) for k, v in profile.items() if _is_filled(v)]
    for keyword in keywords:
        wanted = identifier_text(keyword)
        if not wanted:
            continue
        for key, value in entries:
            if key == wanted:
                return value
        for key, value in entries:
            if wanted in key or (len(key) >= 3 and key in wanted):
                return value
    return None


def detect_concept(question: str) -> Optional[Tuple[str, List[str]]]:
    lowered = " ".join((question or "").lower().split())
    if not lowered:
        return None
    for concept, patterns, keys in _CONCEPT_PATTERNS:
        if any(p.search(lowered) for p in patterns):
            return concept, keys
    return None


def find_profile_value(question: str, profile: Optional[ProfileData],
                       options: Optional[Sequence[str]] = None) -> Optional[str]:
    """
    Heuristic tier: map a question to a profile value.

    With options, the value is passed through the option matcher and only a
    matched option is returned.
    """
    if not profile:
        return None
    found = detect_concept(question)
    if not found:
        return None
    concept, keys = found
    value = find_value_by_keywords(keys, profile)
    if not _is_filled(value):
        return None
    answer = str(value).strip()
    if options:
        matched = match(answer, options)
        if matched is None:
            logger.debug(f"Profile value for '{concept}' fits no option: {answer[:40]}")
        return matched
    return answer


def flatten_profile(data: Dict[str, Any], prefix: str = "", out: Optional[ProfileData] = None) -> ProfileData:
    """
    Flatten nested profile sections to leaf keys.

    {"personal": {"email": "a@b.c"}} -> {"email": "a@b.c"}; a leaf name
    already taken is prefixed with its section ("education school").
    Lists of sections use their first entry, lists of scalars are joined.
    """
    out = {} if out is None else out
    for key, value in data.items():
        if str(key).startswith("_"):
            continue
        name = str(key) if str(key) not in out else f"{prefix} {key}".strip()
        if isinstance(value, dict):
            flatten_profile(value, str(key), out)
        elif isinstance(value, list):
            if value and isinstance(value[0], dict):
                flatten_profile(value[0], str(key), out)
            elif value:
                out[name] = ", ".join(str(v) for v in value)
        elif isinstance(value, bool):
            out[name] = "Yes" if value else "No"
        elif value is not None:
            out[name] = value
    return out


class ProfileManager:
    """Loads the user's profile JSON."""

    def __init__(self, profile_path: Optional[Path] = None):
        self.profile_path = Path(profile_path or config.PROFILE_PATH)
        self.profile: Dict[str, Any] = {}
        self._load_profile()

    def _load_profile(self):
        if self.profile_path.exists():
            try:
                with open(self.profile_path, encoding="utf-8") as f:
                    self.profile = json.load(f)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid profile JSON {self.profile_path}: {e}")
                self.profile = {}
        else:
            logger.warning(f"Profile not found: {self.profile_path}")

    def as_profile_data(self) -> ProfileData:
        return flatten_profile(self.profile)


# Singleton instance
_profile_manager: Optional[ProfileManager] = None


def get_profile_manager(profile_path: Optional[Path] = None) -> ProfileManager:
    """Get or create the profile manager singleton."""
    global _profile_manager
    if _profile_manager is None or profile_path:
        _profile_manager = ProfileManager(profile_path)
    return _profile_manager
