"""
Tests for profile loading and the question -> profile value heuristic.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.profile import (
    ProfileManager,
    detect_concept,
    find_profile_value,
    flatten_profile,
    get_profile_manager,
)


# ============ Fixtures ============

@pytest.fixture
def polish_profile():
    return {
        "Imię i nazwisko": "Jan Kowalski",
        "Email": "jan@example.com",
        "Telefon": "+48 123 456 789",
        "Wykształcenie": "Wyższe",
        "Lata doświadczenia": "3-5 lat",
        "Kraj": "Poland",
    }


@pytest.fixture
def english_profile():
    return {
        "firstName": "John",
        "lastName": "Smith",
        "email": "john@example.com",
        "phone": "+1 555 1234",
        "education": "Bachelor",
        "yearsOfExperience": "5+",
        "country": "Poland",
        "currentCompany": "Acme",
    }


# ============ Heuristic ============

class TestPolishData:
    def test_polish_questions(self, polish_profile):
        assert find_profile_value("Wykształcenie", polish_profile) == "Wyższe"
        assert find_profile_value("Lata doświadczenia", polish_profile) == "3-5 lat"
        assert find_profile_value("Kraj", polish_profile) == "Poland"
        assert find_profile_value("Email", polish_profile) == "jan@example.com"
        assert find_profile_value("Telefon", polish_profile) == "+48 123 456 789"

    def test_english_questions_polish_keys(self, polish_profile):
        """Should answer English questions from Polish profile keys."""
        assert find_profile_value("Education level", polish_profile) == "Wyższe"
        assert find_profile_value("Years of experience", polish_profile) == "3-5 lat"
        assert find_profile_value("Country", polish_profile) == "Poland"
        assert find_profile_value("Full name", polish_profile) == "Jan Kowalski"

    def test_question_decoration(self, polish_profile):
        assert find_profile_value("Wykształcenie *", polish_profile) == "Wyższe"
        assert find_profile_value("  Lata   doświadczenia  ", polish_profile) == "3-5 lat"

    def test_first_name_key(self):
        assert find_profile_value("First name", {"Imię": "Jan", "Nazwisko": "Kowalski"}) == "Jan"
        assert find_profile_value("Nazwisko", {"Imię": "Jan", "Nazwisko": "Kowalski"}) == "Kowalski"


class TestEnglishData:
    def test_english_keys(self, english_profile):
        assert find_profile_value("Email", english_profile) == "john@example.com"
        assert find_profile_value("Phone", english_profile) == "+1 555 1234"
        assert find_profile_value("Education", english_profile) == "Bachelor"
        assert find_profile_value("Experience", english_profile) == "5+"

    def test_camel_case_keys(self, english_profile):
        assert find_profile_value("First name", english_profile) == "John"
        assert find_profile_value("Years of experience", english_profile) == "5+"

    def test_company_is_not_a_name(self, english_profile):
        """Should answer 'Company name' with the company, not a person's name."""
        assert find_profile_value("Current company name", english_profile) == "Acme"


class TestOptions:
    def test_answer_mapped_to_option(self, polish_profile):
        options = ["1-2 years", "3-5 years", "5+ years"]
        assert find_profile_value("Lata doświadczenia", polish_profile, options) == "3-5 years"

    def test_country_to_calling_code(self, polish_profile):
        options = ["United States (+1)", "Poland (+48)", "Germany (+49)"]
        assert find_profile_value("Kraj", polish_profile, options) == "Poland (+48)"

    def test_no_option_fits(self, polish_profile):
        """Should return None rather than an answer outside the options."""
        assert find_profile_value("Kraj", polish_profile, ["Yes", "No"]) is None


class TestNoAnswer:
    def test_unknown_question(self, polish_profile):
        assert find_profile_value("Unknown question", polish_profile) is None

    def test_empty_profile(self):
        assert find_profile_value("Email", {}) is None
        assert find_profile_value("Email", None) is None

    def test_blank_value_skipped(self):
        assert find_profile_value("Email", {"email": "  "}) is None

    def test_short_trigger_needs_whole_word(self):
        """Should not read 'tel' inside 'hotel' as a phone question."""
        assert detect_concept("Preferred hotel chain") is None

    def test_specific_concept_before_generic(self):
        assert detect_concept("Full name")[0] == "full_name"
        assert detect_concept("Name")[0] == "name"


# ============ Profile files ============

class TestFlattenProfile:
    def test_nested_sections(self):
        flat = flatten_profile({
            "_meta": {"version": 2},
            "personal": {"firstName": "Jan", "email": "jan@example.com"},
            "preferences": {"remote": True, "relocation": False},
            "skills": ["Python", "SQL"],
            "experience": [{"company": "Acme", "title": "PM"}, {"company": "Old"}],
        })
        assert flat == {
            "firstName": "Jan",
            "email": "jan@example.com",
            "remote": "Yes",
            "relocation": "No",
            "skills": "Python, SQL",
            "company": "Acme",
            "title": "PM",
        }

    def test_duplicate_leaf_prefixed(self):
        flat = flatten_profile({"personal": {"name": "Jan"}, "school": {"name": "PW"}})
        assert flat["name"] == "Jan"
        assert flat["school name"] == "PW"


class TestProfileManager:
    def test_load_flattens_sections(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text(json.dumps({
            "personal": {"email": "jan@example.com", "phone": "+48 600 000 000"},
            "links": ["a", "b"],
        }))

        manager = ProfileManager(path)
        assert manager.profile["personal"]["email"] == "jan@example.com"
        assert manager.as_profile_data() == {
            "email": "jan@example.com",
            "phone": "+48 600 000 000",
            "links": "a, b",
        }

    def test_singleton_reloads_for_new_path(self, tmp_path):
        first = tmp_path / "first.json"
        second = tmp_path / "second.json"
        first.write_text(json.dumps({"email": "a@example.com"}))
        second.write_text(json.dumps({"email": "b@example.com"}))

        assert get_profile_manager(first).as_profile_data() == {"email": "a@example.com"}
        assert get_profile_manager().profile_path == first
        assert get_profile_manager(second).as_profile_data() == {"email": "b@example.com"}

    def test_missing_file(self, tmp_path):
        manager = ProfileManager(tmp_path / "nope.json")
        assert manager.profile == {}
        assert manager.as_profile_data() == {}

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        assert ProfileManager(path).profile == {}
