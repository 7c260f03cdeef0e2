"""
Tests for the answer resolution pipeline (single and batch).

The AI client is replaced by a scripted fake; the memory store runs on a
temporary JSON file.
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.errors import AITransportFailure, FailureKind, MalformedBatchResponse
from autofill.resolver import (
    AnswerResolver,
    Provenance,
    is_placeholder_answer,
    parse_batch_response,
    strip_code_fences,
)
from storage import JsonFileStore, MemoryStore


# ============ Fixtures ============

class FakeAI:
    """Scripted AI client: returns or raises queued replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def ask(self, prompt, timeout_ms=None, max_tokens=None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class RejectingStore:
    async def get(self, key):
        return []

    async def set(self, key, value):
        return False


@pytest.fixture
def memory(tmp_path):
    return MemoryStore(JsonFileStore(tmp_path / "store.json"))


@pytest.fixture
def profile():
    return {"email": "jan@example.com", "country": "Poland", "firstName": "Jan"}


def run(coro):
    return asyncio.run(coro)


# ============ Placeholders & parsing ============

class TestPlaceholders:
    @pytest.mark.parametrize("text", [
        "", "   ", "I don't know", "I do not know the answer", "Nie wiem.", "N/A",
        "unknown", "[Your answer]", "<company name>", "Select...", "Please choose an option",
        "Wybierz", "Bitte wählen", "--",
    ])
    def test_placeholder(self, text):
        assert is_placeholder_answer(text)

    @pytest.mark.parametrize("text", ["Yes", "Warsaw", "None of the above", "Unknown Corp Ltd", "3-5 years"])
    def test_real_answer(self, text):
        assert not is_placeholder_answer(text)

    def test_strip_code_fences(self):
        assert strip_code_fences("```json\n{\"0\": \"a\"}\n```") == '{"0": "a"}'
        assert strip_code_fences("plain") == "plain"


class TestParseBatchResponse:
    def test_flat_object(self):
        assert parse_batch_response('{"0": "Yes", "1": 5, "2": null}') == {"0": "Yes", "1": "5", "2": ""}

    def test_fenced_and_wrapped(self):
        raw = 'Here you go:\n```json\n{"0": "Yes"}\n```'
        assert parse_batch_response(raw) == {"0": "Yes"}

    def test_list_values_joined(self):
        assert parse_batch_response('{"0": ["Python", "SQL"]}') == {"0": "Python, SQL"}

    @pytest.mark.parametrize("raw", ['["Yes", "No"]', "Sorry, I cannot help", '{"0": {"a": 1}}', "{broken"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedBatchResponse):
            parse_batch_response(raw)


# ============ Single resolution ============

class TestResolveSingle:
    def test_empty_profile_no_ai(self):
        """Should return an empty result without raising."""
        result = run(AnswerResolver().resolve("Email", {}))
        assert result.answer == ""
        assert result.provenance == Provenance.EMPTY

    def test_blank_question(self, profile):
        assert run(AnswerResolver().resolve("   ", profile)).provenance == Provenance.EMPTY

    def test_profile_tier(self, profile):
        result = run(AnswerResolver().resolve("E-mail address", profile))
        assert result.answer == "jan@example.com"
        assert result.provenance == Provenance.PROFILE

    def test_memory_tier_first(self, memory, profile):
        """Should prefer a confident learned answer over the profile."""
        record_hash = run(memory.capture("Email", "work@example.com"))
        run(memory.set_answer(record_hash, "work@example.com"))

        result = run(AnswerResolver(memory).resolve("Email", profile))
        assert result.answer == "work@example.com"
        assert result.provenance == Provenance.LEARNED
        assert result.question_hash == record_hash

    def test_low_confidence_memory_skipped(self, memory, profile):
        run(memory.capture("Email", "old@example.com"))
        result = run(AnswerResolver(memory).resolve("Email", profile))
        assert result.provenance == Provenance.PROFILE

    def test_learned_answer_must_fit_options(self, memory):
        record_hash = run(memory.capture("Work mode", "Remote"))
        run(memory.set_answer(record_hash, "Remote"))
        result = run(AnswerResolver(memory).resolve("Work mode", {}, ["Fully remote", "Office"]))
        assert result.answer == "Fully remote"

    def test_similar_suggestion_links_variation(self, memory):
        record_hash = run(memory.capture("Your expected salary", "15000 PLN"))
        run(memory.set_answer(record_hash, "15000 PLN"))
        result = run(AnswerResolver(memory).resolve("Expected salary", {}, threshold=0.75))
        assert result.provenance == Provenance.LEARNED
        assert "expected salary" in run(memory.get(record_hash)).variations

    def test_ai_answer_captured(self, memory):
        ai = FakeAI("Because of the product.")
        resolver = AnswerResolver(memory, ai)
        result = run(resolver.resolve("Why do you want to join us?", {}))

        assert result.answer == "Because of the product."
        assert result.provenance == Provenance.AI
        record = run(memory.get(result.question_hash))
        assert record.answer == "Because of the product."
        assert record.confidence == 0.5

    def test_ai_prompt_lists_options(self):
        ai = FakeAI("Hybrid")
        result = run(AnswerResolver(ai_client=ai).resolve("Preferred work mode", {}, ["On-site", "Hybrid", "Remote"]))
        assert result.answer == "Hybrid"
        assert "- On-site\n- Hybrid\n- Remote" in ai.prompts[0]
        assert "MUST be one of the available options" in ai.prompts[0]

    def test_ai_answer_matched_to_option(self):
        ai = FakeAI('"remote"')
        result = run(AnswerResolver(ai_client=ai).resolve("Work mode", {}, ["Fully remote", "Office"]))
        assert result.answer == "Fully remote"

    def test_ai_placeholder_falls_back(self, memory):
        ai = FakeAI("I don't know")
        result = run(AnswerResolver(memory, ai).resolve("Favourite colour", {}))
        assert result.provenance == Provenance.EMPTY
        assert run(memory.list_records()) == []

    def test_ai_failure_falls_back(self):
        ai = FakeAI(AITransportFailure(FailureKind.TIMEOUT))
        result = run(AnswerResolver(ai_client=ai).resolve("Favourite colour", {}))
        assert result.provenance == Provenance.EMPTY

    def test_capture_failure_swallowed(self):
        ai = FakeAI("Blue")
        resolver = AnswerResolver(MemoryStore(RejectingStore()), ai)
        result = run(resolver.resolve("Favourite colour", {}))
        assert result.answer == "Blue"
        assert result.provenance == Provenance.AI
        assert result.question_hash is None


# ============ Batch resolution ============

class TestResolveBatch:
    def test_one_ai_call(self, profile):
        ai = FakeAI(json.dumps({"0": "jan@example.com", "1": "Great culture", "2": "Poland"}))
        results = run(AnswerResolver(ai_client=ai).resolve_batch(
            ["Email", "Why us?", "Country"],
            profile,
            [None, None, ["Poland (+48)", "Germany (+49)"]],
        ))

        assert len(ai.prompts) == 1
        assert results[0].answer == "jan@example.com"
        assert results[0].provenance == Provenance.PROFILE
        assert results[1].answer == "Great culture"
        assert results[1].provenance == Provenance.AI
        assert results[2].answer == "Poland (+48)"
        assert results[2].provenance == Provenance.PROFILE

    def test_memory_applied_before_ai(self, memory):
        record_hash = run(memory.capture("Why us?", "Great culture"))
        run(memory.set_answer(record_hash, "Great culture"))
        ai = FakeAI('{"1": "Blue"}')

        results = run(AnswerResolver(memory, ai).resolve_batch(["Why us?", "Favourite colour"], {}))
        assert results[0].provenance == Provenance.LEARNED
        assert results[1].answer == "Blue"
        assert "Why us?" not in ai.prompts[0]

    def test_batch_answers_not_captured(self, memory):
        ai = FakeAI('{"0": "Blue"}')
        run(AnswerResolver(memory, ai).resolve_batch(["Favourite colour"], {}))
        assert run(memory.list_records()) == []

    def test_malformed_reply_falls_back(self, profile):
        ai = FakeAI("Sorry, I cannot help with that.")
        results = run(AnswerResolver(ai_client=ai).resolve_batch(["Email", "Why us?"], profile))
        assert results[0].answer == "jan@example.com"
        assert results[0].provenance == Provenance.PROFILE
        assert results[1].provenance == Provenance.EMPTY

    def test_transport_failure_falls_back(self, profile):
        ai = FakeAI(AITransportFailure(FailureKind.RATE_LIMITED))
        results = run(AnswerResolver(ai_client=ai).resolve_batch(["Email"], profile))
        assert results[0].provenance == Provenance.PROFILE

    def test_placeholder_entry_falls_back(self, profile):
        ai = FakeAI('{"0": "N/A", "1": ""}')
        results = run(AnswerResolver(ai_client=ai).resolve_batch(["Email", "Why us?"], profile))
        assert results[0].provenance == Provenance.PROFILE
        assert results[1].provenance == Provenance.EMPTY

    def test_no_ai(self, profile):
        results = run(AnswerResolver().resolve_batch(["Email", "Why us?"], profile))
        assert results[0].answer == "jan@example.com"
        assert results[1].answer == ""

    def test_short_profile_values(self):
        """Should only reclassify containment on values of the configured length."""
        ai = FakeAI('{"0": "Planning"}', '{"0": "Planning"}')
        results = run(AnswerResolver(ai_client=ai).resolve_batch(["Strength"], {"code": "PL"}))
        assert results[0].provenance == Provenance.AI

        lenient = AnswerResolver(ai_client=ai, profile_match_min_length=2)
        results = run(lenient.resolve_batch(["Strength"], {"code": "PL"}))
        assert results[0].provenance == Provenance.PROFILE
