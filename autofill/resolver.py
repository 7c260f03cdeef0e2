"""
Answer resolution pipeline.

Each question goes through the tiers in order until one yields an answer:
1. Memory   - learned answer with enough confidence
2. Profile  - concept keyword table against the user's profile data
3. AI       - generative answer, constrained to the options when present
4. Fallback - profile heuristic once more, then an empty answer

Batch mode runs the memory tier per question and sends everything left to
a single AI call that must return a flat JSON object keyed by index.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

from autofill import config
from autofill.errors import AITransportFailure, MalformedBatchResponse, StoreWriteFailure
from autofill.option_matcher import match
from autofill.profile import ProfileData, find_profile_value
from utils.normalize import collapse_whitespace, strip_punctuation

logger = logging.getLogger(__name__)


class Provenance(Enum):
    LEARNED = "learned"
    PROFILE = "profile"
    AI = "ai"
    EMPTY = "empty"


@dataclass
class ResolutionResult:
    answer: str
    provenance: Provenance
    question_hash: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.provenance != Provenance.EMPTY and bool(self.answer)


def _empty() -> ResolutionResult:
    return ResolutionResult("", Provenance.EMPTY)


# =============================================================================
# Placeholder answers
# =============================================================================

PLACEHOLDER_PHRASES = [
    "i don't know", "i do not know", "dont know", "unknown", "not sure",
    "no information", "not provided", "not specified", "not available",
    "undefined", "null", "none", "n/a",
    "nie wiem", "brak danych", "brak informacji", "nie wiadomo", "nie dotyczy",
]
_PLACEHOLDER_NORMALIZED = [strip_punctuation(p) for p in PLACEHOLDER_PHRASES]

RE_BRACKETED = re.compile(r"^\s*(\[[^\]]*\]|<[^>]*>)\s*$")
RE_UI_PLACEHOLDER = re.compile(
    r"^(please\s+)?(select|choose|pick|wybierz|wybór|seleccione|selecciona|"
    r"sélectionnez|choisissez|bitte\s+wählen|auswählen)\b",
    re.IGNORECASE,
)


def is_placeholder_answer(text: Optional[str]) -> bool:
    """True for answers that only say "no answer" in some form."""
    stripped = (text or "").strip()
    if not stripped:
        return True
    if RE_BRACKETED.match(stripped) or RE_UI_PLACEHOLDER.match(stripped):
        return True
    cleaned = strip_punctuation(stripped)
    if not cleaned:
        return True  # only dashes, dots etc.
    # single words ("none", "unknown") only as the whole answer
    return any(
        cleaned == p or (" " in p and cleaned.startswith(p + " "))
        for p in _PLACEHOLDER_NORMALIZED
    )


# =============================================================================
# Prompts
# =============================================================================

RE_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def strip_code_fences(text: str) -> str:
    return RE_CODE_FENCE.sub("", (text or "").strip()).strip()


def _clean_answer(text: str) -> str:
    answer = strip_code_fences(text)
    if len(answer) >= 2 and answer[0] == answer[-1] and answer[0] in "\"'":
        answer = answer[1:-1]
    return answer.strip()


def _profile_snapshot(profile: Optional[ProfileData]) -> str:
    return json.dumps(profile or {}, ensure_ascii=False, indent=2, default=str)


def build_prompt(question: str, profile: Optional[ProfileData],
                 options: Optional[Sequence[str]] = None) -> str:
    prompt = f"""You are filling in a job application form for the applicant below.

Applicant data:
{_profile_snapshot(profile)}

Question: {question}"""
    if options:
        prompt += f"""

Available options:
{chr(10).join(f'- {opt}' for opt in options)}

Your answer MUST be one of the available options. Return ONLY the option text exactly as written, nothing else."""
    else:
        prompt += """

Give a brief, professional answer (1-2 sentences max). Return ONLY the answer text, nothing else."""
    return prompt


def build_batch_prompt(questions: Dict[int, str], profile: Optional[ProfileData],
                       options: Dict[int, Optional[Sequence[str]]]) -> str:
    lines = []
    for index, question in questions.items():
        lines.append(f"{index}. {question}")
        if options.get(index):
            lines.append(f"   Options (answer MUST be one of them): {' | '.join(options[index])}")

    return f"""You are filling in a job application form for the applicant below.

Applicant data:
{_profile_snapshot(profile)}

Questions:
{chr(10).join(lines)}

Return ONLY a flat JSON object mapping each question number to its answer, e.g. {{"0": "answer", "1": "answer"}}.
Use an empty string when the applicant data gives no basis for an answer. No explanations."""


def parse_batch_response(raw: str) -> Dict[str, str]:
    """Parse a batch reply into {index: answer}; raises MalformedBatchResponse."""
    text = strip_code_fences(raw)
    try:
        data = json.loads(text)
    except ValueError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise MalformedBatchResponse(f"No JSON object in reply: {text[:80]}")
        try:
            data = json.loads(text[start:end + 1])
        except ValueError as e:
            raise MalformedBatchResponse(f"Unparsable JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedBatchResponse(f"Expected a JSON object, got {type(data).__name__}")

    answers = {}
    for key, value in data.items():
        if isinstance(value, dict):
            raise MalformedBatchResponse(f"Nested object for question {key}")
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        answers[str(key).strip()] = "" if value is None else str(value)
    return answers


# =============================================================================
# Resolver
# =============================================================================

class AnswerResolver:
    """Resolves question text to an answer with provenance."""

    def __init__(self, memory=None, ai_client=None,
                 profile_match_min_length: int = config.PROFILE_MATCH_MIN_LENGTH):
        self.memory = memory
        self.ai_client = ai_client
        self.profile_match_min_length = profile_match_min_length

    async def _from_memory(self, question: str, options: Optional[Sequence[str]],
                           threshold: float) -> Optional[ResolutionResult]:
        if self.memory is None:
            return None
        suggestion = await self.memory.suggest(question)
        if not suggestion or suggestion.confidence <= threshold:
            return None

        answer = suggestion.answer
        if options:
            answer = match(answer, options)
            if answer is None:
                logger.debug(f"Learned answer fits no option: {suggestion.answer[:40]}")
                return None

        if not suggestion.exact:
            try:
                await self.memory.add_variation(suggestion.question_hash, question)
            except StoreWriteFailure as e:
                logger.warning(f"Could not link paraphrase: {e}")
        return ResolutionResult(answer, Provenance.LEARNED, suggestion.question_hash)

    def _from_profile(self, question: str, profile: Optional[ProfileData],
                      options: Optional[Sequence[str]]) -> Optional[ResolutionResult]:
        answer = find_profile_value(question, profile, options)
        if answer:
            return ResolutionResult(answer, Provenance.PROFILE)
        return None

    def _accept_ai_answer(self, raw: str, options: Optional[Sequence[str]]) -> Optional[str]:
        answer = _clean_answer(raw)
        if is_placeholder_answer(answer):
            return None
        if options:
            return match(answer, options)
        return answer

    async def _capture(self, question: str, answer: str) -> Optional[str]:
        if self.memory is None:
            return None
        try:
            return await self.memory.capture(question, answer)
        except StoreWriteFailure as e:
            logger.warning(f"Could not remember answer: {e}")
            return None

    async def resolve(self, question: str, profile: Optional[ProfileData],
                      options: Optional[Sequence[str]] = None,
                      threshold: float = config.MEMORY_USE_THRESHOLD) -> ResolutionResult:
        question = collapse_whitespace(question)
        if not question:
            return _empty()
        options = list(options) if options else None

        learned = await self._from_memory(question, options, threshold)
        if learned:
            return learned

        from_profile = self._from_profile(question, profile, options)
        if from_profile:
            return from_profile

        if self.ai_client is not None:
            try:
                raw = await self.ai_client.ask(
                    build_prompt(question, profile, options),
                    timeout_ms=config.AI_TIMEOUT_SINGLE_MS,
                )
            except AITransportFailure as e:
                logger.warning(f"AI failed for '{question[:50]}': {e}")
            else:
                answer = self._accept_ai_answer(raw, options)
                if answer:
                    record_hash = await self._capture(question, answer)
                    return ResolutionResult(answer, Provenance.AI, record_hash)
                logger.debug(f"AI gave no usable answer for '{question[:50]}': {raw[:60]!r}")

        return self._from_profile(question, profile, options) or _empty()

    def _looks_like_profile(self, answer: str, profile: Optional[ProfileData]) -> bool:
        wanted = answer.strip().lower()
        if not wanted or not profile:
            return False
        for value in profile.values():
            text = str(value).strip().lower()
            if not text:
                continue
            if text == wanted:
                return True
            shorter = min(len(text), len(wanted))
            if shorter >= self.profile_match_min_length and (text in wanted or wanted in text):
                return True
        return False

    async def resolve_batch(self, questions: Sequence[str], profile: Optional[ProfileData],
                            options: Optional[Sequence[Optional[Sequence[str]]]] = None,
                            threshold: float = config.MEMORY_USE_THRESHOLD) -> Dict[int, ResolutionResult]:
        """
        Resolve many questions with at most one AI call.

        Returns a result for every index. Batch AI answers are not captured
        here; the caller captures them once they were written to the form.
        """
        options = list(options) if options else [None] * len(questions)
        results: Dict[int, ResolutionResult] = {}
        pending: Dict[int, str] = {}

        for index, question in enumerate(questions):
            question = collapse_whitespace(question)
            if not question:
                results[index] = _empty()
                continue
            learned = await self._from_memory(question, options[index], threshold)
            if learned:
                results[index] = learned
            else:
                pending[index] = question

        if not pending:
            return results

        answers: Dict[str, str] = {}
        if self.ai_client is not None:
            prompt = build_batch_prompt(pending, profile, {i: options[i] for i in pending})
            try:
                raw = await self.ai_client.ask(
                    prompt,
                    timeout_ms=config.AI_TIMEOUT_BATCH_MS,
                    max_tokens=config.AI_CONFIG["batch_max_tokens"],
                )
                answers = parse_batch_response(raw)
                logger.info(f"Batch AI answered {len(answers)}/{len(pending)} questions")
            except (AITransportFailure, MalformedBatchResponse) as e:
                logger.warning(f"Batch AI failed, using profile heuristic: {e}")
                answers = {}

        for index, question in pending.items():
            answer = self._accept_ai_answer(answers.get(str(index), ""), options[index])
            if answer:
                provenance = Provenance.PROFILE if self._looks_like_profile(answer, profile) else Provenance.AI
                results[index] = ResolutionResult(answer, provenance)
            else:
                results[index] = self._from_profile(question, profile, options[index]) or _empty()
        return results
