"""
Fill orchestrator.

Drives one fill session over a page:

    enumerate -> batch phase (first pass only) -> individual phase
        -> re-enumerate; new fields start the next pass (depth + 1)
        -> verification pass over fields still empty (once)
        -> FillReport to the report sink

Only a failure to enumerate fields aborts the session. Every other error is
caught per field and recorded as a missing field.
"""

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field as dataclass_field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Set

from autofill import config, date_parser
from autofill.errors import FieldEnumerationError, StoreWriteFailure
from autofill.field_classifier import FieldDescriptor, FieldType, RawField, classify
from autofill.option_matcher import match
from autofill.profile import ProfileData
from autofill.resolver import AnswerResolver, Provenance, ResolutionResult

logger = logging.getLogger(__name__)


class MissingReason(Enum):
    NO_ANSWER = "no_answer"
    NO_MATCH = "no_match"
    UNPARSEABLE_DATE = "unparseable_date"
    WRITE_FAILED = "write_failed"
    ERROR = "error"
    DEPTH_LIMIT = "depth_limit"


@dataclass
class MissingField:
    field_id: str
    question: str
    reason: MissingReason

    def to_dict(self) -> dict:
        return {"field_id": self.field_id, "question": self.question, "reason": self.reason.value}


@dataclass
class FillSession:
    processed_field_ids: Set[str] = dataclass_field(default_factory=set)
    attempted_field_ids: Set[str] = dataclass_field(default_factory=set)
    # ids of fields that were visible and enabled at some enumeration
    seen_field_ids: Set[str] = dataclass_field(default_factory=set)
    # field id -> MissingField, in first-recorded order
    missing: "OrderedDict[str, MissingField]" = dataclass_field(default_factory=OrderedDict)
    learned_hashes: Dict[str, str] = dataclass_field(default_factory=dict)
    depth: int = 0
    max_depth_reached: bool = False
    verification_done: bool = False
    started_at: float = dataclass_field(default_factory=time.monotonic)

    @property
    def missing_fields(self) -> List[MissingField]:
        return list(self.missing.values())


@dataclass
class FillReport:
    """Outcome of one fill session."""
    url: str = ""
    filled_count: int = 0
    total_count: int = 0
    missing_fields: List[MissingField] = dataclass_field(default_factory=list)
    elapsed_time: float = 0.0
    max_depth_reached: bool = False
    verification_ran: bool = False
    learned_hashes: Dict[str, str] = dataclass_field(default_factory=dict)
    finished_at: str = dataclass_field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["missing_fields"] = [m.to_dict() for m in self.missing_fields]
        return data

    def summary(self) -> str:
        lines = [
            "═══════════════════════════════════════════════════════════",
            "FORM FILL REPORT",
            "═══════════════════════════════════════════════════════════",
            f"URL: {self.url[:70]}",
            "",
            "📊 SUMMARY:",
            f"   Total fields: {self.total_count}",
            f"   ✅ Filled: {self.filled_count}",
            f"   ⚠️ Missing: {len(self.missing_fields)}",
            f"   ⏱️ Time: {self.elapsed_time:.1f}s",
        ]
        if self.max_depth_reached:
            lines.append("   🛑 Depth limit reached")

        if self.missing_fields:
            lines.append("\n⚠️ FIELDS NEEDING INPUT:")
            for m in self.missing_fields:
                lines.append(f"   • {m.question[:50]} ({m.reason.value})")

        lines.append("═══════════════════════════════════════════════════════════")
        return "\n".join(lines)


class FormPage(Protocol):
    """What the orchestrator needs from a page."""

    url: str

    async def enumerate_fields(self) -> List[RawField]: ...

    async def get_question_text(self, raw: RawField) -> Optional[str]: ...

    async def load_options(self, raw: RawField) -> List[str]: ...

    async def write_value(self, raw: RawField, descriptor: FieldDescriptor, value: str) -> bool: ...

    async def attach_file(self, raw: RawField, path: str) -> bool: ...


# Never sent to the batch call
INDIVIDUAL_ONLY_TYPES = {
    FieldType.FILE,
    FieldType.RADIO_GROUP,
    FieldType.CHECKBOX,
    FieldType.SEARCHABLE_SELECT,
}

AFFIRMATIVE = {
    "yes", "y", "true", "1", "on", "checked", "agree", "i agree", "accept",
    "tak", "zgadzam się", "akceptuję", "ja", "oui", "sí", "si",
}


def is_affirmative(answer: str) -> bool:
    return (answer or "").strip().lower().rstrip(".!") in AFFIRMATIVE


def _fillable(raw: RawField) -> bool:
    return raw.visible and not raw.disabled


class FillOrchestrator:
    """Convergent fill loop over a FormPage."""

    def __init__(self, page: FormPage, resolver: AnswerResolver, memory=None, sink=None, *,
                 max_depth: int = config.MAX_DEPTH, enable_feedback: bool = False,
                 resume_path: Optional[str] = None, settle_delay: float = config.SETTLE_DELAY):
        self.page = page
        self.resolver = resolver
        self.memory = memory
        self.sink = sink
        self.max_depth = max_depth
        self.enable_feedback = enable_feedback
        self.resume_path = resume_path if resume_path is not None else config.RESUME_PATH
        self.settle_delay = settle_delay

    # ─────────────────────────────────────────────────────────────────────
    # Session
    # ─────────────────────────────────────────────────────────────────────

    async def fill(self, profile: Optional[ProfileData]) -> FillReport:
        """Fill every field on the page that can be resolved."""
        session = FillSession()
        profile = profile or {}

        fields = await self._enumerate()
        logger.info(f"Found {len(fields)} fields")
        await self._fill_loop(session, profile, fields, is_retry=False)
        await self._verify(session, profile)

        report = self._build_report(session)
        await self._send_report(report)
        return report

    async def _enumerate(self) -> List[RawField]:
        try:
            return list(await self.page.enumerate_fields())
        except FieldEnumerationError:
            raise
        except Exception as e:
            raise FieldEnumerationError(f"Could not enumerate fields: {e}") from e

    async def _reenumerate(self) -> Optional[List[RawField]]:
        """Enumerate after writes; None ends the pass instead of the session."""
        try:
            return await self._enumerate()
        except FieldEnumerationError as e:
            logger.warning(f"Re-enumeration failed, treating form as converged: {e}")
            return None

    def _pending(self, fields: Sequence[RawField], session: FillSession) -> List[RawField]:
        return [
            f for f in fields
            if _fillable(f)
            and f.id not in session.processed_field_ids
            and f.id not in session.attempted_field_ids
        ]

    async def _fill_loop(self, session: FillSession, profile: ProfileData,
                         fields: Sequence[RawField], is_retry: bool):
        session.seen_field_ids.update(f.id for f in fields if _fillable(f))
        targets = self._pending(fields, session)
        depth = 0

        while targets:
            session.depth = depth
            logger.debug(f"Pass at depth {depth}: {len(targets)} fields")
            if depth == 0 and not is_retry:
                await self._batch_phase(targets, session, profile)
            for raw in targets:
                if raw.id in session.processed_field_ids or raw.id in session.attempted_field_ids:
                    continue
                await self._fill_one(raw, session, profile)

            fields = await self._reenumerate()
            if fields is None:
                break
            # hidden fields shown by a write count as new
            new_fields = [f for f in fields if _fillable(f) and f.id not in session.seen_field_ids]
            session.seen_field_ids.update(f.id for f in new_fields)
            if not new_fields:
                break

            depth += 1
            if depth >= self.max_depth:
                session.depth = depth
                session.max_depth_reached = True
                logger.warning(f"Max depth {self.max_depth} reached, {len(new_fields)} new fields left")
                await self._record_depth_limit(new_fields, session)
                break
            logger.info(f"{len(new_fields)} new fields appeared")
            targets = self._pending(new_fields, session)

    async def _record_depth_limit(self, fields: Sequence[RawField], session: FillSession):
        for raw in fields:
            if not raw.visible or raw.disabled or (raw.current_value or "").strip():
                continue
            try:
                question = await self.page.get_question_text(raw)
            except Exception as e:
                logger.debug(f"No label for {raw.id}: {e}")
                question = None
            self._add_missing(session, raw, question or raw.id, MissingReason.DEPTH_LIMIT)

    async def _verify(self, session: FillSession, profile: ProfileData):
        """Retry visible, enabled, still-empty fields once per session."""
        if session.verification_done:
            return
        session.verification_done = True

        fields = await self._reenumerate()
        if fields is None:
            return
        retry = [
            f for f in fields
            if _fillable(f)
            and not (f.current_value or "").strip()
            and f.id not in session.processed_field_ids
        ]
        if not retry:
            return
        logger.info(f"Verification: retrying {len(retry)} empty fields")
        for raw in retry:
            session.attempted_field_ids.discard(raw.id)
        await self._fill_loop(session, profile, retry, is_retry=True)

    # ─────────────────────────────────────────────────────────────────────
    # Phases
    # ─────────────────────────────────────────────────────────────────────

    async def _batch_phase(self, targets: Sequence[RawField], session: FillSession, profile: ProfileData):
        batch = []
        for raw in targets:
            descriptor = classify(raw)
            if descriptor.type in INDIVIDUAL_ONLY_TYPES:
                continue
            if descriptor.type == FieldType.CUSTOM_DROPDOWN and descriptor.options_pending:
                continue
            try:
                question = await self.page.get_question_text(raw)
            except Exception as e:
                logger.debug(f"No label for {raw.id}: {e}")
                continue
            if not question:
                session.attempted_field_ids.add(raw.id)
                continue
            batch.append((raw, descriptor, question))

        if not batch:
            return
        logger.info(f"Batch resolving {len(batch)} fields")
        try:
            results = await self.resolver.resolve_batch(
                [q for _, _, q in batch],
                profile,
                [d.options or None for _, d, _ in batch],
            )
        except Exception as e:
            # fields stay unattempted and go through the individual phase
            logger.warning(f"Batch resolution failed: {e}")
            return

        for index, (raw, descriptor, question) in enumerate(batch):
            session.attempted_field_ids.add(raw.id)
            result = results.get(index)
            if result is None or not result.resolved:
                self._add_missing(session, raw, question, MissingReason.NO_ANSWER)
                continue
            try:
                written = await self._apply(raw, descriptor, question, result, descriptor.options, session)
                if written and result.provenance == Provenance.AI:
                    await self._capture(raw, question, result, descriptor, session)
            except Exception as e:
                logger.warning(f"Error filling '{question[:50]}': {e}")
                self._add_missing(session, raw, question, MissingReason.ERROR)

    async def _fill_one(self, raw: RawField, session: FillSession, profile: ProfileData):
        session.attempted_field_ids.add(raw.id)
        question = raw.id
        try:
            descriptor = classify(raw)
            text = await self.page.get_question_text(raw)
            if not text:
                return
            question = text

            if descriptor.type == FieldType.FILE:
                await self._fill_file(raw, question, session)
                return

            options = descriptor.options
            if not options and (descriptor.options_pending or descriptor.type in (
                    FieldType.CUSTOM_DROPDOWN, FieldType.SEARCHABLE_SELECT)):
                options = [o for o in await self.page.load_options(raw) if o and o.strip()]
                logger.debug(f"Loaded {len(options)} options for '{question[:40]}'")

            result = await self.resolver.resolve(question, profile, options or None)
            if not result.resolved:
                self._add_missing(session, raw, question, MissingReason.NO_ANSWER)
                return
            await self._apply(raw, descriptor, question, result, options, session)
        except FieldEnumerationError:
            raise
        except Exception as e:
            logger.warning(f"Error filling '{question[:50]}': {e}")
            self._add_missing(session, raw, question, MissingReason.ERROR)

    async def _fill_file(self, raw: RawField, question: str, session: FillSession):
        lowered = question.lower()
        if not any(keyword in lowered for keyword in config.CV_KEYWORDS):
            logger.debug(f"File input is not a CV upload: {question[:50]}")
            return
        if not self.resume_path:
            self._add_missing(session, raw, question, MissingReason.NO_ANSWER)
            return
        if await self.page.attach_file(raw, str(self.resume_path)):
            self._mark_written(session, raw, ResolutionResult(str(self.resume_path), Provenance.PROFILE))
            logger.info(f"Attached CV to '{question[:50]}'")
        else:
            self._add_missing(session, raw, question, MissingReason.WRITE_FAILED)

    async def _apply(self, raw: RawField, descriptor: FieldDescriptor, question: str,
                     result: ResolutionResult, options: Sequence[str], session: FillSession) -> bool:
        value = result.answer
        if descriptor.type == FieldType.DATEPICKER:
            parsed = date_parser.parse(value)
            if parsed is None:
                self._add_missing(session, raw, question, MissingReason.UNPARSEABLE_DATE)
                return False
            value = date_parser.format_date(parsed, descriptor.format)
        elif descriptor.type == FieldType.CHECKBOX:
            value = "true" if is_affirmative(value) else "false"
        elif options:
            matched = match(value, options)
            if matched is None:
                self._add_missing(session, raw, question, MissingReason.NO_MATCH)
                return False
            value = matched

        if not await self.page.write_value(raw, descriptor, value):
            self._add_missing(session, raw, question, MissingReason.WRITE_FAILED)
            return False

        self._mark_written(session, raw, result)
        logger.info(f"Filled '{question[:50]}' = {value[:40]} ({result.provenance.value})")
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)
        return True

    async def _capture(self, raw: RawField, question: str, result: ResolutionResult,
                       descriptor: FieldDescriptor, session: FillSession):
        if self.memory is None:
            return
        try:
            record_hash = await self.memory.capture(question, result.answer, descriptor.type.value)
        except StoreWriteFailure as e:
            logger.warning(f"Could not remember answer: {e}")
            return
        if record_hash and self.enable_feedback:
            session.learned_hashes[raw.id] = record_hash

    # ─────────────────────────────────────────────────────────────────────
    # Bookkeeping
    # ─────────────────────────────────────────────────────────────────────

    def _mark_written(self, session: FillSession, raw: RawField, result: ResolutionResult):
        session.processed_field_ids.add(raw.id)
        session.missing.pop(raw.id, None)
        if self.enable_feedback and result.question_hash:
            session.learned_hashes[raw.id] = result.question_hash

    def _add_missing(self, session: FillSession, raw: RawField, question: str, reason: MissingReason):
        if raw.id in session.processed_field_ids:
            return
        if raw.id in session.missing:
            session.missing[raw.id].reason = reason
        else:
            session.missing[raw.id] = MissingField(raw.id, question, reason)

    def _build_report(self, session: FillSession) -> FillReport:
        considered = session.attempted_field_ids | session.processed_field_ids | set(session.missing)
        return FillReport(
            url=getattr(self.page, "url", "") or "",
            filled_count=len(session.processed_field_ids),
            total_count=len(considered),
            missing_fields=session.missing_fields,
            elapsed_time=round(time.monotonic() - session.started_at, 2),
            max_depth_reached=session.max_depth_reached,
            verification_ran=session.verification_done,
            learned_hashes=dict(session.learned_hashes) if self.enable_feedback else {},
        )

    async def _send_report(self, report: FillReport):
        if self.sink is None:
            return
        try:
            outcome = self.sink.report(report)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Report sink failed: {e}")
