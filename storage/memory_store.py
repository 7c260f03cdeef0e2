# storage/memory_store.py
"""
Learned answers memory.

Confidence-scored map from normalized-question hash to the answer that was
used for it, with paraphrase retrieval through Jaccard similarity.

Confidence rules:
- new record                  -> 0.5
- same answer captured again  -> +0.05 (max 1.0)
- different answer captured   -> -0.1  (min 0.3), answer overwritten
- positive feedback           -> +0.1  (max 1.0)
- negative feedback           -> -0.15 (min 0.1)
- explicit user correction    -> 1.0

Records live in the persistent store under one key. Every mutation is
written through; in-memory state only changes after the write succeeded.
"""

import json
import logging
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from autofill import config
from autofill.errors import StoreWriteFailure
from utils.normalize import jaccard, normalize_question, question_hash, word_set

logger = logging.getLogger(__name__)

CONFIDENCE_MIN = 0.1
CONFIDENCE_MAX = 1.0
CONFIDENCE_NEW = 0.5
CONFIDENCE_CHANGED_FLOOR = 0.3

SOURCE_LEARNED = "learned"
SOURCE_SIMILAR = "similar"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clamp(value: float, low: float = CONFIDENCE_MIN, high: float = CONFIDENCE_MAX) -> float:
    return round(max(low, min(high, value)), 4)


@dataclass
class MemoryRecord:
    question_hash: str
    question_text: str
    answer: str
    variations: List[str] = field(default_factory=list)
    frequency: int = 1
    confidence: float = CONFIDENCE_NEW
    feedback_positive: int = 0
    feedback_negative: int = 0
    last_used: str = ""
    field_type: str = "text"
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryRecord":
        question_text = str(data.get("question_text") or "")
        normalized = normalize_question(question_text)
        variations = list(dict.fromkeys(v for v in data.get("variations") or [] if v))
        return cls(
            question_hash=str(data.get("question_hash") or question_hash(normalized)),
            question_text=question_text,
            # "user_answer" is the key used by browser-extension exports
            answer=str(data.get("answer", data.get("user_answer", "")) or ""),
            variations=variations or [normalized],
            frequency=max(1, int(data.get("frequency") or 1)),
            confidence=_clamp(float(data.get("confidence", CONFIDENCE_NEW))),
            feedback_positive=int(data.get("feedback_positive") or 0),
            feedback_negative=int(data.get("feedback_negative") or 0),
            last_used=str(data.get("last_used") or ""),
            field_type=str(data.get("field_type") or "text"),
            created_at=str(data.get("created_at") or ""),
        )


@dataclass
class Suggestion:
    answer: str
    confidence: float
    source: str  # learned | similar
    question_hash: str

    @property
    def exact(self) -> bool:
        return self.source == SOURCE_LEARNED


class MemoryStore:
    """Learned question -> answer memory on top of a key-value store."""

    def __init__(self, store, key: str = config.MEMORY_STORE_KEY,
                 max_bytes: int = config.MEMORY_MAX_BYTES):
        self.store = store
        self.key = key
        self.max_bytes = max_bytes
        self._records: Optional[List[MemoryRecord]] = None

    # ─────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────

    async def _ensure_loaded(self) -> List[MemoryRecord]:
        if self._records is None:
            raw = await self.store.get(self.key)
            records = []
            for item in raw or []:
                if isinstance(item, dict):
                    try:
                        records.append(MemoryRecord.from_dict(item))
                    except (TypeError, ValueError) as e:
                        logger.warning(f"Skipping malformed learned record: {e}")
            self._records = records
        return self._records

    async def reload(self) -> List[MemoryRecord]:
        self._records = None
        return await self._ensure_loaded()

    def _evict(self, records: List[MemoryRecord], pinned: Optional[str] = None) -> List[MemoryRecord]:
        """Drop lowest-frequency records until the serialized size fits; the pinned record stays."""
        def size(items):
            return len(json.dumps([r.to_dict() for r in items], ensure_ascii=False))

        kept = list(records)
        while size(kept) > self.max_bytes:
            candidates = [r for r in kept if r.question_hash != pinned]
            if not candidates:
                raise StoreWriteFailure(
                    f"Learned answer does not fit in {self.max_bytes} bytes on its own"
                )
            keep = int(len(candidates) * (1 - config.MEMORY_EVICTION_SHARE))
            logger.warning(
                f"Learned answers over {self.max_bytes} bytes, keeping {keep}/{len(candidates)} most used"
            )
            survivors = {
                r.question_hash
                for r in sorted(candidates, key=lambda r: r.frequency, reverse=True)[:keep]
            }
            kept = [r for r in kept if r.question_hash == pinned or r.question_hash in survivors]
        return kept

    async def _commit(self, records: List[MemoryRecord], pinned: Optional[str] = None):
        records = self._evict(records, pinned)
        try:
            ok = await self.store.set(self.key, [r.to_dict() for r in records])
        except Exception as e:
            raise StoreWriteFailure(f"Learned answers write failed: {e}") from e
        if not ok:
            raise StoreWriteFailure("Learned answers write was rejected by the store")
        self._records = records

    async def _replace(self, updated: MemoryRecord):
        records = await self._ensure_loaded()
        await self._commit(
            [updated if r.question_hash == updated.question_hash else r for r in records],
            pinned=updated.question_hash,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────

    async def get(self, record_hash: str) -> Optional[MemoryRecord]:
        for record in await self._ensure_loaded():
            if record.question_hash == record_hash:
                return record
        return None

    async def list_records(self, search: str = "") -> List[MemoryRecord]:
        records = await self._ensure_loaded()
        if not search:
            return list(records)
        needle = search.lower()
        return [
            r for r in records
            if needle in r.question_text.lower() or needle in r.answer.lower()
        ]

    async def find_similar(self, normalized: str) -> Optional[MemoryRecord]:
        query = word_set(normalized)
        if not query:
            return None

        best, best_score = None, 0.0
        for record in await self._ensure_loaded():
            score = jaccard(query, word_set(record.question_text))
            for variation in record.variations:
                score = max(score, jaccard(query, word_set(variation)))
            if score > config.SIMILARITY_THRESHOLD and score > best_score:
                best, best_score = record, score
        return best

    async def suggest(self, question_text: str) -> Optional[Suggestion]:
        """Suggest a remembered answer for a question, exact hash first."""
        normalized = normalize_question(question_text)
        if not normalized:
            return None

        exact = await self.get(question_hash(normalized))
        if exact and exact.confidence > config.LEARNED_EXACT_MIN_CONFIDENCE:
            return Suggestion(exact.answer, exact.confidence, SOURCE_LEARNED, exact.question_hash)

        similar = await self.find_similar(normalized)
        if similar:
            return Suggestion(
                similar.answer,
                round(similar.confidence * config.SIMILAR_CONFIDENCE_FACTOR, 4),
                SOURCE_SIMILAR,
                similar.question_hash,
            )
        return None

    # ─────────────────────────────────────────────────────────────────────
    # Capture & feedback
    # ─────────────────────────────────────────────────────────────────────

    async def capture(self, question_text: str, answer: str, field_type: str = "text") -> Optional[str]:
        """
        Remember the answer used for a question.

        Returns the record hash, or None (and writes nothing) when either
        input is empty. Raises StoreWriteFailure if the store write fails.
        """
        if not question_text or not answer or not str(answer).strip():
            return None
        normalized = normalize_question(question_text)
        if not normalized:
            return None
        record_hash = question_hash(normalized)
        answer = str(answer)

        existing = await self.get(record_hash)
        if existing:
            if existing.answer == answer:
                confidence = _clamp(existing.confidence + 0.05)
            else:
                confidence = _clamp(existing.confidence - 0.1, low=CONFIDENCE_CHANGED_FLOOR)
                logger.info(f"Answer updated for: {existing.question_text[:60]}")
            variations = existing.variations
            if normalized not in variations:
                variations = variations + [normalized]
            await self._replace(replace(
                existing,
                answer=answer,
                frequency=existing.frequency + 1,
                confidence=confidence,
                variations=variations,
                last_used=_now_iso(),
            ))
        else:
            now = _now_iso()
            record = MemoryRecord(
                question_hash=record_hash,
                question_text=question_text.strip(),
                answer=answer,
                variations=[normalized],
                last_used=now,
                field_type=field_type or "text",
                created_at=now,
            )
            records = await self._ensure_loaded()
            await self._commit(records + [record], pinned=record_hash)
            logger.info(f"New question learned: {record.question_text[:60]}")
        return record_hash

    async def add_variation(self, record_hash: str, question_text: str) -> bool:
        """Link a paraphrase of a known question to its record."""
        record = await self.get(record_hash)
        normalized = normalize_question(question_text)
        if not record or not normalized or normalized in record.variations:
            return False
        await self._replace(replace(record, variations=record.variations + [normalized]))
        return True

    async def record_feedback(self, record_hash: str, positive: bool):
        record = await self.get(record_hash)
        if not record:
            return
        if positive:
            updated = replace(
                record,
                confidence=_clamp(record.confidence + 0.1),
                feedback_positive=record.feedback_positive + 1,
            )
        else:
            updated = replace(
                record,
                confidence=_clamp(record.confidence - 0.15),
                feedback_negative=record.feedback_negative + 1,
            )
        await self._replace(updated)
        logger.info(
            f"{'Positive' if positive else 'Negative'} feedback for: {record.question_text[:60]}"
        )

    async def set_answer(self, record_hash: str, answer: str) -> bool:
        """Explicit user correction: full confidence in one step."""
        record = await self.get(record_hash)
        if not record or not answer:
            return False
        await self._replace(replace(
            record,
            answer=answer,
            confidence=CONFIDENCE_MAX,
            feedback_positive=record.feedback_positive + 1,
            last_used=_now_iso(),
        ))
        return True

    # ─────────────────────────────────────────────────────────────────────
    # Bulk operations
    # ─────────────────────────────────────────────────────────────────────

    async def delete(self, record_hash: str) -> bool:
        records = await self._ensure_loaded()
        remaining = [r for r in records if r.question_hash != record_hash]
        if len(remaining) == len(records):
            return False
        await self._commit(remaining)
        return True

    async def clear(self):
        await self._commit([])

    async def export_records(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in await self._ensure_loaded()]

    async def import_records(self, items: List[Dict[str, Any]]) -> Dict[str, int]:
        """Merge exported records, skipping hashes that already exist."""
        if not isinstance(items, list):
            raise ValueError("Invalid format: expected a list of records")
        records = await self._ensure_loaded()
        known = {r.question_hash for r in records}
        added = []
        for item in items:
            if not isinstance(item, dict):
                continue
            record = MemoryRecord.from_dict(item)
            if record.question_hash in known or not record.answer:
                continue
            known.add(record.question_hash)
            added.append(record)
        if added:
            await self._commit(records + added)
        return {"imported": len(added), "total": len(records) + len(added)}
