# main.py
"""
Management API for the autofill engine.

Learned answers: list/search, stats, feedback, edit, delete, export, import, clear.
Fill reports: most recent session logs written by FormLogger.

Run: uvicorn main:app --reload
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from autofill import config
from autofill.errors import StoreWriteFailure
from autofill.form_logger import FormLogger
from storage import JsonFileStore, MemoryStore

logger = logging.getLogger(__name__)

memory = MemoryStore(JsonFileStore(config.MEMORY_STORE_PATH))
form_logger = FormLogger()


app = FastAPI(
    title="Form Autofill",
    description="Learned answers and fill reports for the form autofill engine",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreWriteFailure)
async def store_write_failure_handler(request: Request, exc: StoreWriteFailure):
    logger.error(f"Store write failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"ok": False, "error": str(exc)})


@app.get("/health")
def health():
    return {"status": "ok"}


# -----------------------------
# Learned answers
# -----------------------------

class FeedbackPayload(BaseModel):
    positive: bool


class AnswerUpdate(BaseModel):
    answer: str


@app.get("/learned")
async def list_learned(search: str = Query("")):
    """
    Return learned answers, most recently used first:
      { "count": N, "questions": [record, ...] }
    """
    await memory.reload()
    records = await memory.list_records(search)
    records.sort(key=lambda r: r.last_used or "", reverse=True)
    return {"count": len(records), "questions": [r.to_dict() for r in records]}


@app.get("/learned/stats")
async def learned_stats():
    records = await memory.reload()
    if not records:
        return {"total": 0, "avg_confidence": 0, "total_uses": 0, "most_used": None}
    most_used = max(records, key=lambda r: r.frequency)
    return {
        "total": len(records),
        "avg_confidence": round(sum(r.confidence for r in records) / len(records), 3),
        "total_uses": sum(r.frequency for r in records),
        "most_used": {"question": most_used.question_text, "frequency": most_used.frequency},
    }


@app.get("/learned/export")
async def export_learned():
    await memory.reload()
    records = await memory.export_records()
    filename = f"learned_questions_{datetime.now(timezone.utc).strftime('%Y%m%d')}.json"
    return JSONResponse(
        content=records,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/learned/import")
async def import_learned(payload: Any = Body(...)):
    """Merge exported records; accepts a list or {"questions": [...]}."""
    items = payload.get("questions") if isinstance(payload, dict) else payload
    await memory.reload()
    try:
        result = await memory.import_records(items)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, **result}


@app.get("/learned/{question_hash}")
async def get_learned(question_hash: str):
    await memory.reload()
    record = await memory.get(question_hash)
    if not record:
        return {"ok": False, "error": "Question not found"}
    return {"ok": True, "question": record.to_dict()}


@app.post("/learned/{question_hash}/feedback")
async def learned_feedback(question_hash: str, payload: FeedbackPayload):
    await memory.reload()
    if not await memory.get(question_hash):
        return {"ok": False, "error": "Question not found"}
    await memory.record_feedback(question_hash, payload.positive)
    record = await memory.get(question_hash)
    return {"ok": True, "confidence": record.confidence}


@app.put("/learned/{question_hash}")
async def update_learned(question_hash: str, payload: AnswerUpdate):
    answer = payload.answer.strip()
    if not answer:
        return {"ok": False, "error": "Answer must not be empty"}
    await memory.reload()
    if not await memory.set_answer(question_hash, answer):
        return {"ok": False, "error": "Question not found"}
    return {"ok": True, "question": (await memory.get(question_hash)).to_dict()}


@app.delete("/learned/{question_hash}")
async def delete_learned(question_hash: str):
    await memory.reload()
    if not await memory.delete(question_hash):
        return {"ok": False, "error": "Question not found"}
    return {"ok": True, "removed": question_hash}


@app.delete("/learned")
async def clear_learned():
    await memory.clear()
    return {"ok": True}


# -----------------------------
# Fill reports
# -----------------------------

@app.get("/reports")
def recent_reports(limit: int = Query(10, ge=1, le=100)):
    logs = form_logger.get_recent_logs(limit)
    return {"count": len(logs), "reports": logs}


@app.get("/reports/summary")
def reports_summary():
    return form_logger.get_log_summary()
