from datetime import datetime, timezone
from functools import lru_cache
import json
import re
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from docindex.config import get_settings
from docindex.db import get_engine
from docindex.models import ACTIVE_JOB_STATUSES, INDEX_SYNC_JOB, JobRecord
from docindex.services.index import (
    ContextRetriever,
    IndexContext,
    RetrievalHit,
    assemble_context,
    build_index_context,
    build_retriever,
)
from docindex.services.index.errors import ConfigurationError, FormatError, NetworkError

app = FastAPI(title="docindex", version="0.1.0")

MAX_K = 20


class ContextRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=MAX_K)


class SyncEnqueueRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payload_json: dict[str, Any] | None = None


@app.on_event("startup")
def startup() -> None:
    get_engine()


@lru_cache
def _cached_index_context() -> IndexContext:
    return build_index_context(get_settings())


def get_index_context() -> IndexContext:
    try:
        return _cached_index_context()
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_retriever(
    context: Annotated[IndexContext, Depends(get_index_context)],
) -> ContextRetriever:
    try:
        return build_retriever(context)
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _retrieve(retriever: ContextRetriever, query_text: str, k: int | None) -> list[RetrievalHit]:
    try:
        return retriever.retrieve(query_text, k)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ConfigurationError, FormatError) as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except NetworkError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _job_summary(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
    }


def _job_detail(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "payload_json": _as_object(job.payload_json),
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "created_at": _to_iso(job.created_at),
        "updated_at": _to_iso(job.updated_at),
        "started_at": _to_iso(job.started_at),
        "finished_at": _to_iso(job.finished_at),
        "error": job.error,
        "result_json": _as_object(job.result_json),
    }


def _as_object(value: Any) -> dict[str, Any] | None:
    # the worker writes JSON columns through raw SQL, so values may come back as text
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return value if isinstance(value, dict) else None


def _extract_numeric_suffix(value: str) -> int | None:
    match = re.search(r"(\d+)$", value)
    if match is None:
        return None
    return int(match.group(1))


def _next_job_id(session: Session) -> str:
    next_id = 1
    for existing_id in session.scalars(select(JobRecord.id)).all():
        parsed = _extract_numeric_suffix(str(existing_id))
        if parsed is None:
            continue
        next_id = max(next_id, parsed + 1)
    return str(next_id)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/rag/search")
def rag_search(
    q: str,
    retriever: Annotated[ContextRetriever, Depends(get_retriever)],
    k: int | None = Query(default=None),
) -> list[dict[str, object]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    top_k = None if k is None else max(1, min(k, MAX_K))
    hits = _retrieve(retriever, q, top_k)
    return [hit.as_dict() for hit in hits]


@app.post("/rag/context")
def rag_context(
    request: ContextRequest,
    retriever: Annotated[ContextRetriever, Depends(get_retriever)],
) -> dict[str, Any]:
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question must not be empty")

    hits = _retrieve(retriever, question, request.k)
    assembled = assemble_context(hits)
    return {
        "context": assembled.text,
        "sources": assembled.sources,
        "has_context": assembled.has_context,
        "hits": [hit.as_dict() for hit in hits],
    }


@app.post("/rag/snapshot/reload")
def reload_snapshot(
    context: Annotated[IndexContext, Depends(get_index_context)],
) -> dict[str, Any]:
    try:
        snapshot = context.snapshots.reload()
    except FormatError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "vector_store_id": snapshot.store_id or None,
        "embedding_model": snapshot.embedding_model,
        "chunks": len(snapshot),
    }


@app.post("/index/sync")
def enqueue_index_sync(request: SyncEnqueueRequest | None = None) -> JSONResponse:
    payload_json = request.payload_json if request is not None else None

    with Session(get_engine()) as session:
        existing = session.scalar(
            select(JobRecord)
            .where(JobRecord.type == INDEX_SYNC_JOB)
            .where(JobRecord.status.in_(ACTIVE_JOB_STATUSES))
            .order_by(JobRecord.created_at.asc(), JobRecord.id.asc())
            .limit(1)
        )
        if existing is not None:
            return JSONResponse(
                status_code=409,
                content={
                    "detail": "index_sync already queued/running",
                    "existing_job_id": existing.id,
                },
            )

        job = JobRecord(
            id=_next_job_id(session),
            type=INDEX_SYNC_JOB,
            status="queued",
            payload_json=payload_json,
            attempts=0,
            max_attempts=get_settings().job_max_attempts,
            updated_at=datetime.now(timezone.utc),
        )
        session.add(job)
        session.commit()
        job_id = job.id
        job_status = job.status

    return JSONResponse(status_code=202, content={"job_id": job_id, "status": job_status})


@app.get("/jobs")
def list_jobs(
    type: str | None = Query(default=None),
    status: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    with Session(get_engine()) as session:
        stmt = select(JobRecord)
        if type is not None:
            stmt = stmt.where(JobRecord.type == type)
        if status is not None:
            stmt = stmt.where(JobRecord.status == status)

        jobs = session.scalars(
            stmt.order_by(JobRecord.created_at.asc(), JobRecord.id.asc())
        ).all()

    return [_job_summary(job) for job in jobs]


@app.get("/jobs/{job_id}")
def get_job(job_id: str) -> dict[str, Any]:
    with Session(get_engine()) as session:
        job = session.get(JobRecord, job_id)

    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return _job_detail(job)


def run() -> None:
    import uvicorn

    uvicorn.run("docindex.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
