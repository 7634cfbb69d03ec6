from __future__ import annotations
import logging
import os
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from model_ingest.agencies import create_agency, suggest_for_upload
from model_ingest.config import IngestConfig, load_config
from model_ingest.envelope import Envelope
from model_ingest.enrichment import MODEL_NOT_FOUND
from model_ingest.errors import IngestError, NotFoundError, UserInputError
from model_ingest.io import read_table
from model_ingest.services import Services, build_services
from . import db
from . import settings as app_settings


logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]


class JobStatus(str):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


class Job(BaseModel):
    id: str
    kind: str
    status: str
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    params: Dict
    error: Optional[str] = None
    counters: Dict = {}


class EnrichRequest(BaseModel):
    model_ids: List[int] = []
    data_source: Optional[str] = None


class AgencyCreateRequest(BaseModel):
    name: str = ""
    country: Optional[str] = None
    city: Optional[str] = None
    continent: Optional[str] = None
    website: Optional[str] = None


JOBS: Dict[str, Job] = {}
CANCEL_EVENTS: Dict[str, threading.Event] = {}


def _persist_job(job: Job) -> None:
    try:
        db.update_job(job.model_dump())
    except Exception:
        logger.exception(f"Could not persist job {job.id}")


def _respond(action: Callable[[], Envelope]) -> JSONResponse:
    """Run an action and translate its outcome into the envelope and status code."""
    try:
        env = action()
        return JSONResponse(env.to_dict(), status_code=200)
    except IngestError as e:
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message}")
        return JSONResponse(Envelope.from_error(e).to_dict(), status_code=e.status_code)
    except Exception as e:
        logger.exception("Unhandled error")
        return JSONResponse(Envelope.fail(str(e) or "Internal error").to_dict(), status_code=500)


async def _source_from_request(request: Request, keys: tuple) -> str:
    """Source id from a JSON body (first matching key) or a multipart file name."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if isinstance(body, dict):
            for k in keys:
                if body.get(k):
                    return str(body[k]).strip()
    elif "multipart/form-data" in content_type:
        form = await request.form()
        f = form.get("file")
        if f is not None and getattr(f, "filename", None):
            return str(f.filename).strip()
    return ""


def create_app(
    config: Optional[IngestConfig] = None,
    data_dir: Optional[Path] = None,
    services_factory: Callable[[IngestConfig], Services] = build_services,
) -> FastAPI:
    data_dir = Path(data_dir or os.getenv("INGEST_DATA_DIR") or ROOT / "data")
    db.init_db(data_dir / "jobs.sqlite3")
    base_config = config or load_config()
    app_settings.init_settings(data_dir / "settings.json", app_settings.settings_from_config(base_config))

    app = FastAPI(title="Model Ingest API", version="0.1.0")
    state: Dict[str, Services] = {}

    def rebuild() -> Services:
        old = state.get("services")
        if old is not None:
            old.enrichment.shutdown(wait=False)
        state["services"] = services_factory(app_settings.overlay(base_config, app_settings.get_settings()))
        return state["services"]

    def services() -> Services:
        return state.get("services") or rebuild()

    app.state.services = services
    app.state.rebuild = rebuild

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # --- ingestion ---------------------------------------------------------

    @app.post("/ingest/check")
    async def ingest_check(request: Request):
        source = await _source_from_request(request, ("filename", "data_source"))
        return _respond(lambda: Envelope.ok(services().orchestrator.check(source)))

    @app.post("/ingest/preview")
    async def ingest_preview(
        file: UploadFile = File(...),
        gender: Optional[str] = Form(None),
        feedback: Optional[str] = Form(None),
        previous_mapping: Optional[str] = Form(None),
    ):
        content = await file.read()
        return _respond(
            lambda: Envelope.ok(
                services().orchestrator.preview(
                    file.filename or "upload.csv", content, gender=gender, feedback=feedback,
                    previous_mapping=previous_mapping,
                ).to_dict()
            )
        )

    @app.post("/ingest/regenerate")
    async def ingest_regenerate(
        file: UploadFile = File(...),
        previous_mapping: str = Form(""),
        feedback: Optional[str] = Form(None),
        gender: Optional[str] = Form(None),
    ):
        content = await file.read()
        return _respond(
            lambda: Envelope.ok(
                services().orchestrator.regenerate(
                    file.filename or "upload.csv", content, previous_mapping, feedback=feedback, gender=gender,
                ).to_dict()
            )
        )

    @app.post("/ingest/confirm")
    async def ingest_confirm(
        file: UploadFile = File(...),
        mapping: str = Form(""),
        gender: Optional[str] = Form(None),
        agency_id: Optional[str] = Form(None),
    ):
        content = await file.read()

        def run() -> Envelope:
            report = services().orchestrator.confirm(
                file.filename or "upload.csv", content, mapping, gender=gender, agency_id=agency_id or None
            )
            return Envelope.ok(report.to_dict(), message=report.summary)

        return _respond(run)

    @app.post("/ingest/delete-by-source")
    async def ingest_delete(request: Request):
        source = await _source_from_request(request, ("data_source", "filename"))

        def run() -> Envelope:
            deleted = services().orchestrator.delete_by_source(source)
            return Envelope.ok(
                {"deleted": deleted, "data_source": source},
                message=f"Deleted {deleted} models and related records for data_source {source}",
            )

        return _respond(run)

    @app.post("/ingest/cv-infer")
    async def ingest_cv_infer(request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = {}
        body = body if isinstance(body, dict) else {}
        model_id = body.get("model_id") or body.get("modelId")

        def run() -> Envelope:
            if not model_id:
                raise UserInputError("Missing model_id")
            try:
                mid = int(model_id)
            except (TypeError, ValueError):
                raise UserInputError(f"Invalid model_id: {model_id!r}")
            outcome = services().enrichment.enrich_model(mid)
            if outcome.reason == MODEL_NOT_FOUND:
                raise NotFoundError("Model not found")
            return Envelope.ok(outcome.to_dict(), message=outcome.reason)

        return _respond(run)

    # --- agencies ------------------------------------------------------------

    @app.post("/agencies/suggest")
    async def agencies_suggest(file: UploadFile = File(...)):
        content = await file.read()

        def run() -> Envelope:
            svc = services()
            name = file.filename or "upload.csv"
            table = read_table(content, name, limit=svc.config.sample_size)
            return Envelope.ok(suggest_for_upload(svc.store, svc.proposer, name, table))

        return _respond(run)

    @app.post("/agencies/create")
    def agencies_create(req: AgencyCreateRequest):
        return _respond(lambda: Envelope.ok(create_agency(services().store, **req.model_dump())))

    # --- enrichment jobs -----------------------------------------------------

    @app.post("/jobs/enrich", response_model=Job)
    def create_enrich_job(req: EnrichRequest, bg: BackgroundTasks):
        svc = services()
        ids = list(req.model_ids)
        if req.data_source:
            ids += [i for i in svc.store.model_ids_for_source(req.data_source) if i not in ids]
        if not ids:
            raise HTTPException(400, "model_ids or data_source required")
        job_id = uuid.uuid4().hex
        job = Job(
            id=job_id,
            kind="enrich",
            status=JobStatus.queued,
            created_at=datetime.utcnow(),
            params=req.model_dump(),
            counters={"total": len(ids), "done": 0, "skipped": 0, "failed": 0},
        )
        JOBS[job_id] = job
        CANCEL_EVENTS[job_id] = threading.Event()
        _persist_job(job)

        def run():
            j = JOBS[job_id]
            j.status = JobStatus.running
            j.started_at = datetime.utcnow()
            _persist_job(j)
            try:
                def progress(_outcome, result):
                    j.counters = result.counters()

                result = svc.enrichment.sweep(ids, cancel_event=CANCEL_EVENTS[job_id], on_outcome=progress)
                j.counters = result.counters()
                j.status = JobStatus.cancelled if result.cancelled else JobStatus.succeeded
            except Exception as e:
                logger.exception(f"Enrichment job {job_id} failed")
                j.status = JobStatus.failed
                j.error = str(e)
            finally:
                j.finished_at = datetime.utcnow()
                CANCEL_EVENTS.pop(job_id, None)
                _persist_job(j)

        bg.add_task(run)
        return job

    @app.get("/jobs", response_model=List[Job])
    def list_jobs() -> List[Job]:
        return [Job(**j) for j in db.list_jobs()]

    @app.get("/jobs/{job_id}", response_model=Job)
    def get_job(job_id: str) -> Job:
        if job_id in JOBS:
            return JOBS[job_id]
        j = db.get_job(job_id)
        if j:
            return Job(**j)
        raise HTTPException(404, "job not found")

    @app.post("/jobs/{job_id}/cancel", response_model=Job)
    def cancel_job(job_id: str) -> Job:
        job = JOBS.get(job_id)
        if job is None:
            raise HTTPException(404, "job not found")
        event = CANCEL_EVENTS.get(job_id)
        if event is not None:
            event.set()
        if job.status == JobStatus.queued:
            job.status = JobStatus.cancelled
            job.finished_at = datetime.utcnow()
            _persist_job(job)
        return job

    # --- settings --------------------------------------------------------------

    @app.get("/settings")
    def get_settings() -> Dict[str, Any]:
        return app_settings.get_settings()

    @app.post("/settings")
    def post_settings(update: Dict[str, Any]):
        try:
            merged = app_settings.validate_settings(update)
        except ValueError as e:
            return JSONResponse(Envelope.fail(str(e)).to_dict(), status_code=400)
        app_settings.save_settings(merged)
        rebuild()
        return Envelope.ok(merged).to_dict()

    return app


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(asctime)s %(levelname)s %(message)s")


def main() -> None:
    import uvicorn

    load_dotenv()
    _configure_logging()
    uvicorn.run(create_app(), host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
