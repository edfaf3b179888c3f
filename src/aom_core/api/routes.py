"""FastAPI routes: reprocessing jobs and attribution ledger queries."""
import logging
import uuid
from datetime import date
from typing import Annotated, Any, Optional

import aiohttp
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..exceptions import ConfigurationError
from ..platforms import CostStore, build_adapters
from ..reconcile.dates import period_as_dates
from ..reconcile.ledger import AttributionStore
from ..reconcile.orchestrator import ReprocessReport, ReprocessVisitsService
from ..reconcile.schema import connect, init_database
from ..reconcile.visits import SQLiteVisitSource
from ..settings import Settings
from .auth import get_settings, require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_key)])
health_router = APIRouter(prefix="/api/v1", tags=["health"])

MAX_RANGE_DAYS = 366

SettingsDep = Annotated[Settings, Depends(get_settings)]


class ReprocessJobRequest(BaseModel):
    """Request payload for a visit reprocessing job."""

    start_date: date = Field(..., description="First site-local date (inclusive)")
    end_date: date = Field(..., description="Last site-local date (inclusive)")
    import_costs: bool = Field(
        False, description="Import platform costs for the range before merging"
    )
    dry_run: bool = Field(
        False, description="If true, validate and log the plan without writing"
    )


class ReprocessJobStatus(BaseModel):
    """State of a submitted job; updated by the background task."""

    job_id: str
    status: str = Field(..., description="queued, running, completed or failed")
    start_date: date
    end_date: date
    dates_count: int = Field(..., description="Number of dates to reprocess")
    visits_in: int = 0
    rows_out: int = 0
    discrepancies: int = 0
    failures: list[str] = Field(default_factory=list)


class ChannelTotals(BaseModel):
    visits: int = 0
    cost: float = 0.0
    conversions: int = 0
    revenue: float = 0.0


class LedgerWindowResponse(BaseModel):
    """Stored attribution rows of one (site, date) window."""

    site_id: int
    day: date
    rows: list[dict[str, Any]]
    channels: dict[str, ChannelTotals]


class VisitAdResponse(BaseModel):
    site_id: int
    visit_id: int
    platform: Optional[str]
    platform_row_id: Optional[str]
    ad_params: Optional[dict[str, str]]
    ad: Optional[dict[str, Any]] = Field(
        None, description="Campaign and cost-per-click of the referenced cost record"
    )


class HealthResponse(BaseModel):
    status: str


def get_jobs(request: Request) -> dict[str, ReprocessJobStatus]:
    return request.app.state.jobs


def _record_report(job: ReprocessJobStatus, report: ReprocessReport) -> None:
    job.visits_in = report.total_visits_in
    job.rows_out = report.total_rows_out
    job.discrepancies = len(report.discrepancies)
    job.failures = [failure.error for failure in report.failures]
    job.status = "completed" if report.ok else "failed"


async def _run_reprocess_job(
    job: ReprocessJobStatus, payload: ReprocessJobRequest, settings: Settings
) -> None:
    """Background task: reprocess visits for the requested range.

    This function MUST be exception-safe; all errors are caught, logged and
    recorded on the job.
    """
    job.status = "running"
    try:
        logger.info(
            "Starting reprocess job: job_id=%s, range=%s..%s, import_costs=%s, dry_run=%s",
            job.job_id,
            payload.start_date.isoformat(),
            payload.end_date.isoformat(),
            payload.import_costs,
            payload.dry_run,
        )

        if payload.dry_run:
            logger.info(
                "DRY RUN MODE: Would reprocess %s dates for platforms %s",
                len(period_as_dates(payload.start_date, payload.end_date)),
                [platform.value for platform in settings.active_platforms],
            )
            job.status = "completed"
            return

        timeout = aiohttp.ClientTimeout(total=300, connect=30)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            service = ReprocessVisitsService.from_settings(
                settings, session=session if payload.import_costs else None
            )
            try:
                report = await service.run(
                    payload.start_date,
                    payload.end_date,
                    import_costs=payload.import_costs,
                )
            finally:
                service.close()

        _record_report(job, report)
        if report.ok:
            logger.info(
                "Job %s completed: visits_in=%s, rows_out=%s",
                job.job_id,
                job.visits_in,
                job.rows_out,
            )
        else:
            logger.error(
                "Job %s completed with %s failures: %s",
                job.job_id,
                len(job.failures),
                "; ".join(job.failures),
            )

    except Exception as exc:
        job.status = "failed"
        job.failures.append(str(exc))
        logger.error(
            "Job %s failed with exception: %s",
            job.job_id,
            exc,
            exc_info=True,
        )


@router.post(
    "/jobs/reprocess-visits",
    response_model=ReprocessJobStatus,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["jobs"],
    summary="Submit visit reprocessing job",
)
async def create_reprocess_job(
    payload: ReprocessJobRequest,
    background_tasks: BackgroundTasks,
    settings: SettingsDep,
    jobs: Annotated[dict[str, ReprocessJobStatus], Depends(get_jobs)],
) -> ReprocessJobStatus:
    """Queue a cost-to-visit reprocessing job for at most 366 dates.

    Poll GET /jobs/{job_id} for its outcome.
    """
    dates_count = abs((payload.end_date - payload.start_date).days) + 1
    if dates_count > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"date range must not exceed {MAX_RANGE_DAYS} days, got {dates_count}",
        )

    job = ReprocessJobStatus(
        job_id=str(uuid.uuid4()),
        status="queued",
        start_date=payload.start_date,
        end_date=payload.end_date,
        dates_count=dates_count,
    )
    jobs[job.job_id] = job

    background_tasks.add_task(_run_reprocess_job, job, payload, settings)

    logger.info(
        "Queued reprocess job: job_id=%s, range=%s..%s",
        job.job_id,
        payload.start_date.isoformat(),
        payload.end_date.isoformat(),
    )
    return job.model_copy()


@router.get("/jobs/{job_id}", response_model=ReprocessJobStatus, tags=["jobs"])
async def get_reprocess_job(
    job_id: str,
    jobs: Annotated[dict[str, ReprocessJobStatus], Depends(get_jobs)],
) -> ReprocessJobStatus:
    job = jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job")
    return job


# Plain `def` routes run in the threadpool; each opens its own connection.
@router.get(
    "/sites/{site_id}/windows/{day}",
    response_model=LedgerWindowResponse,
    tags=["ledger"],
)
def get_ledger_window(site_id: int, day: date, settings: SettingsDep) -> LedgerWindowResponse:
    """Stored rows of a window with per-channel visit, cost and revenue totals."""
    init_database(settings.db_path)
    conn = connect(settings.db_path)
    try:
        rows = AttributionStore(conn).fetch_window(site_id, day)
    finally:
        conn.close()

    channels: dict[str, ChannelTotals] = {}
    for row in rows:
        totals = channels.setdefault(row["channel"] or "unknown", ChannelTotals())
        totals.visits += 1
        totals.cost += row["cost"] or 0.0
        totals.conversions += row["conversions"] or 0
        totals.revenue += row["revenue"] or 0.0

    return LedgerWindowResponse(site_id=site_id, day=day, rows=rows, channels=channels)


@router.get(
    "/sites/{site_id}/visits/{visit_id}/ad",
    response_model=VisitAdResponse,
    tags=["ledger"],
)
def get_visit_ad(site_id: int, visit_id: int, settings: SettingsDep) -> VisitAdResponse:
    """Ad details of the cost record a visit came from."""
    init_database(settings.db_path)
    db_conn = connect(settings.db_path)
    analytics_conn = (
        db_conn
        if settings.analytics_db_path == settings.db_path
        else connect(settings.analytics_db_path)
    )
    try:
        try:
            visit = SQLiteVisitSource(analytics_conn, settings.param_prefix).get_visit(
                site_id, visit_id
            )
        except ConfigurationError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        if visit is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown visit")

        cost_store = CostStore(db_conn)
        ad = None
        for adapter in build_adapters(settings).values():
            if adapter.is_active():
                ad = adapter.enrich_visit(visit, cost_store)
                if ad is not None:
                    break
    finally:
        if analytics_conn is not db_conn:
            analytics_conn.close()
        db_conn.close()

    return VisitAdResponse(
        site_id=site_id,
        visit_id=visit_id,
        platform=visit.platform,
        platform_row_id=visit.platform_row_id,
        ad_params=visit.campaign_data.get("adParams"),
        ad=ad,
    )


@health_router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")
