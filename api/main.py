"""
FastAPI application for blog discovery
"""
from fastapi import FastAPI, BackgroundTasks, HTTPException, Query
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional, Dict
from datetime import datetime, timezone
from pathlib import Path

import settings
from site_config import SiteConfigError
from api.models import DiscoveryRequest, DiscoveryResponse, JobStatus
from api.services import DiscoveryService

app = FastAPI(
    title="Blog Finder API",
    description="API for discovering blog and news listing pages on company websites",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

discovery_service = DiscoveryService()

# Job tracking (in-memory, lost on restart)
job_status: Dict[str, JobStatus] = {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Blog Finder API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "discover": "/api/v1/discover",
            "discover_sync": "/api/v1/discover/sync",
            "jobs": "/api/v1/jobs",
            "download": "/api/v1/download/discovery",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": _now().isoformat()}


# ============================================================================
# DISCOVERY ENDPOINTS
# ============================================================================

@app.post("/api/v1/discover", response_model=DiscoveryResponse)
async def discover_blogs(
    request: DiscoveryRequest,
    background_tasks: BackgroundTasks,
):
    """
    Find blog listing pages for the given sites.

    This endpoint starts a background job. Poll /api/v1/jobs/{job_id} for
    the result.
    """
    job_id = f"discover_{_now().timestamp()}"
    created = _now()
    job_status[job_id] = JobStatus(
        job_id=job_id,
        status="running",
        created_at=created,
        progress=0,
    )

    background_tasks.add_task(
        _run_discovery,
        job_id=job_id,
        request=request,
    )

    return DiscoveryResponse(
        job_id=job_id,
        message="Blog discovery started",
        status="running",
        created_at=created,
    )


async def _run_discovery(job_id: str, request: DiscoveryRequest):
    """Background task for blog discovery"""
    job = job_status[job_id]
    try:
        job.progress = 10
        result = await discovery_service.discover(
            urls=request.urls,
            patterns=request.patterns,
            root_only=request.root_only,
            homepage_scan=request.homepage_scan,
        )
        job.status = "completed"
        job.progress = 100
        job.result = result
    except Exception as e:
        print(f"[api] Job {job_id} failed: {e}")
        job.status = "failed"
        job.error = str(e)
    job.completed_at = _now()


@app.post("/api/v1/discover/sync", response_model=DiscoveryResponse)
async def discover_blogs_sync(request: DiscoveryRequest):
    """
    Synchronously find blog listing pages (use for small batches or testing).

    For large batches, use /api/v1/discover instead.
    """
    created = _now()
    try:
        result = await discovery_service.discover(
            urls=request.urls,
            patterns=request.patterns,
            root_only=request.root_only,
            homepage_scan=request.homepage_scan,
        )
    except SiteConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    return DiscoveryResponse(
        job_id=f"sync_{created.timestamp()}",
        message="Blog discovery completed",
        status="completed",
        result=result,
        created_at=created,
        completed_at=_now(),
    )


@app.get("/api/v1/download/discovery")
async def download_discovery():
    """Download the last discovery artifact written by the CLI"""
    file_path = Path(settings.DISCOVERY_OUTPUT)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(
        path=file_path,
        filename=file_path.name,
        media_type="application/json",
    )


# ============================================================================
# JOB ENDPOINTS
# ============================================================================

@app.get("/api/v1/jobs/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Get status of a specific job"""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_status[job_id]


@app.get("/api/v1/jobs", response_model=List[JobStatus])
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
):
    """List all jobs"""
    jobs = list(job_status.values())

    if status:
        jobs = [j for j in jobs if j.status == status]

    jobs.sort(key=lambda x: x.created_at, reverse=True)

    return jobs[:limit]


@app.delete("/api/v1/jobs/{job_id}")
async def delete_job(job_id: str):
    """Delete a job from tracking"""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail="Job not found")

    del job_status[job_id]
    return {"message": "Job deleted", "job_id": job_id}
