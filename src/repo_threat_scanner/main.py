"""FastAPI application for the repository threat scanner."""

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import ScanConfig
from .git_utils import CloneOptions
from .models import ScanRequest, ScanResult
from .scanner import scan_local_path, scan_repository

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Repository Threat Scanner",
    description="Scans TypeScript/JavaScript repositories for code-execution patterns",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:8000",
    ],
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)


def build_config(options: dict) -> ScanConfig:
    """Build a ScanConfig from request overrides, raising 400 on bad values."""
    try:
        return ScanConfig(**options)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid options: {e}")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/scan", response_model=ScanResult, response_model_by_alias=True)
async def scan(request: ScanRequest) -> ScanResult:
    """
    Scan a repository or local directory for code-execution threats.

    - **repo_url**: URL of the git repository to clone and scan
    - **path**: Local directory to scan instead of cloning
    - **branch** / **depth**: Clone parameters
    - **options**: ScanConfig overrides
    """
    if bool(request.repo_url) == bool(request.path):
        raise HTTPException(status_code=400, detail="Provide exactly one of 'repo_url' or 'path'")

    config = build_config(request.options)
    try:
        if request.repo_url:
            logger.info(f"Scanning repository: {request.repo_url}")
            clone_options = CloneOptions(depth=request.depth, branch=request.branch)
            return await scan_repository(request.repo_url, config, clone_options)

        logger.info(f"Scanning path: {request.path}")
        return await scan_local_path(request.path, config)
    except Exception as e:
        logger.error(f"Scan failed: {e}")
        raise HTTPException(status_code=500, detail=f"Scan failed: {str(e)}")
