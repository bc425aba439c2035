"""
MockSheet — Mock examination broad-sheet engine.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.analyze import router as analyze_router
from routes.common import config_from_payload
from routes.reports import router as reports_router
from routes.rewards import router as rewards_router
from routes.series import router as series_router
from routes.upload import router as upload_router

# Load environment
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

app = FastAPI(
    title="MockSheet API",
    description=(
        "Mock examination processing: composites, nine-point grades, "
        "best-six aggregates, class ranks and series tracking."
    ),
    version="1.0.0",
)

# CORS — allow the React dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(upload_router, prefix="/api/upload", tags=["Upload"])
app.include_router(analyze_router, prefix="/api/analyze", tags=["Analytics"])
app.include_router(series_router, prefix="/api/series", tags=["Series"])
app.include_router(rewards_router, prefix="/api/rewards", tags=["Rewards"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return the effective default configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "config": config_from_payload({}).model_dump(by_alias=True),
    }
