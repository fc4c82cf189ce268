"""
Academic Results Engine — grading, divisions, rankings, reports and consistency.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.service import build_engine
from routes.results import router as results_router
from routes.reports import router as reports_router
from routes.consistency import router as consistency_router
from routes.grading import router as grading_router

# Load environment
load_dotenv()

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Academic Results API",
    description=(
        "O-Level and A-Level grading, divisions, class rankings, "
        "student/class reports and result consistency repair."
    ),
    version="1.0.0",
)
app.state.engine = build_engine()

# CORS: allow the React dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(results_router, prefix="/api/results", tags=["Results"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
app.include_router(consistency_router, prefix="/api/consistency", tags=["Consistency"])
app.include_router(grading_router, prefix="/api/grading", tags=["Grading"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    engine = app.state.engine
    return {
        "school_name": SCHOOL_NAME,
        "best_subject_counts": {
            level: table["best_count"] for level, table in engine.grading_config().items()
        },
        "rank_policies": {
            "student": {"key": engine.student_policy.key, "dense": engine.student_policy.dense},
            "class": {"key": engine.class_policy.key, "dense": engine.class_policy.dense},
        },
    }
