from fastapi import APIRouter

from cohort_reports.api.reports import router as reports_router

api_router = APIRouter()

# Report pages at /reports/*
api_router.include_router(reports_router, prefix="/reports", tags=["reports"])
