"""API V1 Router"""

from fastapi import APIRouter

# Import endpoint routers
from app.api.v1.endpoints import (
    periods, grades, classes, tariffs,
    students, billing
)

# Create API v1 router
api_router = APIRouter()

# Include endpoint routers with prefixes and tags
api_router.include_router(periods.router, prefix="/periods", tags=["Academic Calendar"])
api_router.include_router(grades.router, prefix="/grades", tags=["Grades"])
api_router.include_router(classes.router, prefix="/classes", tags=["Classes"])
api_router.include_router(tariffs.router, prefix="/tariffs", tags=["Tariffs"])
api_router.include_router(students.router, prefix="/students", tags=["Students"])
api_router.include_router(billing.router, prefix="/bills", tags=["Billing"])
