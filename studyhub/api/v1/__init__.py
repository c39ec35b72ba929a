"""
API v1 routes.
"""

from fastapi import APIRouter

from studyhub.api.v1 import jobs, mastery, study

router = APIRouter()

router.include_router(mastery.router, prefix="/mastery", tags=["Mastery"])
router.include_router(study.router, prefix="/study", tags=["Study"])
router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
