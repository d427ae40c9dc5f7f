"""
groupstage/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from groupstage.routes import tournaments, groups, schedule, results, broadcast

router = APIRouter()

# Tournament lifecycle and registration
router.include_router(tournaments.router)

# Group formation
router.include_router(groups.router)

# Match slots
router.include_router(schedule.router)

# Results, qualification and advancement
router.include_router(results.router)

# Announcements
router.include_router(broadcast.router)
