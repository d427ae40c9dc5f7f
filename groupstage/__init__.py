"""
groupstage
Group-stage tournament progression engine: groups, schedules, results,
qualification and round advancement behind a FastAPI surface.
"""
__version__ = "1.0.0"
