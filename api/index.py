"""
Serverless entry point for the Agency Desk API
"""
import os

# Serverless: no in-process scheduler and no file watcher, cron calls /jobs
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("WATCH_ENGINE_CONFIG", "false")

from mangum import Mangum  # noqa: E402

from agency_desk.main import app  # noqa: E402

# The lifespan builds the engine container on cold start
handler = Mangum(app, lifespan="auto")
