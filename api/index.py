"""
Vercel entry point for the Incident Escalation API
"""
import os
import sys

# Add src directory to path
src_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("ESCALATION_SWEEP_INTERVAL", "0")  # Sweep via POST /escalations/sweep from a cron

from mangum import Mangum
from main import app

# Lambda handler for ASGI app (disable lifespan for serverless)
handler = Mangum(app, lifespan="off")
