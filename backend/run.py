#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Uses the fake payment gateway and video provider unless the environment
says otherwise, and creates the SQLite tables on startup.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("PAYMENT_PROVIDER", "fake")
os.environ.setdefault("VIDEO_PROVIDER", "fake")

import uvicorn

if __name__ == "__main__":
    print("🚀 Starting live sessions development server...")
    print("🌐 Access at: http://localhost:8000")
    print("📚 API Docs: http://localhost:8000/docs")

    uvicorn.run("live_sessions.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
