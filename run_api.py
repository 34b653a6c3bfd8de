#!/usr/bin/env python3
"""
Startup script for the MediLoan FastAPI server.

Usage:
    python run_api.py

Or with uvicorn directly:
    uvicorn mediloan.api.main:app --reload --host 0.0.0.0 --port 8080
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "mediloan.api.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,  # Auto-reload on code changes (dev mode)
        log_level="info",
    )
