#!/usr/bin/env python3
"""
Run the blog discovery API server
"""
import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "9001")),
        reload=str(os.getenv("API_RELOAD", "0")).strip().lower() in ("1", "true", "yes", "on"),
        log_level="info",
    )
