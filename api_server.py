#!/usr/bin/env python
"""
ASGI entry point for the adminer job admission service

Run with: uvicorn api_server:app --host 0.0.0.0 --port 8000
"""
import os
import sys

# Add src to Python path when running from a source checkout
src_path = os.path.join(os.path.dirname(__file__), "src")
if os.path.exists(src_path) and src_path not in sys.path:
    sys.path.insert(0, src_path)

from adminer.app import app  # noqa: E402

__all__ = ["app"]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
