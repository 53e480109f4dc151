"""HTTP melt service (FastAPI)."""
