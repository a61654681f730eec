"""HTTP layer (FastAPI)."""
