"""HTTP presentation layer (FastAPI routers, schemas, auth)."""
