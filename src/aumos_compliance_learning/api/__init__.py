"""HTTP surface: pydantic schemas and the FastAPI router."""
