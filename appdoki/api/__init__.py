"""HTTP surface: FastAPI application, auth routes and access gate middleware."""
