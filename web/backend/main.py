"""Mozart flow-definition API - FastAPI application."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .routes import flow_definitions_router, flows_router, journeys_router

# Create FastAPI app
app = FastAPI(
    title="Mozart",
    description="Versioned storage for visual API flows",
    version=__version__,
)

# Configure CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(flow_definitions_router, prefix="/api")
app.include_router(flows_router, prefix="/api")
app.include_router(journeys_router, prefix="/api")


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "mozart"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "web.backend.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
    )
