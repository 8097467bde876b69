from fastapi import FastAPI

from app.logging_config import configure_logging
from app.routers import jobs

# Configure logging at startup
configure_logging()

app = FastAPI(title="Portfolio Refresh")

# Routers
app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}
