"""
Salon Queue API
Development entry point: `python main.py`
"""
import uvicorn

from salonqueue.core.config import settings
from salonqueue.main import app  # noqa: F401

if __name__ == "__main__":
    is_dev = settings.ENVIRONMENT != "production"
    uvicorn.run(
        # Use import string so reload/workers work correctly (and avoid warnings).
        "salonqueue.main:app",
        host=settings.host,
        port=settings.port,
        reload=is_dev,
        log_level=settings.LOG_LEVEL.lower()
    )
