"""
ExamGate Backend - entrypoint

Run with ``python main.py`` or ``uvicorn main:app``.
"""

import logging

from examgate.app import create_app
from examgate.config.settings import settings

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
