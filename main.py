"""
Grazing Simulation Backend
Entry point for the FastAPI application
"""

import uvicorn
from grazesim.api import app
from grazesim.utils.logging_config import setup_logging_from_settings, get_logger
from grazesim.config import get_settings

# Get configuration
settings = get_settings()

# Setup logging before starting the app
setup_logging_from_settings(settings)

logger = get_logger(__name__)

if __name__ == "__main__":
    logger.info("Starting Grazing Simulation Backend")
    logger.info(
        f"Environment: {settings.env}, "
        f"Log level: {settings.log_level}, "
        f"Format: {'JSON' if settings.log_format_json else 'Human-readable'}, "
        f"Data dir: {settings.data_dir}"
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
