"""Main application entry point"""

import uvicorn
from concern_review.config import settings
from concern_review.logging_config import setup_logging, get_logger


def initialize_app() -> None:
    """Initialize logging and report the loaded configuration"""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug,
    )

    # Configuration summary without credentials
    logger.info(
        "configuration_loaded",
        database_backend=settings.database.backend,
        database_host=settings.database.host,
        database_port=settings.database.port,
        api_host=settings.api.host,
        api_port=settings.api.port,
        review_deadline_hours=settings.workflow.review_deadline_hours,
        dev_tokens=settings.dev_tokens_enabled,
    )


def run_api_server(host: str = None, port: int = None, reload: bool = None):
    """Run the FastAPI server"""
    initialize_app()

    host = host or settings.api.host
    port = port or settings.api.port
    logger = get_logger(__name__)
    logger.info("starting_api_server", host=host, port=port)

    uvicorn.run(
        "concern_review.api.app:app",
        host=host,
        port=port,
        reload=settings.debug if reload is None else reload,
        log_level=settings.logging.level.lower()
    )


if __name__ == "__main__":
    run_api_server()
