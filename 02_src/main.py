"""Main entry point for the support chat server."""

import uvicorn
from dotenv import load_dotenv

from sim import Sim
from supportchat.api import create_fastapi_app, get_app
from supportchat.api.routes import control
from supportchat.config import PROJECT_ROOT, Settings
from supportchat.logging_config import setup_logging


def main():
    """Run the application."""
    load_dotenv(PROJECT_ROOT / ".env")
    setup_logging()

    # Get configuration from environment
    settings = Settings.from_env()
    api_url = f"http://{settings.api_host}:{settings.api_port}"

    # The SIM signs in through the control routes, so it needs them mounted
    if settings.control_enabled:
        control.set_sim_instance(Sim(api_url=api_url))

    # Create FastAPI app
    app = create_fastapi_app(get_app())

    # Run with uvicorn (logging is already configured as JSON)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
