"""
CRM workflow API entry point
"""
import logging
import uvicorn
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from crm_workflows.config import Settings
from crm_workflows.api import app


if __name__ == "__main__":
    settings = Settings.from_env(dotenv=False)

    if settings.api_reload:
        uvicorn.run(
            "crm_workflows.api:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=True,
            log_level="info"
        )
    else:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level="info"
        )
