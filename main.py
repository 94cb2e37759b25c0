"""
Approval Engine API entry point
"""
import logging
import uvicorn
from dotenv import load_dotenv

# .env before settings are read
load_dotenv()

from approval_engine.config import load_settings
from approval_engine.api.app import create_app


settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
