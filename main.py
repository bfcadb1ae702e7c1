from dotenv import load_dotenv
from loguru import logger

from clinicbook.api.sandbox_server import run_server
from clinicbook.config import configure_logging, get_settings

load_dotenv()


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting sandbox clinic API on {settings.sandbox_host}:{settings.sandbox_port}")
    run_server()
