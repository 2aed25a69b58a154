"""Headless entry point for Stream Capture."""

import logging
import sys

from .config import config
from .models import init_db
from .scheduler import StreamCaptureScheduler

def setup_logging():
    """Setup logging configuration."""
    config.ensure_directories()

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler(sys.stdout)
        ]
    )

def main():
    """Main entry point."""
    setup_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting Stream Capture")

    # Initialize database
    init_db()

    # Create and run scheduler
    scheduler = StreamCaptureScheduler()
    scheduler.history.start()

    try:
        scheduler.setup_schedule()
        scheduler.run()
    except KeyboardInterrupt:
        logger.info("Stream Capture stopped by user")
    except Exception as e:
        logger.error(f"Stream Capture error: {e}")
        sys.exit(1)
    finally:
        scheduler.history.stop()

if __name__ == "__main__":
    main()
