"""Single application entry point that runs both scheduler and status API."""

import logging
import sys
import threading

from .config import config
from .main import setup_logging
from .models import init_db
from .scheduler import StreamCaptureScheduler
from .web import app, set_scheduler

logger = logging.getLogger(__name__)

class StreamCaptureApp:
    """Main application that runs both the scheduler and the web server."""

    def __init__(self):
        self.scheduler = None
        self.scheduler_thread = None

    def setup(self):
        """Setup the application."""
        setup_logging()
        logger.info("Starting Stream Capture Application")

        init_db()

        self.scheduler = StreamCaptureScheduler()
        self.scheduler.history.start()

        # Share scheduler with web interface for status
        set_scheduler(self.scheduler)

    def run_scheduler(self):
        """Run the scheduler in a separate thread."""
        logger.info("Starting scheduler thread")
        try:
            # First schedule check (feed fetch) happens here, off the web thread
            self.scheduler.setup_schedule()
            self.scheduler.run()
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)

    def start_scheduler_thread(self):
        """Start the scheduler in a background thread."""
        self.scheduler_thread = threading.Thread(target=self.run_scheduler, daemon=True)
        self.scheduler_thread.start()

    def run(self):
        """Run the complete application."""
        try:
            self.setup()

            logger.info(f"Starting web server on {config.FLASK_HOST}:{config.FLASK_PORT}")
            self.start_scheduler_thread()

            app.run(
                host=config.FLASK_HOST,
                port=config.FLASK_PORT,
                debug=config.DEBUG,
                use_reloader=False,
            )

        except KeyboardInterrupt:
            logger.info("Stream Capture application stopped by user")
        except Exception as e:
            logger.error(f"Stream Capture application error: {e}")
            sys.exit(1)
        finally:
            self.cleanup()

    def cleanup(self):
        """Cleanup when shutting down."""
        logger.info("Cleaning up Stream Capture application")
        if self.scheduler:
            self.scheduler.stop()
            self.scheduler.history.stop()

def main():
    """Main entry point."""
    StreamCaptureApp().run()

if __name__ == "__main__":
    main()
