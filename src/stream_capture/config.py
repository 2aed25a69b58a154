"""Configuration management for Stream Capture."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Application configuration."""

    # Base paths
    BASE_DIR = Path(__file__).resolve().parent.parent.parent
    DATA_DIR = BASE_DIR / "data"
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/stream_capture.db")

    # Flask settings
    FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
    FLASK_PORT = int(os.getenv("FLASK_PORT", "8080"))
    DEBUG = os.getenv("DEBUG", "False").lower() == "true"

    # Schedule feed and stream authentication
    SCHEDULE_URL = os.getenv("SCHEDULE_URL", "")
    AUTH_URL = os.getenv("AUTH_URL", "")
    USERNAME = os.getenv("STREAM_USERNAME", "")
    PASSWORD = os.getenv("STREAM_PASSWORD", "")
    KEYWORDS_FILE = os.getenv("KEYWORDS_FILE", str(BASE_DIR / "keywords.json"))

    # Scheduling
    SCHEDULE_CHECK = [int(h) for h in os.getenv("SCHEDULE_CHECK", "5,11,17,23").split(",") if h.strip()]
    HOURS_IN_FUTURE = int(os.getenv("HOURS_IN_FUTURE", "24"))
    CONCURRENT_CAPTURES = int(os.getenv("CONCURRENT_CAPTURES", "3"))
    NUMBER_OF_RETRIES = int(os.getenv("NUMBER_OF_RETRIES", "20"))
    SCHED_TIME_OFFSET = float(os.getenv("SCHED_TIME_OFFSET", "0"))
    SCHEDULER_TICK_SECONDS = int(os.getenv("SCHEDULER_TICK_SECONDS", "10"))

    # Capture output
    OUTPUT_PATH = Path(os.getenv("OUTPUT_PATH", str(BASE_DIR / "recordings")))
    NAS_PATH = os.getenv("NAS_PATH") or None  # Secondary storage, optional

    # External commands ([FULLFFMPEGPATH] is resolved from FFMPEG_PATH)
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
    CAPTURE_CMD_LINE = os.getenv(
        "CAPTURE_CMD_LINE",
        '[FULLFFMPEGPATH] -i "http://dnaw1.smoothstreams.tv:9100/view247/ch[CHANNEL]q1.stream/playlist.m3u8?wmsAuthSign=[AUTHTOKEN]" -c copy [FULLOUTPUTPATH]'
    )
    CONCAT_CMD_LINE = os.getenv(
        "CONCAT_CMD_LINE",
        '[FULLFFMPEGPATH] -i "concat:[FILELIST]" -c copy [FULLOUTPUTPATH]'
    )
    MUX_CMD_LINE = os.getenv(
        "MUX_CMD_LINE",
        '[FULLFFMPEGPATH] -i [VIDEOFILE] -acodec copy -vcodec copy -metadata "description=[DESCRIPTION]" [FULLOUTPUTPATH]'
    )

    # Email notifications
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    MAIL_FROM = os.getenv("MAIL_FROM", "")
    MAIL_TO = os.getenv("MAIL_TO", "")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = LOG_DIR / "stream_capture.log"

    @classmethod
    def ensure_directories(cls):
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
        Path(cls.OUTPUT_PATH).mkdir(parents=True, exist_ok=True)

config = Config()
