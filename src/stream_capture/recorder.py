"""Capture session supervision for a single show.

A ``CaptureSupervisor`` waits for its show to start, runs the external capture
command against the preferred channel, and keeps restarting it until the
show's end time. Early failures move the capture to the next channel option;
once every option has been tried the channel with the best quality ratio is
locked in for the rest of the show. Finally the captured segments are
concatenated, remuxed and optionally moved to secondary storage.
"""

import copy
import logging
import secrets
import shutil
import time
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .capture import CaptureProcess, build_command, move_aside, run_command
from .config import config
from .exceptions import StreamCaptureError
from .feed import authenticate
from .models import CaptureLog, get_session
from .recordings import CaptureRecord, ChannelOption

logger = logging.getLogger(__name__)
session_logger = logging.getLogger(f"{__name__}.session")
# Session files record INFO regardless of LOG_LEVEL
session_logger.setLevel(logging.INFO)

# Failures sooner than this after a (re)start move capture to another channel
FAILOVER_WINDOW = timedelta(minutes=15)


class CaptureState(Enum):
    PENDING = "pending"
    WAITING = "waiting"
    CAPTURING = "capturing"
    RETRYING = "retrying"
    LOCKED = "locked"
    FINALIZING = "finalizing"
    DONE = "done"


class CaptureSupervisor:
    """Drives the capture of one admitted show from start time to final file."""

    def __init__(self, record: CaptureRecord, history, clock: Callable[[], datetime] = datetime.now,
                 sleep: Callable[[float], None] = time.sleep, process_factory=CaptureProcess,
                 command_runner=run_command, authenticator=authenticate,
                 max_retries: Optional[int] = None, output_path=None, nas_path=None, log_dir=None):
        # Private copy: ratios and the best channel lock never leak back into the candidate map
        self.record = copy.deepcopy(record)
        self.history = history
        self.clock = clock
        self.sleep = sleep
        self.process_factory = process_factory
        self.command_runner = command_runner
        self.authenticator = authenticator
        self.max_retries = config.NUMBER_OF_RETRIES if max_retries is None else max_retries
        self.output_path = Path(output_path or config.OUTPUT_PATH)
        self.nas_path = nas_path if nas_path is not None else config.NAS_PATH
        self.log_dir = Path(log_dir or config.LOG_DIR)

        self.state = CaptureState.PENDING
        self.segments: List[Path] = []
        self.current_channel: Optional[ChannelOption] = None
        self.outcome: Optional[str] = None
        self.final_path: Optional[Path] = None
        self.error: Optional[str] = None
        self.session_id = f"{self.record.key}#{secrets.token_hex(4)}"
        self.log = logger
        self._log_handler: Optional[logging.Handler] = None

    # Lifecycle

    def run(self):
        """Run the whole session. Never raises, so one show cannot affect another."""
        self._open_session_log()
        log_id = self._log_start()
        try:
            self.dump_record_info()
            self.wait_for_start()
            token = self.authenticator()
            self.capture_stream(token)
            self.final_path = self.finalize()
        except Exception as e:
            self.outcome = "failed"
            self.error = str(e)
            self.log.error(f"Capture session failed: {e}", exc_info=True)
        finally:
            self.history.flush()
            self.state = CaptureState.DONE
            self.log.info("Done capturing - cleaning up")
            self._log_end(log_id)
            self._close_session_log()

    def dump_record_info(self):
        self.log.info("=====================")
        self.log.info(f"Show: {self.record.description} Start: {self.record.start_dt}  Duration: {self.record.duration_minutes} min")
        self.log.info(f"File: {self.record.file_name}")
        self.log.info(f"Channels: {self.record.channel_string()}")

    def wait_for_start(self):
        self.state = CaptureState.WAITING
        time_to_wait = (self.record.start_dt - self.clock()).total_seconds()
        if time_to_wait > 0:
            self.log.info(f"Starting capture at {self.record.start_dt} - waiting {timedelta(seconds=int(time_to_wait))}")
            self.sleep(time_to_wait)

    # Capturing

    def capture_stream(self, token: str) -> int:
        """Capture until the show's end time, failing over between channels. Returns segment count."""
        options = self.record.sorted_channels()
        if not options:
            raise StreamCaptureError(f"No channels for {self.record.description}")

        target_end = self.record.end_dt
        channel_idx = 0
        channel = options[channel_idx]
        failure_count = 0

        last_started = self.clock()
        self.log.info(f"Starting {last_started} and expect to be done {target_end}")
        self.history.record_attempt(channel.number, last_started)
        self._capture_segment(channel, token, target_end)

        retry_num = 0
        while self.clock() < target_end and retry_num < self.max_retries:
            now = self.clock()
            survived = now - last_started
            self.log.warning(f"Capture failed for channel {channel.number} after {survived}. "
                             f"Retry {retry_num + 1} of {self.max_retries}")
            self.state = CaptureState.RETRYING

            self.history.record_error(channel.number)
            self.history.add_hours(channel.number, survived.total_seconds() / 3600)
            failure_count += 1

            if survived < FAILOVER_WINDOW and not self.record.best_channel_set:
                minutes = int(survived.total_seconds() // 60)
                channel.ratio = minutes / failure_count
                self.log.info(f"Setting quality ratio {channel.ratio} for channel {channel.number}")

                channel_idx = self.next_channel(options, channel_idx)
                channel = options[channel_idx]
                failure_count = 0

            last_started = self.clock()
            self.history.record_attempt(channel.number, last_started)
            self._capture_segment(channel, token, target_end)
            retry_num += 1

        finished = self.clock()
        self.history.add_hours(channel.number, (finished - last_started).total_seconds() / 3600)
        if finished >= target_end:
            self.outcome = "completed"
            self.history.record_success(channel.number, finished)
            self.log.info("Finished capturing stream")
        else:
            self.outcome = "abandoned"
            self.log.warning(f"Giving up on {self.record.description} after {retry_num} retries")
        return len(self.segments)

    def next_channel(self, options: List[ChannelOption], channel_idx: int) -> int:
        """Move to the next channel option, or lock in the best one once all were tried."""
        channel_idx += 1
        if channel_idx < len(options):
            self.log.info(f"Switching to channel {options[channel_idx].number}")
            return channel_idx

        best_ratio = 0
        for idx, option in enumerate(options):
            if option.ratio >= best_ratio:
                best_ratio = option.ratio
                channel_idx = idx
        self.record.best_channel_set = True
        self.state = CaptureState.LOCKED
        self.log.info(f"Now setting channel to {options[channel_idx].number} with quality ratio of "
                      f"{options[channel_idx].ratio} for the rest of the capture session")
        return channel_idx

    def _capture_segment(self, channel: ChannelOption, token: str, target_end: datetime) -> Optional[int]:
        self.current_channel = channel
        self.state = CaptureState.LOCKED if self.record.best_channel_set else CaptureState.CAPTURING

        segment = self.output_path / f"{self.record.file_name}{len(self.segments)}.ts"
        move_aside(segment)
        self.segments.append(segment)

        cmd = build_command(config.CAPTURE_CMD_LINE, {
            "FULLOUTPUTPATH": segment,
            "CHANNEL": channel.number,
            "AUTHTOKEN": token,
        })
        timeout = (target_end - self.clock()).total_seconds()
        self.log.info(f"Starting capture on channel {channel.number} for {int(timeout)}s: "
                      f"{' '.join(cmd).replace(token, '***') if token else ' '.join(cmd)}")

        process = self.process_factory(cmd, self.log)
        exit_code = process.run(timeout)
        if process.killed_at_deadline:
            self.log.info(f"Capture on channel {channel.number} reached the end time and was stopped")
        else:
            self.log.info(f"After execution. Exit code: {exit_code}")
        return exit_code

    # Finalizing

    def finalize(self) -> Optional[Path]:
        """Concatenate and remux segments; segments are only removed once the final file exists."""
        self.state = CaptureState.FINALIZING
        segments = [p for p in self.segments if p.exists()]
        self.log.info(f"Num files: {len(segments)}")
        if not segments:
            self.log.warning("No segment files were captured, nothing to finalize")
            return None

        if len(segments) > 1:
            stream = self.output_path / f"{self.record.file_name}.ts"
            move_aside(stream)
            cmd = build_command(config.CONCAT_CMD_LINE, {
                "FILELIST": "|".join(str(p) for p in segments),
                "FULLOUTPUTPATH": stream,
            })
            self.log.info("Starting concat")
            self.command_runner(cmd, self.log)
            if not stream.exists():
                self.log.warning(f"Concat produced no {stream.name}, leaving segment files in place")
                return None
        else:
            stream = segments[0]

        output_file = self.output_path / f"{self.record.file_name}.mp4"
        move_aside(output_file)
        description = self.record.description or f"File Name: {self.record.file_name}"
        cmd = build_command(config.MUX_CMD_LINE, {
            "VIDEOFILE": stream,
            "FULLOUTPUTPATH": output_file,
            "DESCRIPTION": description,
        })
        self.log.info("Starting mux")
        self.command_runner(cmd, self.log)

        if not output_file.exists():
            self.log.warning(f"Mux produced no {output_file.name}, leaving {stream.name} in place")
            return None

        for path in dict.fromkeys(segments + [stream]):
            self.log.info(f"Removing ts file: {path}")
            path.unlink(missing_ok=True)

        if self.nas_path:
            nas_file = Path(self.nas_path) / output_file.name
            move_aside(nas_file)
            self.log.info(f"Moving {output_file} to {nas_file}")
            shutil.move(str(output_file), str(nas_file))
            return nas_file
        return output_file

    # Session log and capture log row

    def _open_session_log(self):
        # All sessions share one logger; the handler only takes this session's records
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log = logging.LoggerAdapter(session_logger, {"session": self.session_id})
        self._log_handler = logging.FileHandler(self.log_dir / f"{self.record.file_name}Log.txt")
        self._log_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        self._log_handler.addFilter(lambda r: getattr(r, "session", None) == self.session_id)
        session_logger.addHandler(self._log_handler)

    def _close_session_log(self):
        if self._log_handler:
            session_logger.removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None
        self.log = logger

    def _log_start(self) -> Optional[int]:
        try:
            with get_session() as session:
                entry = CaptureLog(
                    title=self.record.description,
                    file_name=self.record.file_name,
                    status="capturing",
                )
                session.add(entry)
                session.flush()
                return entry.id
        except Exception as e:
            logger.error(f"Failed to write capture log: {e}")
            return None

    def _log_end(self, log_id: Optional[int]):
        if log_id is None:
            return
        try:
            with get_session() as session:
                entry = session.get(CaptureLog, log_id)
                if entry:
                    entry.ended_at = self.clock()
                    entry.status = self.outcome or "failed"
                    entry.segments = len(self.segments)
                    entry.channel = self.current_channel.number if self.current_channel else None
                    entry.error_message = self.error
        except Exception as e:
            logger.error(f"Failed to update capture log: {e}")
