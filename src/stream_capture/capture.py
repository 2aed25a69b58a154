"""External capture and post-processing process management."""

import logging
import secrets
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .config import config

logger = logging.getLogger(__name__)

# Seconds to wait for a process to exit after terminate() before kill()
TERMINATE_GRACE_SECONDS = 5

def build_command(template: str, values: Dict[str, str]) -> List[str]:
    """Split a command line template and fill in its [PLACEHOLDER]s.

    Placeholders are substituted per argument after splitting, so paths and
    descriptions containing spaces or quotes stay a single argument.
    """
    values = {"FULLFFMPEGPATH": config.FFMPEG_PATH, **values}
    cmd = []
    for token in shlex.split(template):
        for name, value in values.items():
            token = token.replace(f"[{name}]", str(value))
        cmd.append(token)
    return cmd


def move_aside(path: Path) -> Optional[Path]:
    """Rename an existing file out of the way so it is never overwritten."""
    path = Path(path)
    if not path.exists():
        return None
    new_path = path.with_name(f"{path.stem}_{secrets.token_hex(4)}{path.suffix}")
    path.rename(new_path)
    logger.info(f"Moved existing {path.name} aside to {new_path.name}")
    return new_path


class CaptureProcess:
    """Runs one capture attempt and kills it at its deadline."""

    def __init__(self, cmd: List[str], session_log: Optional[logging.Logger] = None):
        self.cmd = cmd
        self.log = session_log or logger
        self.process: Optional[subprocess.Popen] = None
        self.killed_at_deadline = False
        self.stderr_thread: Optional[threading.Thread] = None
        self.stdout_thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """Launch the process and start pumping its output into the session log."""
        try:
            self.process = subprocess.Popen(
                self.cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                bufsize=1,
                universal_newlines=True,
            )
        except OSError as e:
            self.log.error(f"Failed to start capture process {self.cmd[0]}: {e}")
            return False

        self.stderr_thread = threading.Thread(
            target=self._monitor_stream, args=(self.process.stderr, "stderr"), daemon=True
        )
        self.stdout_thread = threading.Thread(
            target=self._monitor_stream, args=(self.process.stdout, "stdout"), daemon=True
        )
        self.stderr_thread.start()
        self.stdout_thread.start()
        return True

    def wait(self, timeout: float) -> Optional[int]:
        """Wait for exit, stopping the process if it outlives timeout seconds."""
        if self.process is None:
            return None
        try:
            self.process.wait(timeout=max(timeout, 0))
        except subprocess.TimeoutExpired:
            self.log.info("Capture deadline reached, stopping process")
            self.killed_at_deadline = True
            self.stop()

        for thread in (self.stderr_thread, self.stdout_thread):
            if thread:
                thread.join(timeout=2)
        return self.process.returncode

    def run(self, timeout: float) -> Optional[int]:
        if not self.start():
            return None
        return self.wait(timeout)

    def stop(self):
        """Terminate gracefully, then kill if it does not exit."""
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            self.log.warning("Capture process ignored terminate, killing")
            self.process.kill()
            self.process.wait()

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def _monitor_stream(self, stream, name: str):
        try:
            for line in stream:
                if line.strip():
                    self.log.info(f"[{name}] {line.rstrip()}")
        except (OSError, ValueError) as e:
            self.log.debug(f"Error monitoring {name}: {e}")


def run_command(cmd: List[str], session_log: Optional[logging.Logger] = None) -> int:
    """Run a post-processing command to completion, logging its output."""
    log = session_log or logger
    log.info(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, stdin=subprocess.DEVNULL)
    except OSError as e:
        log.error(f"Failed to run {cmd[0]}: {e}")
        return -1

    for output in (result.stderr, result.stdout):
        for line in (output or "").splitlines():
            if line.strip():
                log.info(f"  {line.rstrip()}")
    if result.returncode != 0:
        log.warning(f"{cmd[0]} exited with code {result.returncode}")
    return result.returncode
