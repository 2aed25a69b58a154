"""
Tests for the capture supervisor: waiting, failover, retries and finalizing
"""
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stream_capture.config import config
from stream_capture.exceptions import AuthenticationError
from stream_capture.models import CaptureLog, get_session
from stream_capture.recorder import CaptureState, CaptureSupervisor


class FakeCaptures:
    """Stands in for CaptureProcess. Each run survives the next scripted number of minutes.

    ``None`` (or running out of script) means the process lives until its deadline.
    """

    def __init__(self, clock, survive_minutes=(), write_output=True):
        self.clock = clock
        self.script = list(survive_minutes)
        self.write_output = write_output
        self.commands = []

    @property
    def channels(self):
        return [cmd[1] for cmd in self.commands]

    def __call__(self, cmd, log):
        owner = self

        class _Process:
            killed_at_deadline = False

            def run(self, timeout):
                owner.commands.append(cmd)
                if owner.write_output:
                    Path(cmd[-1]).write_bytes(b"ts")
                minutes = owner.script.pop(0) if owner.script else None
                if minutes is None:
                    owner.clock.advance(seconds=timeout)
                    self.killed_at_deadline = True
                    return 255
                owner.clock.advance(minutes=minutes)
                return 1

        return _Process()


def fake_ffmpeg(create=True):
    """Command runner that writes its last argument (the output path)."""
    calls = []

    def runner(cmd, log):
        calls.append(cmd)
        if create:
            Path(cmd[-1]).write_bytes(b"out")
        return 0

    runner.calls = calls
    return runner


@pytest.fixture(autouse=True)
def command_templates():
    with patch.object(config, "CAPTURE_CMD_LINE", "capture [CHANNEL] [AUTHTOKEN] [FULLOUTPUTPATH]"), \
         patch.object(config, "CONCAT_CMD_LINE", "concat [FILELIST] [FULLOUTPUTPATH]"), \
         patch.object(config, "MUX_CMD_LINE", 'mux [VIDEOFILE] "[DESCRIPTION]" [FULLOUTPUTPATH]'):
        yield


@pytest.fixture
def supervisor_for(tmp_path, clock):
    def _make(record, captures=None, runner=None, max_retries=20, nas_path=None, history=None):
        return CaptureSupervisor(
            record,
            history or MagicMock(),
            clock=clock,
            sleep=clock.sleep,
            process_factory=captures or FakeCaptures(clock),
            command_runner=runner or fake_ffmpeg(),
            authenticator=lambda: "token123",
            max_retries=max_retries,
            output_path=tmp_path,
            nas_path=nas_path,
            log_dir=tmp_path / "logs",
        )

    return _make


class TestWaiting:
    """Tests for waiting until start time"""

    def test_sleeps_until_start(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:30", 60)
        sleep = MagicMock()
        supervisor = supervisor_for(record)
        supervisor.sleep = sleep

        supervisor.wait_for_start()

        sleep.assert_called_once_with(30 * 60)
        assert supervisor.state == CaptureState.WAITING

    def test_already_due_does_not_sleep(self, make_record, supervisor_for, clock):
        record = make_record("Show", "09:45", 60)
        sleep = MagicMock()
        supervisor = supervisor_for(record)
        supervisor.sleep = sleep

        supervisor.wait_for_start()

        sleep.assert_not_called()


class TestCaptureStream:
    """Tests for capture, failover and retry"""

    def test_single_attempt_success(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        captures = FakeCaptures(clock)
        history = MagicMock()
        supervisor = supervisor_for(record, captures=captures, history=history)

        segments = supervisor.capture_stream("token123")

        assert segments == 1
        assert captures.channels == ["01"]
        assert captures.commands[0][2] == "token123"
        assert supervisor.outcome == "completed"
        assert clock.now == record.end_dt
        history.record_success.assert_called_once_with("01", record.end_dt)
        history.record_error.assert_not_called()

    def test_deadline_is_remaining_time_to_show_end(self, make_record, supervisor_for, clock):
        record = make_record("Show", "09:30", 60)
        timeouts = []

        class Recorder:
            def __call__(self, cmd, log):
                class _P:
                    killed_at_deadline = False

                    def run(self, timeout):
                        timeouts.append(timeout)
                        clock.advance(seconds=timeout)
                        return 0
                return _P()

        supervisor = supervisor_for(record, captures=Recorder())
        supervisor.capture_stream("t")

        assert timeouts == [30 * 60]

    def test_early_failure_fails_over_in_preference_order(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02", "03"))
        captures = FakeCaptures(clock, survive_minutes=[2, 3])
        supervisor = supervisor_for(record, captures=captures)

        supervisor.capture_stream("t")

        assert captures.channels == ["01", "02", "03"]
        ratios = {c.number: c.ratio for c in supervisor.record.channels}
        assert ratios == {"01": 2.0, "02": 3.0, "03": 0.0}
        assert supervisor.outcome == "completed"
        assert not supervisor.record.best_channel_set

    def test_switches_channel_before_third_attempt(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        captures = FakeCaptures(clock, survive_minutes=[1, 1, 1])
        supervisor = supervisor_for(record, captures=captures)

        supervisor.capture_stream("t")

        assert "02" in captures.channels[:3]

    def test_exhausted_options_lock_best_ratio(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        captures = FakeCaptures(clock, survive_minutes=[4, 1, 2])
        supervisor = supervisor_for(record, captures=captures)

        supervisor.capture_stream("t")

        # 01 survived 4 min (ratio 4), 02 survived 1 min (ratio 1) -> 01 locked in
        assert captures.channels == ["01", "02", "01", "01"]
        assert supervisor.record.best_channel_set
        assert supervisor.state == CaptureState.LOCKED

    def test_late_failure_retries_same_channel(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        captures = FakeCaptures(clock, survive_minutes=[20])
        supervisor = supervisor_for(record, captures=captures)

        supervisor.capture_stream("t")

        assert captures.channels == ["01", "01"]
        assert supervisor.record.channels[0].ratio == 0.0

    def test_retries_are_bounded(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01",))
        captures = FakeCaptures(clock, survive_minutes=[1, 1, 1, 1, 1])
        history = MagicMock()
        supervisor = supervisor_for(record, captures=captures, max_retries=2, history=history)

        segments = supervisor.capture_stream("t")

        assert segments == 3
        assert supervisor.outcome == "abandoned"
        assert clock.now < record.end_dt
        history.record_success.assert_not_called()

    def test_channel_history_updates(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        captures = FakeCaptures(clock, survive_minutes=[6])
        history = MagicMock()
        supervisor = supervisor_for(record, captures=captures, history=history)

        supervisor.capture_stream("t")

        assert [c.args[0] for c in history.record_attempt.call_args_list] == ["01", "02"]
        history.record_error.assert_called_once_with("01")
        hours = {c.args[0]: c.args[1] for c in history.add_hours.call_args_list}
        assert hours["01"] == pytest.approx(0.1)
        assert hours["02"] == pytest.approx(54 / 60)

    def test_candidate_record_is_not_mutated(self, make_record, supervisor_for, clock):
        record = make_record("Show", "10:00", 60, channels=("01",))
        captures = FakeCaptures(clock, survive_minutes=[3])
        supervisor = supervisor_for(record, captures=captures)

        supervisor.capture_stream("t")

        assert record.channels[0].ratio == 0.0
        assert record.best_channel_set is False
        assert supervisor.record.best_channel_set is True

    def test_segment_files_are_numbered(self, make_record, supervisor_for, clock, tmp_path):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        supervisor = supervisor_for(record, captures=FakeCaptures(clock, survive_minutes=[1, 1]))

        supervisor.capture_stream("t")

        assert supervisor.segments == [tmp_path / "Show0.ts", tmp_path / "Show1.ts", tmp_path / "Show2.ts"]


class TestFinalize:
    """Tests for concatenation, remux and relocation"""

    def make_segments(self, supervisor, tmp_path, count):
        supervisor.segments = []
        for i in range(count):
            path = tmp_path / f"Show{i}.ts"
            path.write_bytes(b"ts")
            supervisor.segments.append(path)

    def test_three_segments_concat_mux_and_cleanup(self, make_record, supervisor_for, tmp_path):
        runner = fake_ffmpeg()
        supervisor = supervisor_for(make_record("Show", "10:00", 60), runner=runner)
        self.make_segments(supervisor, tmp_path, 3)

        final = supervisor.finalize()

        assert final == tmp_path / "Show.mp4"
        assert final.exists()
        concat, mux = runner.calls
        assert concat[0] == "concat"
        assert concat[1] == "|".join(str(tmp_path / f"Show{i}.ts") for i in range(3))
        assert mux[1] == str(tmp_path / "Show.ts")
        assert mux[2] == "Show"
        assert not any((tmp_path / f"Show{i}.ts").exists() for i in range(3))
        assert not (tmp_path / "Show.ts").exists()

    def test_single_segment_skips_concat(self, make_record, supervisor_for, tmp_path):
        runner = fake_ffmpeg()
        supervisor = supervisor_for(make_record("Show", "10:00", 60), runner=runner)
        self.make_segments(supervisor, tmp_path, 1)

        final = supervisor.finalize()

        assert len(runner.calls) == 1
        assert runner.calls[0][0] == "mux"
        assert final.exists()
        assert not (tmp_path / "Show0.ts").exists()

    def test_missing_mux_output_keeps_segments(self, make_record, supervisor_for, tmp_path):
        supervisor = supervisor_for(make_record("Show", "10:00", 60), runner=fake_ffmpeg(create=False))
        self.make_segments(supervisor, tmp_path, 1)

        assert supervisor.finalize() is None
        assert (tmp_path / "Show0.ts").exists()

    def test_missing_concat_output_keeps_segments_and_skips_mux(self, make_record, supervisor_for, tmp_path):
        runner = fake_ffmpeg(create=False)
        supervisor = supervisor_for(make_record("Show", "10:00", 60), runner=runner)
        self.make_segments(supervisor, tmp_path, 3)

        assert supervisor.finalize() is None
        assert len(runner.calls) == 1
        assert all((tmp_path / f"Show{i}.ts").exists() for i in range(3))

    def test_mux_without_segments_does_nothing(self, make_record, supervisor_for):
        runner = fake_ffmpeg()
        supervisor = supervisor_for(make_record("Show", "10:00", 60), runner=runner)
        supervisor.segments = [Path("/nonexistent/Show0.ts")]

        assert supervisor.finalize() is None
        assert runner.calls == []

    def test_existing_output_is_not_overwritten(self, make_record, supervisor_for, tmp_path):
        (tmp_path / "Show.mp4").write_bytes(b"older capture")
        supervisor = supervisor_for(make_record("Show", "10:00", 60))
        self.make_segments(supervisor, tmp_path, 1)

        supervisor.finalize()

        kept = [p for p in tmp_path.glob("Show_*.mp4")]
        assert len(kept) == 1
        assert kept[0].read_bytes() == b"older capture"

    def test_moves_to_nas_renaming_existing(self, make_record, supervisor_for, tmp_path):
        nas = tmp_path / "nas"
        nas.mkdir()
        (nas / "Show.mp4").write_bytes(b"older")
        supervisor = supervisor_for(make_record("Show", "10:00", 60), nas_path=str(nas))
        self.make_segments(supervisor, tmp_path, 1)

        final = supervisor.finalize()

        assert final == nas / "Show.mp4"
        assert final.read_bytes() == b"out"
        assert len(list(nas.glob("Show_*.mp4"))) == 1
        assert not (tmp_path / "Show.mp4").exists()


class TestRun:
    """Tests for the full session"""

    def test_full_session(self, make_record, supervisor_for, clock, tmp_path):
        record = make_record("Show", "10:05", 60, channels=("01", "02"))
        captures = FakeCaptures(clock, survive_minutes=[5])
        history = MagicMock()
        supervisor = supervisor_for(record, captures=captures, history=history)

        supervisor.run()

        assert supervisor.state == CaptureState.DONE
        assert supervisor.outcome == "completed"
        assert supervisor.final_path == tmp_path / "Show.mp4"
        assert supervisor.final_path.exists()
        assert (tmp_path / "logs" / "ShowLog.txt").exists()
        history.flush.assert_called_once()

        with get_session() as session:
            log = session.query(CaptureLog).one()
            assert log.status == "completed"
            assert log.segments == 2
            assert log.channel == "02"
            assert log.ended_at == record.end_dt

    def test_auth_failure_is_contained(self, make_record, supervisor_for, clock):
        supervisor = supervisor_for(make_record("Show", "10:00", 60))

        def fail():
            raise AuthenticationError("bad credentials")
        supervisor.authenticator = fail

        supervisor.run()

        assert supervisor.state == CaptureState.DONE
        assert supervisor.outcome == "failed"
        with get_session() as session:
            log = session.query(CaptureLog).one()
            assert log.status == "failed"
            assert log.error_message == "bad credentials"

    def test_no_channels_is_contained(self, make_record, supervisor_for):
        supervisor = supervisor_for(make_record("Show", "10:00", 60, channels=()))
        supervisor.run()
        assert supervisor.outcome == "failed"

    def test_session_log_records_deadline_stop(self, make_record, supervisor_for, clock, tmp_path):
        record = make_record("Show", "10:00", 60, channels=("01", "02"))
        supervisor = supervisor_for(record, captures=FakeCaptures(clock, survive_minutes=[5]))

        supervisor.run()

        text = (tmp_path / "logs" / "ShowLog.txt").read_text()
        assert "Switching to channel 02" in text
        assert "Capture on channel 02 reached the end time and was stopped" in text

    def test_same_title_sessions_keep_separate_logs(self, make_record, supervisor_for, tmp_path):
        record = make_record("Show", "10:00", 60)
        first = supervisor_for(record)
        second = supervisor_for(record)
        second.log_dir = tmp_path / "other_logs"

        first._open_session_log()
        second._open_session_log()
        first.log.info("first session line")
        second.log.info("second session line")
        first._close_session_log()
        second._close_session_log()

        first_text = (tmp_path / "logs" / "ShowLog.txt").read_text()
        second_text = (tmp_path / "other_logs" / "ShowLog.txt").read_text()
        assert "first session line" in first_text
        assert "second session line" not in first_text
        assert "second session line" in second_text
        assert "first session line" not in second_text
