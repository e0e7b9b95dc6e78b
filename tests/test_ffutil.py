"""Unit tests for ffutil — subprocess wrappers around ffmpeg/ffprobe."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cliptrail.ffutil import (
    EncoderError,
    FFmpegNotFoundError,
    FrameExtractionError,
    FrameService,
    ProbeError,
    ToolPaths,
)


# ---------------------------------------------------------------------------
# ToolPaths / check_tools
# ---------------------------------------------------------------------------

class TestToolPaths:
    def test_defaults(self):
        tools = ToolPaths()
        assert tools.ffmpeg == "ffmpeg"
        assert tools.ffprobe == "ffprobe"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CLIPTRAIL_FFMPEG", "/opt/bin/ffmpeg")
        monkeypatch.delenv("CLIPTRAIL_FFPROBE", raising=False)
        tools = ToolPaths.from_env()
        assert tools.ffmpeg == "/opt/bin/ffmpeg"
        assert tools.ffprobe == "ffprobe"


class TestCheckTools:
    @patch("cliptrail.ffutil.shutil.which", return_value=None)
    def test_missing(self, mock_which):
        with pytest.raises(FFmpegNotFoundError, match="not found"):
            FrameService().check_tools()

    @patch("cliptrail.ffutil.shutil.which", return_value="/usr/bin/x")
    def test_present(self, mock_which):
        FrameService(ToolPaths("my-ffmpeg", "my-ffprobe")).check_tools()
        assert [c.args[0] for c in mock_which.call_args_list] == ["my-ffmpeg", "my-ffprobe"]


# ---------------------------------------------------------------------------
# probe (mocked subprocess)
# ---------------------------------------------------------------------------

class TestProbe:
    @patch("cliptrail.ffutil.subprocess.run")
    def test_basic(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout=json.dumps({"format": {"duration": "60.250000"}}),
        )
        result = FrameService().probe(Path("video.mp4"))
        assert result.duration == 60.25

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "ffprobe"
        assert cmd[-1] == "video.mp4"
        assert "-show_entries" in cmd

    @patch("cliptrail.ffutil.subprocess.run")
    def test_uses_configured_binary(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0, stdout=json.dumps({"format": {"duration": "1"}})
        )
        FrameService(ToolPaths(ffprobe="/opt/ffprobe")).probe(Path("v.mp4"))
        assert mock_run.call_args[0][0][0] == "/opt/ffprobe"

    @patch("cliptrail.ffutil.subprocess.run")
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="moov atom not found")
        with pytest.raises(ProbeError, match="moov atom not found"):
            FrameService().probe(Path("video.mp4"))

    @patch("cliptrail.ffutil.subprocess.run")
    def test_unparsable_duration(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0, stdout=json.dumps({"format": {"duration": "N/A"}})
        )
        with pytest.raises(ProbeError, match="could not parse duration"):
            FrameService().probe(Path("video.mp4"))

    @patch("cliptrail.ffutil.subprocess.run")
    def test_missing_duration(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps({"format": {}}))
        with pytest.raises(ProbeError):
            FrameService().probe(Path("video.mp4"))


# ---------------------------------------------------------------------------
# extract_frame (mocked subprocess)
# ---------------------------------------------------------------------------

class TestExtractFrame:
    @patch("cliptrail.ffutil.subprocess.run")
    def test_basic(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=b"\xff\xd8jpeg")
        data = FrameService().extract_frame(Path("video.mp4"), 12.5)
        assert data == b"\xff\xd8jpeg"

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-ss") + 1] == "12.5"
        assert cmd[cmd.index("-i") + 1] == "video.mp4"
        assert cmd[cmd.index("-frames:v") + 1] == "1"

    @patch("cliptrail.ffutil.subprocess.run")
    def test_failure_raises(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout=b"", stderr=b"Invalid data")
        with pytest.raises(FrameExtractionError, match="Invalid data"):
            FrameService().extract_frame(Path("video.mp4"), 0.0)

    @patch("cliptrail.ffutil.subprocess.run")
    def test_empty_output_falls_back_to_last_frame(self, mock_run):
        mock_run.side_effect = [
            MagicMock(returncode=0, stdout=b""),
            MagicMock(returncode=0, stdout=b"last"),
        ]
        data = FrameService().extract_frame(Path("video.mp4"), 99.0)
        assert data == b"last"
        fallback_cmd = mock_run.call_args_list[1][0][0]
        assert "-sseof" in fallback_cmd

    @patch("cliptrail.ffutil.subprocess.run")
    def test_fallback_empty_raises(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=b"")
        with pytest.raises(FrameExtractionError, match="did not produce frame data"):
            FrameService().extract_frame(Path("video.mp4"), 99.0)
        assert mock_run.call_count == 2


# ---------------------------------------------------------------------------
# Mp4FrameEncoder (mocked Popen)
# ---------------------------------------------------------------------------

def _mock_proc(returncode=0, stderr=b""):
    proc = MagicMock()
    proc.stdin.closed = False
    proc.stderr.read.return_value = stderr
    proc.wait.return_value = returncode
    return proc


class TestMp4FrameEncoder:
    @patch("cliptrail.ffutil.subprocess.Popen")
    def test_command_shape(self, mock_popen):
        mock_popen.return_value = _mock_proc()
        FrameService().open_encoder(Path("out.mp4"), 30)

        cmd = mock_popen.call_args[0][0]
        assert cmd[cmd.index("-r") + 1] == "30"
        assert cmd[cmd.index("-f") + 1] == "image2pipe"
        assert cmd[-1] == "out.mp4"
        assert mock_popen.call_args[1]["stdin"] == subprocess.PIPE

    @patch("cliptrail.ffutil.subprocess.Popen")
    def test_encode_and_finish(self, mock_popen):
        proc = _mock_proc()
        mock_popen.return_value = proc
        enc = FrameService().open_encoder(Path("out.mp4"), 30)

        enc.encode_frame(b"frame1")
        enc.encode_frame(b"frame2")
        enc.finish()

        assert [c.args[0] for c in proc.stdin.write.call_args_list] == [b"frame1", b"frame2"]
        proc.stdin.close.assert_called_once()
        proc.wait.assert_called_once()

    @patch("cliptrail.ffutil.subprocess.Popen")
    def test_nonzero_exit_raises(self, mock_popen):
        mock_popen.return_value = _mock_proc(returncode=1, stderr=b"Unknown encoder 'libx264'")
        enc = FrameService().open_encoder(Path("out.mp4"), 30)
        with pytest.raises(EncoderError, match="libx264"):
            enc.finish()

    @patch("cliptrail.ffutil.subprocess.Popen")
    def test_broken_pipe(self, mock_popen):
        proc = _mock_proc()
        proc.stdin.write.side_effect = BrokenPipeError()
        mock_popen.return_value = proc
        enc = FrameService().open_encoder(Path("out.mp4"), 30)
        with pytest.raises(EncoderError, match="encoder exited"):
            enc.encode_frame(b"frame")

    @patch("cliptrail.ffutil.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg"))
    def test_spawn_failure(self, mock_popen):
        with pytest.raises(EncoderError, match="spawn"):
            FrameService().open_encoder(Path("out.mp4"), 30)
