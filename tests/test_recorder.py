import numpy as np
import pytest

from kreyol import recorder as recorder_module
from kreyol.recorder import AudioRecorder, RecorderError


class FakeStream:
    def __init__(self, samplerate, channels, callback):
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def feed(self, *values):
        self.callback(np.array(values, dtype="float32").reshape(-1, 1), len(values), None, None)


def _recorder(tmp_path, monkeypatch, permitted=True):
    streams = []
    written = []

    def factory(samplerate, channels, callback):
        stream = FakeStream(samplerate, channels, callback)
        streams.append(stream)
        return stream

    def fake_write(path, audio, samplerate):
        path.write_bytes(b"RIFF")
        written.append((path, audio, samplerate))

    monkeypatch.setattr(recorder_module, "_write_audio", fake_write)
    rec = AudioRecorder(
        directory=tmp_path / "recordings",
        stream_factory=factory,
        permission_check=lambda: permitted,
    )
    return rec, streams, written


def test_start_and_stop_writes_captured_audio(tmp_path, monkeypatch):
    rec, streams, written = _recorder(tmp_path, monkeypatch)

    path = rec.start()
    assert rec.is_recording
    assert streams[0].started
    assert streams[0].samplerate == 44100
    streams[0].feed(0.1, 0.2)
    streams[0].feed(0.3)

    result = rec.stop()

    assert result == path
    assert path.exists()
    assert path.suffix == ".wav"
    assert not rec.is_recording
    assert streams[0].closed
    (_, audio, samplerate) = written[0]
    assert samplerate == 44100
    assert audio.shape == (3, 1)


def test_stop_without_audio_returns_none(tmp_path, monkeypatch):
    rec, _, written = _recorder(tmp_path, monkeypatch)

    rec.start()
    assert rec.stop() is None
    assert written == []


def test_stop_when_idle_returns_none(tmp_path, monkeypatch):
    rec, _, _ = _recorder(tmp_path, monkeypatch)
    assert rec.stop() is None


def test_starting_again_discards_previous_recording(tmp_path, monkeypatch):
    rec, streams, _ = _recorder(tmp_path, monkeypatch)

    first = rec.start()
    streams[0].feed(0.5)
    second = rec.start()

    assert first != second
    assert streams[0].closed
    assert streams[1].started
    streams[1].feed(0.25)
    assert rec.stop() == second


def test_interrupt_drops_recording(tmp_path, monkeypatch):
    rec, streams, written = _recorder(tmp_path, monkeypatch)

    rec.start()
    streams[0].feed(0.1)
    rec.interrupt()

    assert not rec.is_recording
    assert rec.stop() is None
    assert written == []


def test_paths_are_unique(tmp_path):
    directory = tmp_path / "recordings"
    paths = {recorder_module.recording_path(directory) for _ in range(20)}
    assert len(paths) == 20


def test_default_directory_follows_module_setting(isolated_home):
    rec = AudioRecorder(stream_factory=FakeStream, permission_check=lambda: True)
    path = rec.start()
    assert path.parent == isolated_home / "recordings"
    rec.interrupt()


def test_permission(tmp_path, monkeypatch):
    granted, _, _ = _recorder(tmp_path, monkeypatch, permitted=True)
    denied, _, _ = _recorder(tmp_path, monkeypatch, permitted=False)
    assert granted.request_permission() is True
    assert denied.request_permission() is False


def test_permission_check_failure_counts_as_denied(tmp_path):
    def broken():
        raise RuntimeError("no sounddevice")

    rec = AudioRecorder(directory=tmp_path, stream_factory=FakeStream, permission_check=broken)
    assert rec.request_permission() is False


class PortAudioError(Exception):
    pass


def test_stream_failure_is_reported_as_recorder_error(tmp_path):
    def no_device(samplerate, channels, callback):
        raise PortAudioError("Error querying device -1")

    rec = AudioRecorder(directory=tmp_path, stream_factory=no_device, permission_check=lambda: True)

    with pytest.raises(RecorderError, match="Could not open the microphone"):
        rec.start()
    assert not rec.is_recording
    assert rec.stop() is None


def test_write_failure_removes_partial_file(tmp_path, monkeypatch):
    rec, streams, _ = _recorder(tmp_path, monkeypatch)

    def broken_write(path, audio, samplerate):
        path.write_bytes(b"RI")
        raise OSError("disk full")

    monkeypatch.setattr(recorder_module, "_write_audio", broken_write)
    path = rec.start()
    streams[0].feed(0.1)

    with pytest.raises(RecorderError, match="Could not save the recording"):
        rec.stop()
    assert not path.exists()
    assert not rec.is_recording
