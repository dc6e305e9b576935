"""
Call recording: turns the raw μ-law buffers of a call into playable files.
"""
import asyncio
import audioop
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
from pydub import AudioSegment

logger = structlog.get_logger(__name__)

# Twilio Media Streams audio: 8 kHz mono G.711 μ-law.
SAMPLE_RATE = 8000
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per PCM16 sample after decoding
BITRATE = "64k"


@dataclass
class RecordingPaths:
    incoming_path: Optional[Path]
    outgoing_path: Optional[Path]


class RecordingService:
    """Finalizes per-stream audio buffers into files under recordings_dir."""

    def __init__(self, recordings_dir: str, audio_format: str = "mp3"):
        self.recordings_dir = Path(recordings_dir)
        self.audio_format = audio_format

    def ensure_recordings_dir(self) -> Path:
        if not self.recordings_dir.exists():
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created recordings directory", path=str(self.recordings_dir))
        return self.recordings_dir

    @staticmethod
    def to_segment(ulaw: bytes) -> AudioSegment:
        pcm = audioop.ulaw2lin(ulaw, SAMPLE_WIDTH)
        return AudioSegment(data=pcm, sample_width=SAMPLE_WIDTH, frame_rate=SAMPLE_RATE, channels=CHANNELS)

    def _export(self, ulaw: bytes, path: Path) -> Path:
        exported = self.to_segment(ulaw).export(str(path), format=self.audio_format, bitrate=BITRATE)
        exported.close()
        return path

    def save_recording(self, stream_sid: str, incoming: bytes, outgoing: bytes) -> RecordingPaths:
        """Write one file per non-empty track. Blocking; see finalize()."""
        logger.info("Saving recording", stream_sid=stream_sid,
                    incoming_bytes=len(incoming), outgoing_bytes=len(outgoing))
        directory = self.ensure_recordings_dir()
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")

        paths = RecordingPaths(incoming_path=None, outgoing_path=None)
        if incoming:
            paths.incoming_path = self._export(
                incoming, directory / f"{stream_sid}_incoming_{timestamp}.{self.audio_format}"
            )
        if outgoing:
            paths.outgoing_path = self._export(
                outgoing, directory / f"{stream_sid}_outgoing_{timestamp}.{self.audio_format}"
            )
        logger.info("Recordings saved", stream_sid=stream_sid,
                    incoming=str(paths.incoming_path), outgoing=str(paths.outgoing_path))
        return paths

    async def finalize(self, stream_sid: str, incoming: bytes, outgoing: bytes) -> RecordingPaths:
        """Encodes in a worker thread."""
        return await asyncio.to_thread(self.save_recording, stream_sid, bytes(incoming), bytes(outgoing))
