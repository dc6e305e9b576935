"""
Post-call transcription of recorded audio with OpenAI Whisper.
"""
from pathlib import Path
from typing import Union

import structlog
from openai import AsyncOpenAI

logger = structlog.get_logger(__name__)


class TranscriptionService:
    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1", language: str = "en"):
        self.client = client
        self.model = model
        self.language = language

    async def transcribe(self, file_path: Union[str, Path]) -> str:
        path = Path(file_path)
        with path.open("rb") as f:
            transcription = await self.client.audio.transcriptions.create(
                file=f,
                model=self.model,
                language=self.language,
            )
        logger.info("Transcription completed", file=path.name, chars=len(transcription.text))
        return transcription.text
