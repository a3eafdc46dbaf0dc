import asyncio
import base64

from pydantic import BaseModel

from newsbrief.generation.text import split_text_by_byte_length
from newsbrief.llm.base import UpstreamAPIError, is_retryable_transport_error
from newsbrief.observability.logger import get_logger

log = get_logger("speech")

MISSING_KEY_ERROR = "GOOGLE_CLOUD_TTS_API_KEY is missing."
EMPTY_TEXT_ERROR = "TTS text is empty."


class SpeechResult(BaseModel):
    audio_base64: str | None = None
    is_demo: bool = True
    tts_error: str | None = None
    tts_calls: int = 0
    did_call: bool = False
    tts_chunks: int | None = None


class ChunkFailed(Exception):
    pass


def describe_transport_error(exc: BaseException) -> str:
    message = str(exc)[:300] or "TTS request failed."
    if exc.__cause__ is not None and str(exc.__cause__):
        message += f" ({str(exc.__cause__)[:100]})"
    if message.startswith("fetch failed") or "connect" in message.lower():
        message += " Possible network/VPN issue when calling Google TTS API."
    return message


class SpeechSynthesizer:
    """Speech for a whole script, one TTS call per byte-bounded chunk.

    Audio is returned only when every chunk succeeded; a single failing
    chunk fails the whole synthesis.
    """

    def __init__(self, provider=None, max_bytes: int = 4500, max_attempts: int = 3,
                 retry_pause_seconds: float = 3.0, sleep=asyncio.sleep):
        self.provider = provider
        self.max_bytes = max_bytes
        self.max_attempts = max_attempts
        self.retry_pause_seconds = retry_pause_seconds
        self.sleep = sleep

    @property
    def has_key(self) -> bool:
        return self.provider is not None

    async def synthesize(self, text: str, voice: str) -> SpeechResult:
        if not self.has_key:
            return SpeechResult(tts_error=MISSING_KEY_ERROR)

        chunks = split_text_by_byte_length(text, self.max_bytes)
        if not chunks:
            return SpeechResult(tts_error=EMPTY_TEXT_ERROR)

        calls = 0
        buffers: list[bytes] = []
        for index, chunk in enumerate(chunks):
            try:
                audio, used = await self._synthesize_chunk(chunk, voice)
                calls += used
            except ChunkFailed as e:
                calls += e.args[1]
                log.error("tts_chunk_failed", chunk=index, chunks=len(chunks), error=e.args[0])
                return SpeechResult(tts_error=e.args[0], tts_calls=calls, did_call=calls > 0)
            buffers.append(base64.b64decode(audio))

        log.info("tts_completed", chunks=len(chunks), calls=calls)
        return SpeechResult(
            audio_base64=base64.b64encode(b"".join(buffers)).decode("ascii"),
            is_demo=False,
            tts_calls=calls,
            did_call=calls > 0,
            tts_chunks=len(chunks),
        )

    async def _synthesize_chunk(self, chunk: str, voice: str) -> tuple[str, int]:
        """Return (base64 audio, calls made) or raise ChunkFailed(message, calls made)."""
        calls = 0
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            calls += 1
            try:
                return await self.provider.synthesize(chunk, voice), calls
            except UpstreamAPIError as e:
                raise ChunkFailed(str(e), calls) from e
            except Exception as e:
                last_error = e
                if attempt < self.max_attempts and is_retryable_transport_error(e):
                    log.warning("tts_retry", attempt=attempt, error=str(e), pause=self.retry_pause_seconds)
                    await self.sleep(self.retry_pause_seconds)
                    continue
                break
        raise ChunkFailed(describe_transport_error(last_error), calls)
