import httpx

from newsbrief.llm.base import UpstreamAPIError
from newsbrief.observability.logger import get_logger

log = get_logger("llm.google_tts")

LANGUAGE_CODE = "ja-JP"
VOICES = {
    "male": "ja-JP-Neural2-C",
    "female": "ja-JP-Neural2-B",
}


def voice_name(voice: str) -> str:
    return VOICES["male"] if voice == "male" else VOICES["female"]


class GoogleTTSProvider:
    name = "google_tts"

    def __init__(self, api_key: str, base_url: str, timeout_seconds: float = 90.0, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_seconds
        self.transport = transport

    async def synthesize(self, text: str, voice: str, speaking_rate: float = 0.95) -> str:
        """Return base64 MP3 audio for ``text``. Transport errors propagate untouched."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/text:synthesize",
                params={"key": self.api_key},
                json={
                    "input": {"text": text},
                    "voice": {"languageCode": LANGUAGE_CODE, "name": voice_name(voice)},
                    "audioConfig": {"audioEncoding": "MP3", "speakingRate": speaking_rate},
                },
            )

        if not response.is_success:
            reason = f"HTTP {response.status_code}"
            try:
                reason = response.json().get("error", {}).get("message") or reason
            except (ValueError, AttributeError):
                pass
            raise UpstreamAPIError(reason, status_code=response.status_code)

        audio = response.json().get("audioContent")
        if not audio:
            raise UpstreamAPIError("TTS response contained no audio.", status_code=response.status_code)
        return audio
