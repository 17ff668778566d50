"""Client for the external speech scoring service.

The scorer is best-effort: every failure (no key, transport error, timeout,
non-2xx status, error payload) surfaces as ScoringUnavailable so the caller
can abort the submission before touching any state.
"""
import base64
import binascii
import logging
from typing import Any, Dict, Optional
import httpx
from app.config import settings
from app.errors import InvalidInput, ScoringUnavailable

logger = logging.getLogger(__name__)

SCORING_PATH = "/api/scoring/text/v9/json"


def decode_audio(audio_base64: str) -> bytes:
    """
    Decode base64 audio, dropping a ``data:audio/...;base64,`` prefix if present.

    Raises:
        InvalidInput: Audio is empty or not valid base64
    """
    if not audio_base64 or not audio_base64.strip():
        raise InvalidInput("Audio recording is required")
    payload = audio_base64.split(",", 1)[1] if audio_base64.startswith("data:") else audio_base64
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInput("Audio recording is not valid base64") from e


class SpeechScorerClient:
    """Async HTTP client for the speech scoring API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        dialect: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.SCORER_API_KEY
        self.base_url = (base_url or settings.SCORER_API_URL).rstrip("/")
        self.dialect = dialect or settings.SCORER_DIALECT
        self.timeout = timeout if timeout is not None else settings.SCORER_TIMEOUT_SECONDS
        self._transport = transport

    async def score(
        self,
        text: str,
        audio: bytes,
        user_id: str,
        question_info: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Score a recording of ``text``.

        Args:
            text: Reference text the learner read
            audio: Raw audio bytes (WAV)
            user_id: Learner identifier forwarded to the scorer
            question_info: Optional scorer-side question tag

        Returns:
            Raw scorer payload (normalized later by the evaluator)

        Raises:
            ScoringUnavailable: The scorer could not produce a score
        """
        if not self.api_key:
            raise ScoringUnavailable("Speech scorer is not configured")

        params = {"key": self.api_key, "dialect": self.dialect, "user_id": user_id}
        data = {"text": text}
        if question_info:
            data["question_info"] = question_info
        files = {"user_audio_file": ("audio.wav", audio, "audio/wav")}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}{SCORING_PATH}", params=params, data=data, files=files
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Speech scorer timed out after {self.timeout}s", extra={"learner_id": user_id})
            raise ScoringUnavailable("Speech scorer timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Speech scorer returned HTTP {e.response.status_code}",
                extra={"learner_id": user_id}
            )
            raise ScoringUnavailable(f"Speech scorer returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Speech scorer request failed: {e}", extra={"learner_id": user_id})
            raise ScoringUnavailable("Speech scorer request failed") from e
        except ValueError as e:
            logger.error("Speech scorer returned a non-JSON body", extra={"learner_id": user_id})
            raise ScoringUnavailable("Speech scorer returned an unreadable response") from e

        if not isinstance(payload, dict):
            raise ScoringUnavailable("Speech scorer returned an unexpected payload")
        status = payload.get("status")
        if status not in (None, "success", 200):
            short_message = payload.get("short_message") or payload.get("message") or status
            logger.warning(f"Speech scorer reported an error: {short_message}", extra={"learner_id": user_id})
            raise ScoringUnavailable(f"Speech scorer error: {short_message}")

        logger.debug("Speech scorer returned a score", extra={"learner_id": user_id})
        return payload


_scorer: Optional[SpeechScorerClient] = None


def get_scorer() -> SpeechScorerClient:
    """FastAPI dependency returning the shared scorer client."""
    global _scorer
    if _scorer is None:
        _scorer = SpeechScorerClient()
    return _scorer
