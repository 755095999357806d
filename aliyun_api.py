"""Client for the Aliyun token and recognition backend endpoints.

Failures never raise: every call returns a ``TokenResult`` or
``RecognitionResult`` with ``success=False`` and a message suitable for the
step status line.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from config import mask_secret
from models import RecognitionResult, TokenResult

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.9
NETWORK_MESSAGE = "Network problem: connection failed, please check the network or retry later."
UNREACHABLE_MESSAGE = "Network problem: cannot reach the backend service, please check the network."


class AliyunSpeechClient:
    def __init__(
        self,
        base_url: str,
        token_path: str = "/get-token",
        recognize_path: str = "/recognize-audio",
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_url = f"{self._base_url}{token_path}"
        self._recognize_url = f"{self._base_url}{recognize_path}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._token: Optional[str] = None
        self._expire_time: Optional[int] = None
        self._credentials: dict[str, str] = {}

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Token
    # ------------------------------------------------------------------

    async def validate_credentials(
        self, app_key: str, access_key_id: str, access_key_secret: str
    ) -> TokenResult:
        """Exchange AccessKey credentials for an NLS token."""
        logger.info("Requesting NLS token for AccessKey %s", mask_secret(access_key_id) or "<short>")
        try:
            response = await self._client.post(
                self._token_url,
                json={
                    "appKey": app_key,
                    "accessKeyId": access_key_id,
                    "accessKeySecret": access_key_secret,
                },
            )
        except httpx.ConnectError as exc:
            logger.error("Token endpoint unreachable: %s", exc)
            return TokenResult(success=False, error=UNREACHABLE_MESSAGE, error_type="network")
        except httpx.HTTPError as exc:
            logger.error("Token request failed: %s", exc)
            return TokenResult(success=False, error=NETWORK_MESSAGE, error_type="network")

        try:
            result = response.json()
        except ValueError:
            logger.error("Token endpoint returned non-JSON (HTTP %s)", response.status_code)
            return TokenResult(
                success=False,
                error=f"Unexpected response from token service (HTTP {response.status_code})",
                error_type="network",
            )
        if not isinstance(result, dict):
            logger.error("Token endpoint returned a non-object body (HTTP %s)", response.status_code)
            return TokenResult(
                success=False,
                error=f"Unexpected response from token service (HTTP {response.status_code})",
                error_type="network",
            )

        if result.get("success") and result.get("token"):
            self._token = str(result["token"])
            self._expire_time = int(result.get("expireTime") or 0)
            self._credentials = {
                "appKey": app_key,
                "accessKeyId": access_key_id,
                "accessKeySecret": access_key_secret,
            }
            logger.info("Token acquired, expires at %s", self._expire_time)
            return TokenResult(success=True, token=self._token, expire_time=self._expire_time)

        logger.error("Token validation failed: %s", result.get("error"))
        return TokenResult(
            success=False,
            error=str(result.get("error") or "Failed to obtain token"),
            error_type=str(result.get("errorType") or "credential"),
            code=result.get("code"),
        )

    def is_token_valid(self, now: Optional[float] = None) -> bool:
        if not self._token or not self._expire_time:
            return False
        current = int(now if now is not None else time.time())
        return current < self._expire_time

    def current_token(self) -> Optional[str]:
        return self._token if self.is_token_valid() else None

    def clear_token(self) -> None:
        self._token = None
        self._expire_time = None

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    async def recognize_speech(
        self, pcm16: bytes, sample_rate: int = 16000, audio_format: str = "pcm"
    ) -> RecognitionResult:
        token = self.current_token()
        if not token:
            return RecognitionResult(
                success=False, error="Token is invalid, please verify the Aliyun credentials first"
            )

        logger.info("Sending %d bytes of %s audio for recognition", len(pcm16), audio_format)
        try:
            response = await self._client.post(
                self._recognize_url,
                params={"t": int(time.time() * 1000)},
                headers={"Cache-Control": "no-cache"},
                json={
                    "token": token,
                    "audioData": list(pcm16),
                    "format": audio_format,
                    "sampleRate": sample_rate,
                    "appKey": self._credentials.get("appKey", ""),
                    "accessKeyId": self._credentials.get("accessKeyId", ""),
                    "accessKeySecret": self._credentials.get("accessKeySecret", ""),
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Recognition request failed: %s", exc)
            return RecognitionResult(success=False, error=NETWORK_MESSAGE)

        try:
            result = response.json()
        except ValueError:
            result = None

        if response.is_error:
            detail = result.get("error") if isinstance(result, dict) else None
            logger.error("Recognition endpoint HTTP %s: %s", response.status_code, detail)
            return RecognitionResult(
                success=False, error=str(detail or f"HTTP error! status: {response.status_code}")
            )
        if not isinstance(result, dict):
            return RecognitionResult(success=False, error="Recognition response format is invalid.")

        if result.get("success"):
            return RecognitionResult(
                success=True,
                result=str(result.get("result") or ""),
                confidence=float(result.get("confidence") or DEFAULT_CONFIDENCE),
            )
        return RecognitionResult(success=False, error=str(result.get("error") or "Recognition failed"))
