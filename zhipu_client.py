"""Zhipu BigModel chat-completion client."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from errors import ASR_PROTOCOL_ERROR, InvalidApiKey, NetworkError, WizardError

logger = logging.getLogger(__name__)


class ZhipuChatClient:
    def __init__(
        self,
        url: str = "https://open.bigmodel.cn/api/paas/v4/chat/completions",
        model: str = "glm-4.5-flash",
        temperature: float = 0.6,
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._model = model
        self._temperature = temperature
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(self, api_key: str, messages: list[dict]) -> str:
        """Send one non-streaming completion request and return the reply text.

        Raises:
            InvalidApiKey: the endpoint answered 401.
            NetworkError: transport failure or any other HTTP error status.
            WizardError: the body is not the expected JSON shape.
        """
        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "stream": False,
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        try:
            response = await self._client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Zhipu request failed: %s", exc)
            raise NetworkError(f"Zhipu request failed: {exc}") from exc

        if response.status_code == 401:
            logger.error("Zhipu rejected the API key")
            raise InvalidApiKey()
        if response.is_error:
            body = response.text[:500]
            logger.error("Zhipu HTTP %s: %s", response.status_code, body)
            raise NetworkError(f"API call failed: {response.status_code} - {body}")

        try:
            data = response.json()
        except ValueError as exc:
            raise WizardError("Zhipu response is not JSON", ASR_PROTOCOL_ERROR) from exc

        if not isinstance(data, dict):
            raise WizardError("Zhipu response is not a JSON object", ASR_PROTOCOL_ERROR)
        choices = data.get("choices") or [{}]
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise WizardError("Zhipu response has malformed choices", ASR_PROTOCOL_ERROR)
        message = choices[0].get("message") or {}
        if not isinstance(message, dict):
            raise WizardError("Zhipu response has a malformed message", ASR_PROTOCOL_ERROR)
        return str(message.get("content") or message.get("reasoning_content") or "")
