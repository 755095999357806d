"""Client for the backend's streaming recognition websocket.

The backend bridges this channel to the provider's own streaming protocol.
Client frames are JSON ``{"type": "start" | "audio" | "stop"}``; server frames
carry ``started``, ``partial``, ``final``, ``error`` and ``closed``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from errors import ASR_PROTOCOL_ERROR, NETWORK_ERROR, NetworkError, WizardError
from models import RecognitionEvent, RecognitionKind

logger = logging.getLogger(__name__)

_KINDS = {kind.value: kind for kind in RecognitionKind}


def parse_event(raw: Any) -> Optional[RecognitionEvent]:
    """Map one server frame to an event; unknown types return None."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return RecognitionEvent(
            kind=RecognitionKind.ERROR.value,
            code=ASR_PROTOCOL_ERROR,
            message="Malformed frame from recognition service",
        )
    if not isinstance(data, dict):
        return RecognitionEvent(
            kind=RecognitionKind.ERROR.value,
            code=ASR_PROTOCOL_ERROR,
            message="Malformed frame from recognition service",
        )

    kind = _KINDS.get(str(data.get("type")))
    if kind is None:
        logger.warning("Ignoring unknown streaming frame type %r", data.get("type"))
        return None

    message = data.get("message", "")
    if not isinstance(message, str):
        message = json.dumps(message, ensure_ascii=False)
    return RecognitionEvent(
        kind=kind.value,
        text=str(data.get("text") or ""),
        code=ASR_PROTOCOL_ERROR if kind is RecognitionKind.ERROR else "",
        message=message,
    )


class StreamingRecognizer:
    """One streaming session: ``start``, feed ``send_audio``, ``stop``, read ``events``."""

    def __init__(
        self,
        url: str,
        connect: Callable[..., Any] = websockets.connect,
        open_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._connect = connect
        self._open_timeout = open_timeout
        self._ws: Any = None
        self._transcript = ""

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def transcript(self) -> str:
        """Latest final text, or the latest partial if none is final yet."""
        return self._transcript

    async def start(self, token: str, app_key: str) -> None:
        if self._ws is not None:
            raise WizardError("Streaming session already open", ASR_PROTOCOL_ERROR)
        try:
            self._ws = await self._connect(self._url, open_timeout=self._open_timeout)
        except (OSError, WebSocketException, TimeoutError) as exc:
            logger.error("Cannot open streaming channel %s: %s", self._url, exc)
            raise NetworkError(f"Cannot open streaming channel: {exc}") from exc
        self._transcript = ""
        logger.info("Streaming channel open, starting recognition")
        await self._send({"type": "start", "token": token, "appKey": app_key})

    async def send_audio(self, pcm16: bytes) -> None:
        if self._ws is None:
            raise WizardError("Streaming session is not open", ASR_PROTOCOL_ERROR)
        await self._send({"type": "audio", "data": list(pcm16)})

    async def stop(self) -> None:
        if self._ws is None:
            return
        await self._send({"type": "stop"})

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Streaming channel closed")

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        """Yield events until the server reports ``closed`` or the socket ends."""
        if self._ws is None:
            raise WizardError("Streaming session is not open", ASR_PROTOCOL_ERROR)
        try:
            async for raw in self._ws:
                event = parse_event(raw)
                if event is None:
                    continue
                if event.kind in (RecognitionKind.PARTIAL.value, RecognitionKind.FINAL.value):
                    self._transcript = event.text
                yield event
                if event.kind == RecognitionKind.CLOSED.value:
                    return
        except ConnectionClosedError as exc:
            logger.error("Streaming channel dropped: %s", exc)
            yield RecognitionEvent(
                kind=RecognitionKind.ERROR.value,
                code=NETWORK_ERROR,
                message="Streaming connection lost",
                retryable=True,
            )

    async def _send(self, message: dict) -> None:
        try:
            await self._ws.send(json.dumps(message))
        except WebSocketException as exc:
            logger.error("Streaming send failed: %s", exc)
            raise NetworkError(f"Streaming send failed: {exc}") from exc
