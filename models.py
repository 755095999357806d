"""Core data models for the wizard."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class StepEvent(str, Enum):
    ACTIVATE = "activate"
    COMPLETE = "complete"
    COMPLETE_NO_ADVANCE = "complete_no_advance"
    FAIL = "fail"
    DEMOTE = "demote"


class StepEffect(str, Enum):
    FOCUS = "focus"
    DEMOTE_FOLLOWING = "demote_following"
    RESET = "reset"
    ADVANCE = "advance"


class MessageKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class RecognitionKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    STARTED = "started"
    CLOSED = "closed"


class ChatRole(str, Enum):
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


@dataclass
class StepState:
    number: int
    name: str
    required_fields: tuple[str, ...] = ()
    status: StepStatus = StepStatus.PENDING
    message: str = ""
    message_kind: MessageKind = MessageKind.INFO


@dataclass(frozen=True)
class AudioBlock:
    """One block posted by the capture callback."""

    samples: np.ndarray
    peak: float
    rms: float
    index: int = 0


@dataclass
class AudioAnalysis:
    max_amplitude: float
    rms_level: float
    non_zero_samples: int
    total_samples: int
    non_zero_percentage: float
    db_level: float
    duration_s: float


@dataclass
class RecordingArtifact:
    data: bytes
    sample_rate: int
    duration_s: float
    mime_type: str = "audio/mp3"
    created_at: float = field(default_factory=time.time)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class AsyncOperation:
    op_id: str
    step: int
    issued_at: float = field(default_factory=time.time)


@dataclass
class TokenResult:
    success: bool
    token: str = ""
    expire_time: int = 0
    error: str = ""
    error_type: str = ""
    code: Optional[str] = None


@dataclass
class RecognitionResult:
    success: bool
    result: str = ""
    confidence: float = 0.0
    error: str = ""


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""
    code: str = ""
    message: str = ""
    retryable: bool = False
