"""Shared error codes, user-facing messages and the wizard exception taxonomy."""

from __future__ import annotations

CREDENTIAL_ERROR = "CREDENTIAL_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
DEVICE_ERROR = "DEVICE_ERROR"
ENCODING_ERROR = "ENCODING_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
CLIPBOARD_ERROR = "CLIPBOARD_ERROR"
IMPORT_ERROR = "IMPORT_ERROR"

ERROR_MESSAGES = {
    CREDENTIAL_ERROR: "Credential check failed, please verify your AccessKey ID and Secret.",
    NETWORK_ERROR: "Network failed, please check your connection and retry.",
    VALIDATION_ERROR: "Required input is missing.",
    DEVICE_ERROR: "Microphone is not available.",
    ENCODING_ERROR: "Recording failed, please try again.",
    AUTH_FAILED: "API key is invalid, please check it.",
    ASR_PROTOCOL_ERROR: "Recognition response format is invalid.",
    CLIPBOARD_ERROR: "Could not access the clipboard.",
    IMPORT_ERROR: "Configuration import failed, please check the JSON format.",
}

# Device failure causes.
DEVICE_PERMISSION_DENIED = "permission_denied"
DEVICE_NOT_FOUND = "not_found"
DEVICE_NOT_SUPPORTED = "not_supported"

DEVICE_MESSAGES = {
    DEVICE_PERMISSION_DENIED: "Microphone permission denied, please allow microphone access.",
    DEVICE_NOT_FOUND: "No microphone found, please check the device connection.",
    DEVICE_NOT_SUPPORTED: "Audio capture is not supported on this system.",
}

# Error codes returned by Aliyun POP / NLS endpoints.
PROVIDER_ERROR_MESSAGES = {
    "InvalidAccessKeyId.NotFound": "AccessKey ID does not exist, please check it.",
    "SignatureDoesNotMatch": "Signature mismatch, please check the AccessKey Secret.",
    "APPKEY_NOT_EXIST": "AppKey does not exist, please check it.",
    "Forbidden": "Permission denied, make sure the AccessKey can use Intelligent Speech Interaction.",
    "40020503": "The AppKey has no permission, enable the service for it in the console.",
    "InvalidParameter": "Invalid parameter, please check the input values.",
    "InternalError": "Service internal error, please retry later.",
    "ServiceUnavailable": "Service temporarily unavailable, please retry later.",
}

# Substrings of raw credential failures and their friendly rewrite, first match wins.
CREDENTIAL_REWRITES = (
    ("Specified signature is not matched", "AccessKey Secret is wrong, please check that it was copied correctly."),
    ("InvalidAccessKeyId", "AccessKey ID does not exist, please check it."),
    ("SignatureDoesNotMatch", "AccessKey Secret is wrong, please copy the correct secret again."),
    ("InvalidTimeStamp", "System time is wrong, please check the device clock."),
    ("Forbidden", "AccessKey lacks permission, please check the RAM user policy."),
)

GENERIC_CREDENTIAL_RETRY = "Verification failed, please check the AccessKey ID and Secret."


class WizardError(Exception):
    """Base exception carrying a stable error code."""

    def __init__(self, message: str = "", code: str = "") -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, "Unexpected error")
        super().__init__(self.message)


class CredentialError(WizardError):
    def __init__(self, message: str = "", provider_code: str | None = None) -> None:
        self.provider_code = provider_code
        super().__init__(message, CREDENTIAL_ERROR)


class InvalidApiKey(CredentialError):
    """The LLM endpoint answered 401."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES[AUTH_FAILED])
        self.code = AUTH_FAILED


class NetworkError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, NETWORK_ERROR)


class ValidationError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, VALIDATION_ERROR)


class DeviceError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, DEVICE_ERROR)


class DeviceUnavailable(DeviceError):
    def __init__(self, cause: str = DEVICE_NOT_SUPPORTED, detail: str = "") -> None:
        self.cause = cause
        self.detail = detail
        super().__init__(DEVICE_MESSAGES.get(cause, ERROR_MESSAGES[DEVICE_ERROR]))


class RecordingError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, ENCODING_ERROR)


class AlreadyRecording(RecordingError):
    def __init__(self) -> None:
        super().__init__("A recording is already in progress.")


class EncodingError(RecordingError):
    pass


class EmptyCapture(EncodingError):
    def __init__(self) -> None:
        super().__init__("No audio data was captured.")


class ClipboardError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, CLIPBOARD_ERROR)


class ConfigImportError(WizardError):
    def __init__(self, message: str = "") -> None:
        super().__init__(message, IMPORT_ERROR)


class InvalidTransition(WizardError):
    """A step event has no entry in the transition table."""


def provider_message(error_code: str) -> str:
    """Map an Aliyun error code to a user-facing message."""
    return PROVIDER_ERROR_MESSAGES.get(error_code, f"Unknown error: {error_code}")


def friendly_credential_error(raw: str | None, max_length: int = 100) -> str:
    """Rewrite a raw credential failure into something a user can act on."""
    message = raw or "Unknown error"
    for needle, friendly in CREDENTIAL_REWRITES:
        if needle in message:
            return friendly
    if len(message) > max_length:
        return GENERIC_CREDENTIAL_RETRY
    return message
