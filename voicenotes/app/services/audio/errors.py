from typing import Iterable, Optional


class VoiceServiceError(Exception):
    """Base class for failures raised by recognition and capture services."""

    kind = "internal"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class PermissionDeniedError(VoiceServiceError):
    """Microphone access was refused. Fatal to the session."""

    kind = "permission"

    def __init__(self, message: str = "Microphone access denied", code: Optional[str] = "not-allowed") -> None:
        super().__init__(message, code)


class DeviceUnavailableError(VoiceServiceError):
    """No usable input device, or the device failed to open. Fatal to the session."""

    kind = "device"

    def __init__(self, message: str = "Audio input device unavailable", code: Optional[str] = "device-unavailable") -> None:
        super().__init__(message, code)


class RecognitionEngineError(VoiceServiceError):
    """Error reported by a running recognition stream.

    Attributes:
        code: Engine error code such as 'no-speech', 'aborted' or 'network'.
    """

    kind = "recognition"

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Speech recognition error: {code}", code)

    def is_transient(self, transient_codes: Iterable[str]) -> bool:
        return self.code in set(transient_codes)
