"""Narrow contracts for the platform speech services.

The mode controller only ever talks to these protocols. Real adapters (Vosk recognition,
sounddevice capture) and the test fakes both implement them.
"""
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

from voicenotes.app.config.voice_types import CapturedAudio, TranscriptSegment
from voicenotes.app.services.audio.errors import RecognitionEngineError


@runtime_checkable
class RecognitionSession(Protocol):
    """One recognition stream.

    start() raises PermissionDeniedError or DeviceUnavailableError when the stream cannot
    be acquired. stop() returns once the stream has ended; an on_end callback delivered
    for a stop() is expected and ignored by the controller.
    """

    session_id: str

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


ResultCallback = Callable[[RecognitionSession, TranscriptSegment], Awaitable[None]]
ErrorCallback = Callable[[RecognitionSession, RecognitionEngineError], Awaitable[None]]
EndCallback = Callable[[RecognitionSession], Awaitable[None]]


@runtime_checkable
class RecognitionService(Protocol):
    """Factory for recognition streams.

    Callbacks are coroutine functions awaited on the controller's event loop. Adapters
    running on their own threads marshal them with asyncio.run_coroutine_threadsafe.
    """

    def is_available(self) -> bool:
        ...

    def create_session(
        self,
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> RecognitionSession:
        ...


@runtime_checkable
class CaptureSession(Protocol):
    """One audio capture stream.

    start() raises PermissionDeniedError or DeviceUnavailableError. stop() flushes the
    buffered audio and returns it encoded, or None when nothing was captured.
    """

    session_id: str

    async def start(self) -> None:
        ...

    async def stop(self) -> Optional[CapturedAudio]:
        ...


@runtime_checkable
class CaptureService(Protocol):
    def create_session(self) -> CaptureSession:
        ...
