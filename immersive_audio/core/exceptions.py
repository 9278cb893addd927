"""
Custom exceptions for the immersive audio pipeline.
"""


class ImmersiveAudioError(Exception):
    """Base exception for all immersive audio errors."""

    def __init__(self, message: str, code: str = "IMMERSIVE_AUDIO_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class DecodeError(ImmersiveAudioError):
    """Transport or PCM payload could not be decoded."""

    def __init__(self, message: str, code: str = "DECODE_ERROR") -> None:
        super().__init__(message, code=code)


class EmptyInputError(DecodeError):
    """Decoder was handed zero bytes."""

    def __init__(self, message: str = "Audio payload is empty") -> None:
        super().__init__(message, code="EMPTY_INPUT")


class EngineError(ImmersiveAudioError):
    """Playback engine errors."""

    def __init__(self, message: str, code: str = "ENGINE_ERROR") -> None:
        super().__init__(message, code=code)


class DeviceUnavailableError(EngineError):
    """Audio output device could not be opened or started."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DEVICE_UNAVAILABLE")


class BufferNotLoadedError(EngineError):
    """Operation needs a decoded buffer but none is loaded."""

    def __init__(self, message: str = "No audio buffer loaded") -> None:
        super().__init__(message, code="BUFFER_NOT_LOADED")


class InvalidTransitionError(EngineError):
    """Requested playback transition is not allowed from the current state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_TRANSITION")


class GraphError(ImmersiveAudioError):
    """Effects graph errors."""

    def __init__(self, message: str, code: str = "GRAPH_ERROR") -> None:
        super().__init__(message, code=code)


class EquivalenceViolationError(GraphError):
    """Live and offline renders of the same graph disagree."""

    def __init__(self, message: str, max_error: float) -> None:
        self.max_error = max_error
        super().__init__(message, code="EQUIVALENCE_VIOLATION")


class ValidationError(ImmersiveAudioError):
    """Data validation errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
