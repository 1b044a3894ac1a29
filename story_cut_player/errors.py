"""Error taxonomy for parsing, resolution and playback."""


class StoryCutError(Exception):
    """Base class for engine errors."""


class MissingVoiceError(StoryCutError):
    """No assigned narrator/ember voice id where one is required."""


class SynthesisError(StoryCutError):
    """Text-to-speech call failed (quota, auth, network, empty output)."""


class AudioPlaybackError(StoryCutError):
    """A resolved audio handle could not be decoded or played."""


class ParseWarning(UserWarning):
    """A script line that was dropped. Collected, never raised."""

    def __init__(self, line_number: int, line: str, reason: str):
        super().__init__(f"line {line_number}: {reason}: {line}")
        self.line_number = line_number
        self.line = line
        self.reason = reason
