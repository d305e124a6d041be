"""
Error taxonomy for the ingestion pipeline.

Every failure the core can surface derives from AtciError so the queue
processor can catch at one boundary and decide between the failure hook,
a silent skip, or a cancellation cleanup.
"""


class AtciError(Exception):
    """Base class for all pipeline errors"""


class ConfigError(AtciError):
    """Missing required path, invalid value type or unknown field"""


class ProbeError(AtciError):
    """Media probe exited non-zero or produced unparsable output"""


class ToolError(AtciError):
    """Transcoder or speech-to-text tool failed"""

    def __init__(self, message: str, exit_status: int = None, stderr: bytes = b""):
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


class SpawnFailed(ToolError):
    """Program could not be started"""


class IOFailed(ToolError):
    """Pipe error while talking to a child process"""


class CancelError(AtciError):
    """The cancel sentinel tripped while work was in flight"""


class ValidationError(AtciError):
    """Queued path is missing, not a file, or not a recognized video"""
