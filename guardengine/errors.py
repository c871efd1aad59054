"""
Exceptions raised by nullguard.

None of these abort an analysis run: configuration problems become
warnings, and a failure inside one operation is recorded and the run moves
on to the next operation.
"""


class GuardEngineError(Exception):
    """Base exception for analyzer errors."""
    def __init__(self, message: str, source: str = ""):
        self.message = message
        self.source = source
        super().__init__(f"[{source}] {message}" if source else message)


class ConfigurationParseError(GuardEngineError):
    """A configuration entry that cannot be parsed; the entry is skipped."""
    pass


class ModelLoadError(GuardEngineError):
    """A program model document that cannot be turned into a compilation."""
    pass
