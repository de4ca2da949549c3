# x264q/errors.py
class X264qError(Exception):
    """Base class for failures that end a single job."""


class ParseError(X264qError):
    """An input script could not be turned into a clip."""


class SegmentBuildError(X264qError):
    """Planning or writing segment scripts failed."""


class EncodeError(X264qError):
    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class MergeError(X264qError):
    """The concatenation tool failed or could not be started."""
