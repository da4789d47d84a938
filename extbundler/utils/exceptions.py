"""Custom exceptions for extbundler."""

from dataclasses import dataclass
from typing import Optional


class BuildError(Exception):
    """Base class for errors that abort a build run."""
    pass


class CompileFailure(BuildError):
    """Exception raised when a style, script or bundle fails to compile."""

    def __init__(self, message: str, tool: Optional[str] = None, output: str = ""):
        super().__init__(message)
        self.tool = tool
        self.output = output

    def __str__(self) -> str:
        text = super().__str__()
        if self.output:
            text = f"{text}\n{self.output.rstrip()}"
        return text


class IOFailure(BuildError):
    """Exception raised when the destination tree cannot be cleared or written."""
    pass


class ConfigurationError(BuildError):
    """Exception raised at startup when a required input is missing or invalid."""
    pass


@dataclass(frozen=True)
class CompileWarning:
    """Non-fatal diagnostic reported by a style compiler or CSS transform."""

    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def location(self) -> Optional[str]:
        """``file:line:column`` with missing parts dropped, or None without a file."""
        if not self.file:
            return None
        return ':'.join(str(part) for part in (self.file, self.line, self.column) if part)

    @classmethod
    def from_dict(cls, data: dict) -> 'CompileWarning':
        loc = data.get('loc') or {}
        return cls(
            message=str(data.get('message', '')),
            file=data.get('file') or loc.get('filename'),
            line=data.get('line') or loc.get('line'),
            column=data.get('column') or loc.get('column'),
        )
