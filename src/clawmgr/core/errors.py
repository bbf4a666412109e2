"""Error taxonomy shared by the registry, installer and CLI."""

from __future__ import annotations


class ClawError(Exception):
    """Base class for every failure clawmgr reports to the caller."""


class IoError(ClawError):
    """Filesystem or process-launch failure; message carries the cause."""


class ParseError(ClawError):
    """A persisted JSON document could not be parsed."""


class InvalidSource(ClawError):
    """An install source or server name cannot be mapped to an install directory."""


class ExternalCommandFailed(ClawError):
    """An external command exited nonzero during a fatal step."""

    def __init__(self, step: str, returncode: int, output: str = ""):
        self.step = step
        self.returncode = returncode
        self.output = output
        msg = f"{step} failed (exit {returncode})"
        if output.strip():
            msg += f": {output.strip()}"
        super().__init__(msg)


class FetchFailed(ExternalCommandFailed):
    pass


class DependencyInstallFailed(ExternalCommandFailed):
    pass
