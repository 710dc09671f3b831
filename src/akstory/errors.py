"""Exception types raised by the pipeline."""

from __future__ import annotations


class AkStoryError(Exception):
    """Base class for pipeline failures that should abort a language pass."""


class ConfigError(AkStoryError):
    """A settings or rule file exists but cannot be read."""


class WorkerError(AkStoryError):
    """A parse or verification worker failed.

    Attributes:
        chunk_index: Index of the chunk whose worker failed.
        stage: Name of the stage (``"parse"`` or ``"verify"``).
    """

    def __init__(self, stage: str, chunk_index: int, cause: BaseException) -> None:
        super().__init__(f"{stage} worker {chunk_index} failed: {cause}")
        self.stage = stage
        self.chunk_index = chunk_index
        self.__cause__ = cause
