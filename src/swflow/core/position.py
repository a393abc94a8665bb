"""Execution positions.

A position is a JSON pointer into the definition document, for example
``/do/1/checkOrder/try/0/callApi``. Positions key the resume checkpoints of
an instance and populate the ``instance`` field of raised errors.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["NodePosition"]


def _escape(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def _unescape(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


@dataclass(frozen=True)
class NodePosition:
    """Immutable path of segments into the definition tree."""

    segments: tuple[str, ...] = ()

    @classmethod
    def root(cls) -> NodePosition:
        return cls()

    @classmethod
    def parse(cls, pointer: str) -> NodePosition:
        if pointer in ("", "/"):
            return cls()
        return cls(tuple(_unescape(part) for part in pointer.lstrip("/").split("/")))

    def child(self, *segments: str | int) -> NodePosition:
        return NodePosition(self.segments + tuple(str(segment) for segment in segments))

    @property
    def parent(self) -> NodePosition:
        return NodePosition(self.segments[:-1])

    def is_within(self, other: NodePosition) -> bool:
        """Whether this position equals ``other`` or lies below it."""
        return self.segments[: len(other.segments)] == other.segments

    def __str__(self) -> str:
        return "/" + "/".join(_escape(segment) for segment in self.segments)
