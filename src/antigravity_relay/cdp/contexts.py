"""Execution context registry — live script contexts exposed by the target."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ExecutionContext:
    """A script execution environment (page, iframe or isolated world)."""

    id: int
    name: str | None = None
    url: str | None = None
    aux_data: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ExecutionContext:
        """Build from a ``Runtime.ExecutionContextDescription``."""
        return cls(
            id=int(payload["id"]),
            name=payload.get("name") or None,
            url=payload.get("url") or payload.get("origin") or None,
            aux_data=payload.get("auxData") or {},
        )

    def matches(self, keyword: str) -> bool:
        """True if the URL or the name contains *keyword*."""
        return bool(
            (self.url and keyword in self.url) or (self.name and keyword in self.name)
        )


class ContextRegistry:
    """Ordered set of live execution contexts, unique by id.

    Only the transport mutates the registry; everything else reads it.
    """

    def __init__(self) -> None:
        self._contexts: list[ExecutionContext] = []

    def add(self, context: ExecutionContext) -> None:
        for i, existing in enumerate(self._contexts):
            if existing.id == context.id:
                self._contexts[i] = context
                return
        self._contexts.append(context)

    def remove(self, context_id: int) -> bool:
        for i, existing in enumerate(self._contexts):
            if existing.id == context_id:
                del self._contexts[i]
                return True
        return False

    def clear(self) -> None:
        self._contexts.clear()

    def get(self, context_id: int) -> ExecutionContext | None:
        for context in self._contexts:
            if context.id == context_id:
                return context
        return None

    def snapshot(self) -> list[ExecutionContext]:
        """Copy of the current contexts, safe to iterate across suspension points."""
        return list(self._contexts)

    @property
    def ids(self) -> list[int]:
        return [c.id for c in self._contexts]

    def __iter__(self) -> Iterator[ExecutionContext]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._contexts)
