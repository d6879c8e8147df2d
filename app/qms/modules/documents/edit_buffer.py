from __future__ import annotations

import copy
import time
from collections.abc import Callable
from typing import Any

from app.qms.errors import ValidationError
from app.qms.modules.documents.models import Document
from app.qms.modules.documents.workflow import Actor, WorkflowEngine


def set_path(tree: dict, path: str, value: Any) -> None:
    """
    Set ``value`` at a dotted path, e.g. ``batchInfo.lotNumber`` or
    ``specifications.0.result``. Missing mapping levels are created; list
    indexes must already exist (or equal the length, which appends).
    """
    parts = [p for p in (path or "").split(".") if p]
    if not parts:
        raise ValidationError("Edit path is empty.")

    node: Any = tree
    for i, part in enumerate(parts):
        last = i == len(parts) - 1
        if isinstance(node, list):
            if not part.isdigit():
                raise ValidationError(f"Path {path!r}: {part!r} is not a list index.")
            idx = int(part)
            if idx > len(node):
                raise ValidationError(f"Path {path!r}: index {idx} out of range.")
            if idx == len(node):
                node.append(value if last else {})
            elif last:
                node[idx] = value
            node = node[idx]
        elif isinstance(node, dict):
            if last:
                node[part] = value
            else:
                if node.get(part) is None:
                    node[part] = {}
                node = node[part]
        else:
            raise ValidationError(f"Path {path!r}: cannot descend into a {type(node).__name__}.")


class PendingEditBuffer:
    """
    Collects per-field edits from an editor session and turns them into a
    single ``save_content`` call, either on demand or once no edit has arrived
    for ``debounce_seconds``.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        document_id: str,
        actor: Actor,
        *,
        debounce_seconds: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.document_id = document_id
        self.actor = actor
        self.debounce_seconds = debounce_seconds
        self.clock = clock
        self._edits: list[tuple[str, Any]] = []
        self._last_stage: float | None = None

    @classmethod
    def from_config(cls, engine: WorkflowEngine, document_id: str, actor: Actor, config) -> "PendingEditBuffer":
        return cls(engine, document_id, actor, debounce_seconds=float(config.get("EDIT_DEBOUNCE_SECONDS", 1.5)))

    @property
    def pending(self) -> int:
        return len(self._edits)

    def stage(self, path: str, value: Any) -> None:
        self._edits.append((path, value))
        self._last_stage = self.clock()

    def is_due(self) -> bool:
        if not self._edits or self._last_stage is None:
            return False
        return self.clock() - self._last_stage >= self.debounce_seconds

    def flush(
        self,
        *,
        as_new_version: bool = False,
        comments: str | None = None,
        base_version: int | None = None,
    ) -> Document | None:
        if not self._edits:
            return None
        doc = self.engine.get(self.document_id)
        content = copy.deepcopy(doc.content or {})
        for path, value in self._edits:
            set_path(content, path, value)
        saved = self.engine.save_content(
            self.document_id,
            content,
            self.actor,
            as_new_version=as_new_version,
            comments=comments,
            base_version=doc.version if base_version is None else base_version,
        )
        # Staged edits survive a failed save so the caller can retry.
        self._edits.clear()
        self._last_stage = None
        return saved

    def flush_if_due(self) -> Document | None:
        if not self.is_due():
            return None
        return self.flush()
