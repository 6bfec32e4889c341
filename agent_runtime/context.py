from __future__ import annotations

from typing import Dict, Iterator, Mapping, Optional


class AgentContext:
    """
    Context variables shared by every tool call within one run.

    Tools read and write it to pass state between calls without routing it
    through the model (e.g. a login tool setting `user_id`). Owned by a single
    run; never share an instance across concurrent runs.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._variables: Dict[str, str] = {}
        if initial:
            self.merge(initial)

    def get(self, key: str, default: str = "") -> str:
        return self._variables.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._variables[str(key)] = str(value)

    def merge(self, updates: Optional[Mapping[str, str]]) -> None:
        """Merge updates in; existing keys are overwritten (last write wins)."""
        if not updates:
            return
        for key, value in updates.items():
            self._variables[str(key)] = str(value)

    def to_dict(self) -> Dict[str, str]:
        """Snapshot copy of the current variables."""
        return dict(self._variables)

    def __contains__(self, key: object) -> bool:
        return key in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._variables))

    def __repr__(self) -> str:
        return f"AgentContext({self._variables!r})"
