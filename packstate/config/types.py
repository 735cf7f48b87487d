# packstate/config/types.py
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Literal, Protocol, runtime_checkable

__all__ = ["ConfigProvider", "ConfigStore", "ChangeListener", "ConfigValidator", "ConfigTarget"]

ConfigTarget = Literal["runtime", "save", "global"]
ChangeListener = Callable[[str, Any, Any, dict[str, Any]], None]
ConfigValidator = Callable[[Mapping[str, Any]], Any]



@runtime_checkable
class ConfigProvider(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def to_dict(self) -> Mapping[str, Any]: ...
    def save(self) -> None: ...



class ConfigStore(Protocol):
    namespace: str

    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, *, target: ConfigTarget = "runtime", actor: str = "system") -> None: ...
    def subscribe(self, fn: ChangeListener) -> Callable[[], None]: ...
    def snapshot(self) -> dict[str, Any]: ...
