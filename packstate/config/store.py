# packstate/config/store.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable

from packstate.core.errors import ConfigValidationError
from .types import ChangeListener, ConfigProvider, ConfigTarget, ConfigValidator

logger = logging.getLogger(__name__)

__all__ = ["ConfigStore", "deepMerge"]



def deepMerge(first: Mapping[str, Any], second: Mapping[str, Any]) -> dict[str, Any]:
    """
    Returns a new dict where keys from `second` override/extend `first`.
    Merges recursively only when both sides are mappings; lists and scalars
    from `second` replace the left-hand value.
    """
    out: dict[str, Any] = dict(first)
    for key, value in second.items():
        left = out.get(key)
        if isinstance(left, Mapping) and isinstance(value, Mapping):
            out[key] = deepMerge(left, value)
        else:
            out[key] = value
    return out



class ConfigStore:
    """
    Minimal layered config store:
      - read: first hit from the topmost provider down
      - write: dispatch to a target provider (runtime/save/global)
      - validate: on set(), validate the *effective* merged document and
        roll the write back when validation fails
    """

    def __init__(
        self,
        *,
        namespace: str,
        validator: ConfigValidator | None,
        providers: list[ConfigProvider],
        targets: Mapping[ConfigTarget, int] | None = None,
    ):
        self.namespace = namespace
        self._validator = validator
        self._providers = providers
        self._listeners: list[ChangeListener] = []
        # Default mapping: bottom layer is "global", top layer is "runtime"
        self._targets: dict[str, int] = dict(targets or {"global": 0, "runtime": len(providers) - 1})

    # ----- Helpers -----

    def _resolveTargetIdx(self, target: ConfigTarget) -> int:
        if target not in self._targets:
            raise KeyError(f"No provider mapped for target '{target}' in {self.namespace}")
        return self._targets[target]

    def _merged(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        # Bottom to top
        for provider in self._providers:
            merged = deepMerge(merged, provider.to_dict())
        return merged

    def validate(self) -> None:
        """Validate the current effective document, raising ConfigValidationError."""
        if self._validator is None:
            return
        try:
            self._validator(self._merged())
        except ConfigValidationError:
            raise
        except Exception as err:
            raise ConfigValidationError(self.namespace, str(err)) from err

    def get(self, key: str) -> Any | None:
        for provider in reversed(self._providers): # Topmost first precedence
            value = provider.get(key)
            if value is not None:
                return value
        return None

    def set(
        self,
        key: str,
        value: Any,
        *,
        target: ConfigTarget = "runtime",
        actor: str = "system",
    ) -> None:
        idx = self._resolveTargetIdx(target)
        provider = self._providers[idx]
        oldValue = self.get(key)
        oldLayerValue = provider.get(key)
        provider.set(key, value)

        try:
            self.validate()
        except ConfigValidationError:
            # rollback the target layer only
            provider.set(key, oldLayerValue)
            raise

        newValue = self.get(key)
        if oldValue != newValue:
            context = {"namespace": self.namespace, "actor": actor, "target": target}
            for fn in list(self._listeners):
                try:
                    fn(key, oldValue, newValue, context)
                except Exception:
                    logger.exception("Config listener failed for '%s' in %s", key, self.namespace)

    def subscribe(self, fn: ChangeListener) -> Callable[[], None]:
        self._listeners.append(fn)
        def _unsub() -> None:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass
        return _unsub

    def snapshot(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "values": self._merged(),
            "layers": [provider.__class__.__name__ for provider in self._providers],
        }

    def saveAll(self) -> None:
        for provider in self._providers:
            try:
                provider.save()
            except RuntimeError:
                # Read-only layers refuse to save
                pass
