# packstate/config/service.py
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, cast
from collections.abc import Mapping

import fastjsonschema

from packstate.app.context import PROCESS_REGISTRY
from packstate.config.providers import DefaultsProvider, FileProvider, OverrideProvider
from packstate.config.settings import EngineSettings
from packstate.config.store import ConfigStore
from packstate.config.types import ConfigProvider
from packstate.core.tracing import getTracer

logger = logging.getLogger(__name__)

__all__ = ["ConfigService", "DEFAULTS_PATH", "SCHEMA_PATH", "loadGlobalValidator"]

CONFIG_DIR   = Path(__file__).resolve().parent
DEFAULTS_PATH = CONFIG_DIR / "defaults" / "global.json5"
SCHEMA_PATH   = CONFIG_DIR / "schema" / "global.schema.json"



def loadGlobalValidator(schemaPath: Path = SCHEMA_PATH) -> Callable[[Mapping[str, Any]], Any]:
    """Compile the global config schema with fastjsonschema."""
    schema = json.loads(schemaPath.read_text(encoding="utf-8"))
    # fastjsonschema.compile returns an untyped callable
    return cast(Callable[[Mapping[str, Any]], Any], fastjsonschema.compile(schema))



def _applyTracingSwitch(store: ConfigStore) -> None:
    enabled = store.get("debug.tracingEnabled")
    getTracer().enabled = True if enabled is None else bool(enabled)



@dataclass
class ConfigService:
    globalStore: ConfigStore

    @classmethod
    def bootstrap(
        cls,
        *,
        userConfigPath: Path | str | None = None,
        overrides: Mapping[str, Any] | None = None,
        register: bool = True,
    ) -> "ConfigService":
        """
        Layers (bottom to top):
            shipped defaults → user json5 file (optional) → runtime overrides

        The effective document is validated once at boot, then on every set().
        """
        providers: list[ConfigProvider] = [DefaultsProvider(path=DEFAULTS_PATH)]
        targets: dict[str, int] = {"global": 0}
        if userConfigPath is not None:
            targets["save"] = len(providers)
            providers.append(FileProvider(userConfigPath, readOnly=False))
        targets["runtime"] = len(providers)
        providers.append(OverrideProvider(overrides))

        globalStore = ConfigStore(
            namespace="config:global",
            validator=loadGlobalValidator(),
            providers=providers,
            targets=targets, # type: ignore[arg-type]
        )
        globalStore.validate()

        _applyTracingSwitch(globalStore)
        globalStore.subscribe(
            lambda key, _old, _new, _ctx: _applyTracingSwitch(globalStore) if key.startswith("debug") else None
        )

        service = cls(globalStore=globalStore)
        if register:
            PROCESS_REGISTRY.register("config.service", service, overwrite=True)
        logger.debug("Config service ready with layers %s", globalStore.snapshot()["layers"])
        return service

    def settings(self) -> EngineSettings:
        return EngineSettings.fromStore(self.globalStore)
