# packstate/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers

from packstate.app.globals import config, configBool
from .formatters import DevFormatter, JsonFormatter, RedactingFormatter
from .filters import RecurringSuppressFilter

__all__ = ["NO_PROPAGATE", "configureLogging"]



# Disable propagation from chatty libraries
NO_PROPAGATE = ["asyncio", "concurrent.futures"]



def configureLogging(*, logFile: str | None = None) -> logging.Logger:
    """
    Initiate the global logging configuration.

    Dev:
      - Console pretty logs (DEBUG)
      - JSON file log (DEBUG)

    Prod:
      - Console INFO
      - JSON file logs INFO with rotation
      - Home directories scrubbed from every line
      - Optional recurring suppression (toggle)
    """
    devMode = configBool("debug.devModeEnabled", False)
    rootLevel = logging.DEBUG if devMode else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    devFmt = RedactingFormatter(DevFormatter())
    jsonFmt = RedactingFormatter(JsonFormatter())

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(devFmt)
    root.addHandler(consoleHandler)

    filePath = logFile or config("debug.logFile", None)
    fileHandler: logging.Handler | None = None
    if filePath:
        fileHandler = logging.handlers.RotatingFileHandler(
            str(filePath),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(jsonFmt)
        root.addHandler(fileHandler)

    if configBool("debug.suppressRecurringMessages.enabled", False):
        levelName = str(config("debug.suppressRecurringMessages.summaryLevel", "INFO")).upper()
        summaryLevel = getattr(logging, levelName, logging.INFO)

        suppressFilter = RecurringSuppressFilter(
            windowSeconds=int(config("debug.suppressRecurringMessages.windowSeconds", 60)),
            maxPerWindow=int(config("debug.suppressRecurringMessages.maxPerWindow", 5)),
            summaryLevel=summaryLevel,
        )
        consoleHandler.addFilter(suppressFilter)
        if fileHandler is not None:
            fileHandler.addFilter(suppressFilter)

    return root
