# packstate/__init__.py
"""
Package file state & resolution engine for versioned `.var` content packages.

Subpackages:
  - packstate.content: locating, duplicate analysis, resolution, safe file
    operations, dependency expansion, load/unload orchestration, status index
  - packstate.config:  layered json5 configuration
  - packstate.core:    errors, ids, logging, tracing
  - packstate.app:     process registry and engine wiring
"""
__version__ = "0.3.0"
