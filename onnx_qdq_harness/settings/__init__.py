"""Persistent settings for the ONNX QDQ harness.

Machines with an accelerator usually need a couple of local facts (where the
backend library lives, where to keep artifacts). This package stores them in a
single versioned JSON file under the user's home folder.

Design goals:
  * Atomic writes (no corrupted settings on crash)
  * Resilient loads (backup and fall back to defaults)
"""

from .store import SettingsStore, default_settings

__all__ = ["SettingsStore", "default_settings"]
