"""Nobody engine: LLM orchestration for a cultivation narrative game.

The engine turns structured narrative requests (NPC decisions, player
options, plot text, script generation) into bounded prompts, runs them
against an OpenAI-compatible text-generation backend with caching and
retry discipline, and validates what comes back before the game is
allowed to trust it.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# If the package is imported without being installed we fall back to
# "0.0.0-dev" so the engine can still start.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("nobody-engine")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
