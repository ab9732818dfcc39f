"""
Configuration reload utilities for the entity rule engine.

The main public function is ``reload_settings()`` which:
1. Reloads environment variables from ``.env`` (via ``dotenv.load_dotenv``).
2. Re‑creates the ``EngineSettings`` instance so that any changed values are applied.
3. Updates the symbols exported by ``config.__init__`` to reflect the new values.

Components already constructed keep the values they were built with; callers that
want new defaults construct a fresh engine after reloading.
"""

from __future__ import annotations

import importlib

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

logger = structlog.get_logger(__name__)


def reload_settings() -> bool:
    """
    Reload configuration from the environment and refresh the ``config`` package.

    Returns ``True`` on success, ``False`` when the new environment does not
    validate (the previous settings stay in place).
    """
    import config as config_pkg

    settings_mod = importlib.import_module("config.settings")

    load_dotenv(override=True)

    try:
        new_settings = settings_mod.EngineSettings()
    except ValidationError as exc:
        logger.error("Configuration reload rejected", errors=exc.errors())
        return False

    settings_mod.settings = new_settings
    config_pkg.settings = new_settings

    for field_name in settings_mod.EngineSettings.model_fields:
        value = getattr(new_settings, field_name)
        setattr(settings_mod, field_name, value)
        if hasattr(config_pkg, field_name):
            setattr(config_pkg, field_name, value)

    logger.info("Configuration reloaded")
    return True
