"""
Driver registry.

Each driver module calls ``register()`` at import time.  ``main.py`` then
auto-discovers all driver modules via ``pkgutil.iter_modules`` so the
initializer can look platforms up by name.
"""

from __future__ import annotations

_REGISTRY: dict[str, tuple[type, type]] = {}


def register(name: str, config_cls: type, driver_cls: type) -> None:
    """Register a driver under *name*.

    Args:
        name:       Platform key used in the config file (``"discord"`` / ``"revolt"``).
        config_cls: Pydantic model class validating the platform's options.
        driver_cls: ``BaseDriver`` subclass to instantiate.
    """
    _REGISTRY[name] = (config_cls, driver_cls)


def all_drivers() -> dict[str, tuple[type, type]]:
    """Return a snapshot of ``{name: (config_cls, driver_cls)}`` for every
    registered driver."""
    return dict(_REGISTRY)


def load_all() -> dict[str, tuple[type, type]]:
    """Import every module in ``drivers/`` and return the populated registry."""
    import importlib
    import pkgutil

    import drivers as _drivers_pkg

    for _, mod_name, _ in pkgutil.iter_modules(_drivers_pkg.__path__):
        if mod_name != "registry":
            importlib.import_module(f"drivers.{mod_name}")
    return all_drivers()
