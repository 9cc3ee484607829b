"""Hydra ConfigStore registration for engine configuration models."""

from __future__ import annotations

from typing import Any

from hydra.core.config_store import ConfigStore
from loguru import logger
from pydantic import BaseModel


def _model_defaults(target_cls: type[Any]) -> dict[str, Any]:
    """Default values of a pydantic model's fields, if it is one."""
    if not (isinstance(target_cls, type) and issubclass(target_cls, BaseModel)):
        return {}
    return {
        field_name: field.default
        for field_name, field in target_cls.model_fields.items()
        if not field.is_required()
    }


def register(
    cls: type[Any] | None = None,
    *,
    group: str | None = None,
    name: str | None = None,
    **kwargs: Any,
) -> type[Any] | Any:
    """Decorator to register a class with Hydra's ConfigStore.

    The stored node carries a ``_target_`` pointing at the decorated class.
    For pydantic models, every field default is copied into the node so that
    YAML overrides (``engine.num_epochs=10``) have a key to land on.

    If *group* is not provided, it is inferred from the module path
    (the last element before the module name, or the module name itself for
    top-level modules).

    Arguments:
        cls: The class to register.
        group: The ConfigStore group. If ``None``, inference is attempted.
        name: The name for the config. Defaults to class name.
        **kwargs: Default values that override field defaults in the node.
    """

    def _process_class(target_cls: type[Any]) -> type[Any]:
        target_path = f"{target_cls.__module__}.{target_cls.__name__}"
        config_name = name or target_cls.__name__

        config_group = group
        if config_group is None:
            module_parts = target_cls.__module__.split(".")
            config_group = module_parts[-2] if len(module_parts) > 2 else module_parts[-1]

        node: dict[str, Any] = {"_target_": target_path}
        node.update(_model_defaults(target_cls))
        node.update(kwargs)

        logger.debug(
            f"Registering {target_cls.__name__} as '{config_name}' "
            f"in group '{config_group}'"
        )
        ConfigStore.instance().store(group=config_group, name=config_name, node=node)
        return target_cls

    if cls is None:
        return _process_class
    return _process_class(cls)
