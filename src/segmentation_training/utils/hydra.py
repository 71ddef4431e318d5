"""Hydra ConfigStore registration utilities."""

from __future__ import annotations

from typing import Any

from hydra.core.config_store import ConfigStore
from loguru import logger
from omegaconf import MISSING
from pydantic import BaseModel


def config_node(model: type[BaseModel]) -> dict[str, Any]:
    """Flat config node from a pydantic model's fields.

    Required fields become ``???`` so Hydra demands them at compose time.
    """
    node: dict[str, Any] = {}
    for field_name, field in model.model_fields.items():
        if field.is_required():
            node[field_name] = MISSING
        else:
            node[field_name] = field.get_default(call_default_factory=True)
    return node


def register(
    cls: type[Any] | None = None,
    *,
    group: str | None = None,
    name: str | None = None,
    config_model: type[BaseModel] | None = None,
    **kwargs: Any,
) -> type[Any] | Any:
    """Decorator to register a layer class with Hydra's ConfigStore.

    The stored node targets the decorated class and, when *config_model* is
    given, carries every field of that pydantic model with its default, so
    any option can be overridden from the command line without ``+``.
    Layers are instantiated with ``_convert_="all"`` so list options arrive
    as plain lists.

    If *group* is not provided it is taken from the package holding the
    class module (``segmentation_training.data.x`` -> ``data``).

    Arguments:
        cls: The class to register.
        group: The ConfigStore group. If ``None``, inference is attempted.
        name: The name for the config. Defaults to class name.
        config_model: Pydantic model whose fields seed the node.
        **kwargs: Extra values for the node; override model defaults.
    """

    def _process_class(target_cls: type[Any]) -> type[Any]:
        nonlocal group, name

        config_name = name or target_cls.__name__
        if group is None:
            group = target_cls.__module__.split(".")[-2]

        node: dict[str, Any] = {
            "_target_": f"{target_cls.__module__}.{target_cls.__name__}",
            "_convert_": "all",
        }
        if config_model is not None:
            node.update(config_node(config_model))
        node.update(kwargs)

        logger.debug(
            f"Registering {target_cls.__name__} as '{config_name}' in group '{group}'"
        )
        ConfigStore.instance().store(group=group, name=config_name, node=node)
        return target_cls

    if cls is None:
        return _process_class
    return _process_class(cls)
