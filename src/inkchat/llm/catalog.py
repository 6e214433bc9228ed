"""Aggregate model listings across providers, honouring the visibility map."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

import httpx

from .base import ChatProvider
from .errors import ChatError
from .factory import all_providers

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..services.settings import Settings

__all__ = ["list_all_models", "provider_model_groups"]

LOGGER = logging.getLogger(__name__)


async def provider_model_groups(
    settings: "Settings",
    *,
    include_hidden: bool = False,
    providers: Sequence[ChatProvider] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, list[str]]:
    """Return ``{display name: [provider/model, ...]}`` in provider order.

    A provider whose listing fails is logged and contributes an empty group.
    """

    groups: dict[str, list[str]] = {}
    for provider in providers if providers is not None else all_providers(settings, http_client=http_client):
        try:
            names = await provider.list_models()
        except (ChatError, httpx.HTTPError) as exc:
            LOGGER.warning("Unable to list %s models: %s", provider.display_name, exc)
            names = []
        model_ids = [provider.model_id(name) for name in names]
        if not include_hidden:
            model_ids = [model_id for model_id in model_ids if settings.is_model_visible(model_id)]
        groups[provider.display_name] = model_ids
    return groups


async def list_all_models(
    settings: "Settings",
    *,
    include_hidden: bool = False,
    providers: Sequence[ChatProvider] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> list[str]:
    """Flattened ``provider/model`` ids for every provider."""

    groups = await provider_model_groups(
        settings,
        include_hidden=include_hidden,
        providers=providers,
        http_client=http_client,
    )
    return [model_id for model_ids in groups.values() for model_id in model_ids]
