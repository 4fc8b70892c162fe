"""Process-wide gateway context.

Built once at startup and handed to the admission gate, the adapters and
the reconciliation engine. Holds the settings, the validated provider
registry, the shared upstream HTTP client and the token manager. Nothing
in it is mutated after construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from gateway.core.config import Settings, load_provider_configs
from gateway.core.logging import get_logger
from gateway.schemas.provider import ProviderConfig
from gateway.services.ledger import Ledger
from gateway.services.providers.base import ProviderAdapter
from gateway.services.providers.registry import ProviderRegistry
from gateway.services.providers.tokens import AccessTokenManager

logger = get_logger(__name__)


@dataclass
class GatewayContext:
    settings: Settings
    registry: ProviderRegistry
    http: httpx.AsyncClient
    tokens: AccessTokenManager

    @classmethod
    def build(
        cls,
        settings: Settings,
        providers: Optional[dict[str, ProviderConfig]] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> "GatewayContext":
        """Load provider configs and create the shared HTTP client.

        Args:
            settings: Application settings.
            providers: Provider configs to use instead of reading
                ``settings.providers_file``.
            http: Client to use instead of a fresh ``httpx.AsyncClient``.

        Raises:
            ConfigurationError: If the provider file is unusable or names
                an adapter kind the registry does not know.
        """
        if providers is None:
            providers = load_provider_configs(settings.providers_file)
        registry = ProviderRegistry(providers)

        if http is None:
            http = httpx.AsyncClient(
                timeout=settings.upstream_timeout_seconds,
                verify=settings.upstream_verify_tls,
            )
        logger.info(
            "Gateway context built: providers=%d upstream_timeout=%s",
            len(providers),
            settings.upstream_timeout_seconds,
        )
        return cls(
            settings=settings,
            registry=registry,
            http=http,
            tokens=AccessTokenManager(http),
        )

    def adapter_for(self, code: str, ledger: Ledger) -> ProviderAdapter:
        return self.registry.build(code, self, ledger)

    async def aclose(self) -> None:
        await self.http.aclose()
