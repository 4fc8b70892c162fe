"""Static provider registry: adapter kind -> adapter class.

Provider configs name the adapter they use (defaulting to their own code).
The registry checks every configured provider against the known adapter
kinds once, when the gateway context is built, so a typo in the config
file fails startup instead of the first request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from gateway.core.errors import ConfigurationError
from gateway.core.logging import get_logger
from gateway.schemas.provider import ProviderConfig
from gateway.services.ledger import Ledger
from gateway.services.providers.base import ProviderAdapter, capabilities_of
from gateway.services.providers.card import CardAdapter
from gateway.services.providers.mtn_momo import MtnMomoAdapter
from gateway.services.providers.sms import SmsAdapter

if TYPE_CHECKING:
    from gateway.core.context import GatewayContext

logger = get_logger(__name__)

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "mtn-momo": MtnMomoAdapter,
    "card": CardAdapter,
    "sms": SmsAdapter,
}


class ProviderRegistry:
    """Validated provider configs plus the factory that builds adapters."""

    def __init__(
        self,
        providers: dict[str, ProviderConfig],
        adapters: Optional[dict[str, type[ProviderAdapter]]] = None,
    ) -> None:
        self.adapters = dict(adapters if adapters is not None else ADAPTERS)
        unknown = sorted(
            f"{code} (adapter={config.adapter})"
            for code, config in providers.items()
            if config.adapter not in self.adapters
        )
        if unknown:
            raise ConfigurationError(
                f"No adapter registered for: {', '.join(unknown)}. "
                f"Known adapters: {', '.join(sorted(self.adapters))}"
            )
        self.providers = dict(providers)
        logger.info("Provider registry ready: %s", ", ".join(sorted(self.providers)))

    def __contains__(self, code: object) -> bool:
        return code in self.providers

    def get_config(self, code: Optional[str]) -> Optional[ProviderConfig]:
        if code is None:
            return None
        return self.providers.get(code)

    def build(self, code: str, context: "GatewayContext", ledger: Ledger) -> ProviderAdapter:
        """Instantiate the adapter for *code* bound to *ledger*.

        Raises:
            KeyError: If *code* is not configured. Callers check membership
                first (the admission gate turns it into a 400).
        """
        config = self.providers[code]
        adapter_cls = self.adapters[config.adapter]
        return adapter_cls(config, context, ledger)

    def describe(self) -> list[dict]:
        """Public provider list: name, code, type and supported capabilities."""
        return [
            {
                **config.describe(),
                "capabilities": sorted(
                    c.value for c in capabilities_of(self.adapters[config.adapter])
                ),
            }
            for config in self.providers.values()
        ]
