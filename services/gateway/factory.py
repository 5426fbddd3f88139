"""Factory for wiring the payment gateway from configuration.

Fails fast: a missing master mnemonic or RPC URL raises ConfigurationError
before any request is served.
"""

import logging
from datetime import timedelta

from services.allocation.allocator import KeyDerivationAllocator
from services.chain.base import ChainReader
from services.chain.rpc_reader import JsonRpcChainReader
from services.chain.verifier import ChainPaymentVerifier
from services.gateway.protocol import PaymentGateProtocol
from services.invoices.registry import InvoiceRegistry
from services.pricing.policy import PricingPolicy
from services.shared.config import Settings

logger = logging.getLogger(__name__)


def create_gateway(settings: Settings, reader: ChainReader | None = None) -> PaymentGateProtocol:
    """Build the protocol and its collaborators.

    Args:
        settings: Application settings
        reader: Chain reader to use instead of the JSON-RPC one

    Returns:
        Configured PaymentGateProtocol

    Raises:
        ConfigurationError: If required settings are missing or malformed

    Example:
        >>> settings = Settings(rpc_url="https://sepolia.base.org", station_mnemonic="...")
        >>> gateway = create_gateway(settings)
    """
    settings.require_gateway_config()

    if reader is None:
        reader = JsonRpcChainReader(settings)

    gateway = PaymentGateProtocol(
        settings=settings,
        pricing=PricingPolicy.from_settings(settings),
        allocator=KeyDerivationAllocator.from_settings(settings),
        registry=InvoiceRegistry(ttl=timedelta(seconds=settings.invoice_ttl_seconds)),
        verifier=ChainPaymentVerifier(reader, expected_chain_id=settings.chain_id),
    )

    logger.info(
        f"Payment gateway ready: {settings.token_symbol} on {settings.chain} "
        f"via {reader.provider_name}"
    )
    return gateway
