"""
Order Ledger Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_order_service
    service = create_order_service(settings, event_bus)
"""
from typing import Optional

from core.config import OrderLedgerConfig, get_settings

from .order_service import OrderService


def create_order_service(
    settings: Optional[OrderLedgerConfig] = None,
    event_bus=None,
    db=None,
    product_client=None,
    customer_client=None,
    stats_client=None,
    status_policy=None,
    refund_policy=None,
    meta_filter=None,
) -> OrderService:
    """
    Create OrderService with real dependencies.

    This function imports the asyncpg stores and httpx clients.
    Use this in production, NOT in tests.

    Args:
        settings: Platform settings (defaults to the process-wide settings)
        event_bus: Event bus for publishing events
        db: PostgresClientWrapper (created from settings when omitted)
        product_client: Product service client
        customer_client: Customer service client
        stats_client: Stats service client
        status_policy: StatusChangePolicy veto hook
        refund_policy: RefundPolicy hook
        meta_filter: MetaFilter applied to the metadata blob

    Returns:
        Configured OrderService instance
    """
    # Import I/O implementations here (not at module level)
    from core.postgres_client import PostgresClientWrapper

    from .cache import InMemoryOrderCache
    from .clients import CustomerClient, ProductClient, StatsClient
    from .order_repository import OrderRepository
    from .order_store import (
        PostgresAdjustmentStore,
        PostgresLineItemStore,
        PostgresNoteStore,
        PostgresOrderNumberSequence,
        PostgresOrderStore,
    )
    from .policies import ConfiguredFeeKeyPolicy
    from .status import StatusTransitionController

    settings = settings or get_settings()
    infra = settings.infrastructure
    services = settings.services
    ledger = settings.ledger
    schema = infra.postgres_schema

    db = db or PostgresClientWrapper(service_name=settings.logging.service_name, infra=infra)
    product_client = product_client or ProductClient(services.product_service_url, timeout=services.request_timeout)
    customer_client = customer_client or CustomerClient(services.customer_service_url, timeout=services.request_timeout)
    stats_client = stats_client or StatsClient(services.stats_service_url, timeout=services.request_timeout)

    order_store = PostgresOrderStore(db, schema=schema)
    status_controller = StatusTransitionController(
        order_store=order_store,
        stats=stats_client,
        status_policy=status_policy,
        refund_policy=refund_policy,
        strict_side_effects=ledger.strict_side_effects,
        event_bus=event_bus,
    )

    repository = OrderRepository(
        order_store=order_store,
        line_item_store=PostgresLineItemStore(db, schema=schema),
        adjustment_store=PostgresAdjustmentStore(db, schema=schema),
        customers=customer_client,
        stats=stats_client,
        config=ledger,
        sequence=PostgresOrderNumberSequence(db, schema=schema),
        cache=InMemoryOrderCache(),
        status_controller=status_controller,
        meta_filter=meta_filter,
        fee_key_policy=ConfiguredFeeKeyPolicy(ledger.allowed_fee_keys),
        event_bus=event_bus,
    )

    return OrderService(
        repository=repository,
        note_store=PostgresNoteStore(db, schema=schema),
        product_client=product_client,
    )


async def setup_order_schema(settings: Optional[OrderLedgerConfig] = None, db=None):
    """Connect to Postgres and create the order ledger tables"""
    from core.postgres_client import PostgresClientWrapper

    from .order_store import ensure_schema

    settings = settings or get_settings()
    db = db or PostgresClientWrapper(service_name=settings.logging.service_name, infra=settings.infrastructure)
    await db.connect()
    await ensure_schema(db, schema=settings.infrastructure.postgres_schema, sequence_start=settings.ledger.sequential_start)
    return db
