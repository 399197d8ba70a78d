from dependency_injector import containers, providers

from reconciler.application.process_webhook_queue import ProcessWebhookQueueUseCase
from reconciler.application.reconcile_order import OrderCreatedHandler, OrderUpdatedHandler
from reconciler.application.reconcile_payment import PaymentReconciliationHandler
from reconciler.application.reconcile_refund import RefundReconciliationHandler
from reconciler.infrastructure.container import InfrastructureContainer
from reconciler.infrastructure.signature import WebhookSignatureVerifier


class ApplicationContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    infrastructure_container = providers.Container[InfrastructureContainer](
        InfrastructureContainer,
        config=config.infrastructure,
    )

    signature_verifier = providers.Singleton[WebhookSignatureVerifier](
        WebhookSignatureVerifier,
        signature_key=config.webhook.signature_key,
        notification_url=config.webhook.notification_url,
    )

    order_created_handler = providers.Singleton[OrderCreatedHandler](
        OrderCreatedHandler,
        db=infrastructure_container.resilient_db,
        commerce_client=infrastructure_container.commerce_client,
    )
    order_updated_handler = providers.Singleton[OrderUpdatedHandler](
        OrderUpdatedHandler,
        db=infrastructure_container.resilient_db,
        event_queue=infrastructure_container.event_queue,
        commerce_client=infrastructure_container.commerce_client,
        max_attempts=config.reconciliation.order_lookup_attempts.as_int(),
        reschedule_delay=config.reconciliation.reschedule_delay.as_float(),
    )
    payment_handler = providers.Singleton[PaymentReconciliationHandler](
        PaymentReconciliationHandler,
        db=infrastructure_container.resilient_db,
        commerce_client=infrastructure_container.commerce_client,
    )
    refund_handler = providers.Singleton[RefundReconciliationHandler](
        RefundReconciliationHandler, db=infrastructure_container.resilient_db
    )

    process_webhook_queue_use_case = providers.Singleton[ProcessWebhookQueueUseCase](
        ProcessWebhookQueueUseCase,
        event_queue=infrastructure_container.event_queue,
        order_created_handler=order_created_handler,
        order_updated_handler=order_updated_handler,
        payment_created_handler=payment_handler,
        payment_updated_handler=payment_handler,
        refund_handler=refund_handler,
        max_items=config.dispatcher.max_items.as_int(),
        timeout=config.dispatcher.timeout.as_float(),
    )
