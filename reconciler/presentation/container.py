from dependency_injector import containers, providers

from reconciler.application.container import ApplicationContainer
from reconciler.presentation.queue_worker import QueueWorker


class PresentationContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    application = providers.Container[ApplicationContainer](
        ApplicationContainer, config=config
    )

    queue_worker = providers.Singleton[QueueWorker](
        QueueWorker,
        use_case=application.process_webhook_queue_use_case,
        interval=config.worker.interval.as_float(),
    )
