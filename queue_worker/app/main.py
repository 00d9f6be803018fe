import asyncio
import signal
from typing import Any

from loguru import logger

from queue_worker.app.composition import create_worker_dependencies
from queue_worker.app.config.settings import Settings
from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.core.logging import configure_logging


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_worker(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    deps = create_worker_dependencies(settings)
    await deps.connect()

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    _log("worker_started", queue_backend=settings.queue_backend, queue_name=settings.queue_name)
    try:
        await deps.consumer_loop.run(shutdown)
    finally:
        await deps.close()
        _log("worker_stopped")


def main() -> None:
    settings = Settings()
    configure_logging(settings)
    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.exception("worker failed: {}", e)
        raise


if __name__ == "__main__":
    main()
