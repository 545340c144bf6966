import asyncio
import logging
import signal

from app.services.checkpoint import CheckpointStore
from app.services.cln import ClnRestBackend
from app.services.consumer import InvoiceConsumptionLoop, RetryPolicy
from app.services.relay import RelayBroadcaster
from app.services.startup import StartupManager
from app.services.zap_note import ZapNoteBuilder
from app.services.zap_request import zap_request_decoder
from config import Settings, settings

logger = logging.getLogger(__name__)


def build_consumer(config: Settings, startup: StartupManager, checkpoint_store: CheckpointStore) -> InvoiceConsumptionLoop:
    """Wire the core components from settings and startup results"""
    backend = ClnRestBackend(
        endpoint=config.CLN_REST_URL,
        rune=config.CLN_RUNE,
        verify=config.cln_tls_verify
    )
    builder = ZapNoteBuilder(startup.private_key, startup.public_key_hex)
    broadcaster = RelayBroadcaster(
        connect_timeout=config.ZAPPER_RELAY_CONNECT_TIMEOUT,
        max_concurrent_relays=config.ZAPPER_MAX_CONCURRENT_RELAYS
    )

    return InvoiceConsumptionLoop(
        backend=backend,
        checkpoint_store=checkpoint_store,
        decoder=zap_request_decoder,
        builder=builder,
        broadcaster=broadcaster,
        default_relays=config.default_relays_list,
        cursor=startup.start_index,
        retry_policy=RetryPolicy(delay=config.ZAPPER_RETRY_DELAY_SECONDS),
        max_concurrent_broadcasts=config.ZAPPER_MAX_CONCURRENT_BROADCASTS
    )


async def main(config: Settings = settings) -> int:
    """Run the zapper until SIGINT/SIGTERM; returns the process exit status"""
    logger.info("Starting cln-zapper...")

    checkpoint_store = CheckpointStore(config.pay_index_path)
    startup = StartupManager(config)
    status = startup.run_startup_checks(checkpoint_store)
    if status["status"] != "healthy":
        logger.error("Startup failed - check logs above")
        return 1

    logger.info(f"Default relays: {', '.join(config.default_relays_list)}")
    consumer = build_consumer(config, startup, checkpoint_store)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, consumer.stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await consumer.run()
    logger.info("Shutdown complete")
    return 0
