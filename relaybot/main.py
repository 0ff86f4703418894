"""
Entry point for the WhatsApp AI relay bot.

Wires the message channel, session transport, completion client and relay
orchestrator together, optionally serves the health API next to them, and
runs until SIGINT/SIGTERM.

Exit codes: 0 after a graceful shutdown, 1 when startup fails.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from pydantic import ValidationError

from relaybot.config import ConfigurationError, Settings, get_settings, validate_configuration
from relaybot.infra.bus import MessageChannel
from relaybot.llm.client import CompletionClient
from relaybot.monitoring.health import HealthChecker, create_health_app, create_health_server
from relaybot.relay.orchestrator import RelayConfig, RelayOrchestrator
from relaybot.transport import TransportError, create_transport

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging: stdout always, a log file when writable."""
    log_handlers = [logging.StreamHandler(sys.stdout)]

    # Fall back to stdout only when the file cannot be written
    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            log_handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        except (PermissionError, OSError) as e:
            print(f"Warning: Could not create log file: {e}")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=log_handlers,
        force=True
    )


def load_settings() -> Optional[Settings]:
    """Load and validate settings, logging the reason on failure."""
    try:
        settings = validate_configuration(get_settings())
    except ValidationError as e:
        missing = [".".join(str(part) for part in err["loc"]).upper() for err in e.errors()]
        logger.error(f"❌ Invalid configuration, check: {', '.join(missing)}")
        return None
    except ConfigurationError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return None
    return settings


async def run_bot(settings: Settings) -> int:
    """Run the relay until a shutdown signal arrives."""
    logger.info("🚀 Starting WhatsApp AI relay bot...")
    logger.info(f"🔧 Configuration: transport={settings.transport}, model={settings.llm_model}")

    channel = MessageChannel(max_queue_size=settings.relay_max_queue_size)
    await channel.start()

    try:
        transport = create_transport(settings, channel)
    except TransportError as e:
        logger.error(f"❌ {e}")
        await channel.stop()
        return 1

    completion_client = CompletionClient(settings)
    orchestrator = RelayOrchestrator(
        transport,
        completion_client,
        config=RelayConfig.from_settings(settings),
        channel=channel,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handled_signals = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            handled_signals.append(sig)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    health_server = None
    health_task = None
    exit_code = 0

    try:
        await orchestrator.start()

        try:
            await transport.initialize()
        except TransportError as e:
            logger.error(f"❌ Could not establish {transport.name} session: {e}")
            exit_code = 1
            return exit_code

        if settings.health_api_enabled:
            checker = HealthChecker(
                transport=transport,
                channel=channel,
                orchestrator=orchestrator,
                completion_client=completion_client,
            )
            health_server = create_health_server(
                create_health_app(checker), settings.health_api_host, settings.health_api_port
            )
            health_task = asyncio.create_task(health_server.serve(), name="health-api")
            logger.info(
                f"✅ Health API listening on http://{settings.health_api_host}:{settings.health_api_port}"
            )

        logger.info("✅ All systems operational")
        await stop_event.wait()
        logger.info("🛑 Shutdown signal received")
        return exit_code

    finally:
        await shutdown(channel, orchestrator, transport, completion_client, health_server, health_task)
        for sig in handled_signals:
            loop.remove_signal_handler(sig)


async def shutdown(channel, orchestrator, transport, completion_client,
                   health_server=None, health_task=None):
    """Shutdown all components in dependency order."""
    logger.info("🛑 Shutting down system...")

    if health_server is not None:
        health_server.should_exit = True
    if health_task is not None:
        try:
            await health_task
        except Exception as e:
            logger.error(f"❌ Health API error during shutdown: {e}")

    # Stop intake first so in-flight replies can still reach the transport
    await channel.stop()
    await orchestrator.stop()

    try:
        await transport.close()
    except Exception as e:
        logger.error(f"❌ Error closing transport: {e}")

    try:
        await completion_client.close()
    except Exception as e:
        logger.error(f"❌ Error closing completion client: {e}")

    logger.info("✅ System shutdown complete")


def main():
    # stdout-only until settings say otherwise
    setup_logging()
    settings = load_settings()
    if settings is None:
        sys.exit(1)

    setup_logging(settings.log_level, settings.log_file)

    try:
        exit_code = asyncio.run(run_bot(settings))
    except KeyboardInterrupt:
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
