from __future__ import annotations

import asyncio
import os
import signal

from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.structs import GlobalObject

logger = get_logger(__name__)
g = GlobalObject()


def send_signal(signal_num: int) -> None:
    """Send a signal to the current process.

    Args:
        signal_num (int): The signal number to send.

    """
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm() -> None:
    """Ask the process to terminate; the loop's SIGTERM handler runs the cleanup."""
    send_signal(signal.SIGTERM)


async def _async_signal_cleanup() -> None:
    logger.info("Smart Friends bridge: Starting signal cleanup...")
    if g.bridge:
        logger.debug("Stopping bridge...")
        await g.bridge.stop()
    if g.hub:
        logger.debug("Stopping hub connector...")
        try:
            await g.hub.stop()
        except Exception:
            logger.exception("Hub connector failed to stop cleanly")
    if g.mqtt_client:
        logger.debug("Stopping mqtt_client...")
        await g.mqtt_client.stop()
    for task in g.tasks:
        if not task.done():
            logger.debug("Cancelling task: %s", task.get_name())
            _ = task.cancel()
    logger.info("Smart Friends bridge: Signal cleanup completed")


def signal_handler(signum: int) -> None:
    logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    loop = g.loop or asyncio.get_event_loop()
    _ = loop.create_task(_async_signal_cleanup())
