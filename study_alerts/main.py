"""study-alerts entry point: wires channels from settings and runs the sweep."""

import asyncio
import contextlib
import logging
import signal

import telegram
from slack_sdk.web.async_client import AsyncWebClient

from study_alerts.clock import SystemClock
from study_alerts.config import settings
from study_alerts.notifications.dashboard_channel import DashboardChannel
from study_alerts.notifications.router import NotificationRouter
from study_alerts.notifications.slack_channel import SlackChannel
from study_alerts.notifications.sms_channel import SMSChannel, TelnyxClient
from study_alerts.notifications.telegram_channel import TelegramChannel
from study_alerts.service import StudyAlertService

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def build_router(clock: SystemClock) -> tuple[NotificationRouter, list]:
    """Register every channel whose credentials are configured.

    Returns the router and the clients that need closing on shutdown.
    """
    router = NotificationRouter()
    closeables: list = []

    router.register_channel(DashboardChannel(clock))

    if settings.telegram_bot_token:
        bot = telegram.Bot(settings.telegram_bot_token)
        router.register_channel(TelegramChannel(bot))
        closeables.append(bot)
    else:
        logger.warning("TELEGRAM_BOT_TOKEN is empty — telegram channel disabled")

    if settings.slack_bot_token:
        router.register_channel(SlackChannel(AsyncWebClient(token=settings.slack_bot_token)))

    sms_client = TelnyxClient(settings.telnyx_api_key, settings.telnyx_phone_number)
    if sms_client.configured:
        router.register_channel(SMSChannel(sms_client))
        closeables.append(sms_client)

    return router, closeables


async def run() -> None:
    """Start the engine and sweep until SIGINT/SIGTERM."""
    clock = SystemClock()
    router, closeables = build_router(clock)

    for client in closeables:
        if isinstance(client, telegram.Bot):
            await client.initialize()

    service = StudyAlertService.create(settings, router=router, clock=clock)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    logger.info(
        "Starting study-alerts (backend=%s, channels=%s)",
        settings.storage_backend,
        ", ".join(router.list_channels()),
    )
    await service.start()
    try:
        await stop.wait()
    finally:
        await service.stop()
        for client in closeables:
            if isinstance(client, telegram.Bot):
                await client.shutdown()
            else:
                await client.close()
        logger.info("study-alerts stopped")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
