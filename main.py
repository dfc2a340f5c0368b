"""Entry point for the milestone monitor."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from database.db import init_db
from database.sources import SqlMilestoneConfigSource, SqlNotificationLedger, SqlTokenSource
from monitor.alerter import TelegramNotifier
from monitor.health import HealthReporter
from monitor.market_cap import MarketCapProvider, create_provider
from monitor.polling_cycle import PollingCycleOrchestrator
from monitor.scheduler import CycleScheduler
from monitor.web_server import MonitorWebServer
from utils.clock import SystemClock


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Avoid leaking bot token in verbose transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.INFO)


logger = logging.getLogger(__name__)


@dataclass
class Service:
    provider: MarketCapProvider
    notifier: TelegramNotifier
    orchestrator: PollingCycleOrchestrator
    health: HealthReporter
    scheduler: CycleScheduler
    web_server: MonitorWebServer


def build_service() -> Service:
    clock = SystemClock()
    provider = create_provider(config.MARKET_CAP_PROVIDER)
    notifier = TelegramNotifier()
    token_source = SqlTokenSource()
    orchestrator = PollingCycleOrchestrator(
        token_source=token_source,
        milestone_source=SqlMilestoneConfigSource(),
        ledger=SqlNotificationLedger(),
        provider=provider,
        notifier=notifier,
        clock=clock,
    )
    health = HealthReporter(
        provider=provider,
        token_source=token_source,
        notifier=notifier,
        orchestrator=orchestrator,
        clock=clock,
    )
    scheduler = CycleScheduler(orchestrator, health)
    return Service(
        provider=provider,
        notifier=notifier,
        orchestrator=orchestrator,
        health=health,
        scheduler=scheduler,
        web_server=MonitorWebServer(scheduler, health),
    )


async def run() -> None:
    service = build_service()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers.
            pass

    await service.notifier.start()
    await service.web_server.start()
    logger.info(
        "Milestone monitor started provider=%s interval=%ss threshold=%s max_ratio=%s cooldown=%ss",
        service.provider.name(),
        config.POLL_INTERVAL_SECONDS,
        config.CONSECUTIVE_THRESHOLD,
        config.MAX_CAP_CHANGE_RATIO,
        config.ALERT_COOLDOWN_SECONDS,
    )
    try:
        await service.scheduler.run_forever(stop_event)
    finally:
        await service.web_server.stop()
        await service.provider.close()
        await service.notifier.close()
        logger.info("Milestone monitor stopped")


def main() -> None:
    configure_logging()
    config.validate_config()
    init_db()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
