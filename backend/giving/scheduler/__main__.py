"""Scheduler エントリポイント: python -m giving.scheduler で起動"""
import signal
import sys
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from giving.core.config import settings
from giving.core.logging import setup_logging, get_logger
from giving.scheduler.settlement_runner import settlement_job, WORKER_ID

setup_logging(debug=settings.DEBUG, component="scheduler")
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone=settings.SCHEDULER_TIMEZONE)


def signal_handler(sig, frame):
    # 実行中の課金は完了させてから停止する
    logger.info("Scheduler停止シグナル受信: 実行中のジョブ完了を待機")
    scheduler.shutdown(wait=True)
    sys.exit(0)


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info(f"Scheduler起動: worker={WORKER_ID}, interval={settings.SETTLEMENT_INTERVAL_MINUTES}min")

    scheduler.add_job(
        settlement_job,
        IntervalTrigger(minutes=settings.SETTLEMENT_INTERVAL_MINUTES, timezone=settings.SCHEDULER_TIMEZONE),
        id="settlement",
        max_instances=1,
        coalesce=True,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler終了")


if __name__ == "__main__":
    main()
