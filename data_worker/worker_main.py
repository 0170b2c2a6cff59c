# data_worker/worker_main.py
import logging
import time

from backend.config import get_settings
from backend.database import create_tables
from backend.logging_config import configure_logging
from data_worker.aggregation import metrics_table_empty
from data_worker.scheduler import aggregation_task, retention_task, start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def main():
    configure_logging()
    create_tables()

    if not get_settings().CACHE_REDIS_URL:
        logger.warning("CACHE_REDIS_URL not set: API caches only refresh when their entries expire")

    # bootstrap runs before the first scheduled trigger
    if metrics_table_empty():
        logger.info("Finance metrics table empty, running initial aggregation")
        aggregation_task()
    retention_task()

    start_scheduler()
    logger.info("🚀 Data worker running")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("🛑 Data worker stopping")
    finally:
        stop_scheduler()


if __name__ == "__main__":
    main()
