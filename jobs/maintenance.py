import threading

from apscheduler.schedulers.background import BackgroundScheduler

from audit.logger import logger

RETRY_JOB_ID = "webhook-retry"
CLEANUP_JOB_ID = "memory-cleanup"


def run_retry_tick(retry_queue, now=None):
    """One pass over the failed webhook queue."""
    summary = retry_queue.retry_failed_webhooks(now)
    if any(summary.values()):
        logger.info(
            f"Webhook retry tick | delivered={summary['delivered']} | rescheduled={summary['rescheduled']} "
            f"| expired={summary['expired']} | waiting={summary['waiting']}"
        )
    return summary


def run_cleanup_tick(data_store, now=None):
    """Advisory sweep of expired memory-tier entries."""
    return data_store.cleanup_expired(now)


class MaintenanceRunner:
    """
    Fires the retry and cleanup ticks from an APScheduler background scheduler.

    Each job runs with max_instances=1 and coalesce=True, so missed runs
    collapse into one. Both jobs also share a lock, so a retry tick and a
    cleanup tick never run at the same time. An interval of 0 disables
    that job.
    """

    def __init__(self, retry_queue, data_store, retry_interval=300, cleanup_interval=300,
                 scheduler=None):
        self.retry_queue = retry_queue
        self.data_store = data_store
        self.retry_interval = retry_interval
        self.cleanup_interval = cleanup_interval
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._tick_lock = threading.Lock()

        if retry_interval:
            self._add_job(self.run_retry, retry_interval, RETRY_JOB_ID)
        if cleanup_interval:
            self._add_job(self.run_cleanup, cleanup_interval, CLEANUP_JOB_ID)

    def _add_job(self, func, seconds, job_id):
        self.scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def run_retry(self):
        with self._tick_lock:
            try:
                return run_retry_tick(self.retry_queue)
            except Exception:
                logger.exception("Webhook retry tick failed")
                return None

    def run_cleanup(self):
        with self._tick_lock:
            try:
                return run_cleanup_tick(self.data_store)
            except Exception:
                logger.exception("Memory cleanup tick failed")
                return None

    @property
    def running(self):
        return self.scheduler.running

    def start(self):
        if self.scheduler.running:
            return

        self.scheduler.start()
        logger.info(
            f"Maintenance runner started | retry_every={self.retry_interval}s | cleanup_every={self.cleanup_interval}s"
        )

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Maintenance runner stopped")
