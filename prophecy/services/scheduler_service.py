"""
Prophecy League Settlement Scheduler Service

Runs settlement once a day in the background using APScheduler. The job is
registered with max_instances=1 so two runs never overlap.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from prophecy import db
from prophecy.services.settlement import run_settlement

logger = logging.getLogger(__name__)

SETTLEMENT_JOB_ID = "daily_settlement"


class SchedulerService:
    """Manages the background settlement schedule"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.run_stats = self._empty_stats()

        if app:
            self.init_app(app)

    @staticmethod
    def _empty_stats():
        return {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "fixtures_scored": 0,
            "last_message": None,
            "last_error": None,
        }

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_jobs()
            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_jobs(self):
        hour = self.app.config.get("SETTLEMENT_HOUR", 3)
        minute = self.app.config.get("SETTLEMENT_MINUTE", 0)

        self.scheduler.add_job(
            func=self._settle,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=SETTLEMENT_JOB_ID,
            name="Daily Settlement",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info(f"Settlement job scheduled daily at {hour:02d}:{minute:02d} UTC")

    def _settle(self):
        """Run one settlement inside the app context and record the outcome"""
        with self.app.app_context():
            try:
                result = run_settlement()
                self._update_stats(result.success, result.scored_count, result.message)

                if result.success:
                    logger.info(f"Scheduled settlement completed: {result.message}")
                else:
                    logger.warning(f"Scheduled settlement failed: {result.message}")

                return result

            except Exception as e:
                db.session.rollback()
                self._update_stats(False, error=str(e))
                logger.error(f"Error in scheduled settlement: {e}", exc_info=True)
                return None

    def _update_stats(self, success, fixtures_scored=0, message=None, error=None):
        """Update run statistics"""
        self.run_stats["last_run"] = datetime.now(timezone.utc)
        self.run_stats["total_runs"] += 1
        self.run_stats["last_message"] = message

        if success:
            self.run_stats["successful_runs"] += 1
            self.run_stats["fixtures_scored"] += fixtures_scored
            self.run_stats["last_error"] = None
        else:
            self.run_stats["failed_runs"] += 1
            self.run_stats["last_error"] = error or message

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler and self.is_running:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.run_stats)
        if stats["last_run"]:
            stats["last_run"] = stats["last_run"].isoformat()

        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_settlement(self):
        """Manually trigger a settlement run"""
        result = self._settle()
        if result is None:
            return False, "Manual settlement failed"
        return result.success, result.message


# Global scheduler instance
scheduler_service = SchedulerService()
