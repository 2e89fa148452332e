"""
Background Jobs Service
Periodic housekeeping for auth sessions and password reset tokens

Features:
- Scheduled jobs using APScheduler
- Configurable timezone
- Job monitoring and statistics, manual trigger for admins
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session
from reelstream.database import SessionLocal
from reelstream.repositories.sql import SqlUserRepository
from reelstream.services.password_reset_service import PasswordResetService
from reelstream.utils.timeutils import utcnow
from datetime import datetime
import logging
import os
from typing import Callable, Dict, Optional
from pytz import timezone

logger = logging.getLogger(__name__)


def jobs_enabled() -> bool:
    return os.getenv("ENABLE_BACKGROUND_JOBS", "true").lower() == "true"


class BackgroundJobService:
    """
    Manages scheduled housekeeping jobs

    Jobs:
    - Purge expired or revoked auth sessions (hourly)
    - Purge expired password reset tokens (daily at 3 AM)

    Usage:
        jobs = BackgroundJobService()
        jobs.start()
        jobs.shutdown()
    """

    JOBS = {
        'cleanup_sessions': 'Purge expired auth sessions',
        'cleanup_reset_tokens': 'Purge expired password reset tokens',
    }

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        tz_name = os.getenv("TIMEZONE", "UTC")
        self.timezone = timezone(tz_name)
        self.scheduler = BackgroundScheduler(timezone=self.timezone)
        self.session_factory = session_factory

        self.job_stats = {
            job_id: {'last_run': None, 'status': 'idle', 'error': None, 'removed': 0}
            for job_id in self.JOBS
        }

    def start(self):
        """Start the scheduler unless ENABLE_BACKGROUND_JOBS is false"""
        if not jobs_enabled():
            logger.info("Background jobs disabled via ENABLE_BACKGROUND_JOBS environment variable")
            return

        self.scheduler.add_job(
            func=self.cleanup_sessions,
            trigger=CronTrigger(minute=0, timezone=self.timezone),
            id='cleanup_sessions',
            name=self.JOBS['cleanup_sessions'],
            replace_existing=True,
            max_instances=1
        )
        logger.info("Scheduled: purge auth sessions (hourly)")

        self.scheduler.add_job(
            func=self.cleanup_reset_tokens,
            trigger=CronTrigger(hour=3, minute=0, timezone=self.timezone),
            id='cleanup_reset_tokens',
            name=self.JOBS['cleanup_reset_tokens'],
            replace_existing=True,
            max_instances=1
        )
        logger.info("Scheduled: purge password reset tokens (daily 3:00 AM)")

        self.scheduler.start()
        logger.info(f"Background jobs started ({len(self.scheduler.get_jobs())} jobs, timezone {self.timezone})")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Background jobs stopped gracefully")

    def get_job_stats(self) -> Dict:
        next_runs = {job.id: job.next_run_time for job in self.scheduler.get_jobs()}
        jobs_info = []
        for job_id, name in self.JOBS.items():
            stats = self.job_stats[job_id]
            next_run = next_runs.get(job_id)
            jobs_info.append({
                'id': job_id,
                'name': name,
                'next_run': next_run.isoformat() if next_run else None,
                'last_run': stats['last_run'],
                'status': stats['status'],
                'error': stats['error'],
                'removed': stats['removed'],
            })

        return {
            'scheduler_running': self.scheduler.running,
            'timezone': str(self.timezone),
            'jobs': jobs_info
        }

    def run_job(self, job_id: str) -> Optional[Dict]:
        """Run a job right away; returns its stats, or None for unknown ids"""
        job = {
            'cleanup_sessions': self.cleanup_sessions,
            'cleanup_reset_tokens': self.cleanup_reset_tokens,
        }.get(job_id)
        if job is None:
            return None
        job()
        return dict(self.job_stats[job_id])

    # ============================================
    # Jobs
    # ============================================

    def cleanup_sessions(self):
        self._execute('cleanup_sessions', lambda db: SqlUserRepository(db).purge_sessions(utcnow()))

    def cleanup_reset_tokens(self):
        def purge(db: Session) -> int:
            removed = PasswordResetService.purge_expired_tokens(db)
            db.commit()
            return removed

        self._execute('cleanup_reset_tokens', purge)

    def _execute(self, job_id: str, work: Callable[[Session], int]):
        stats = self.job_stats[job_id]
        stats['status'] = 'running'
        stats['error'] = None

        db: Session = self.session_factory()
        start_time = datetime.now()

        try:
            logger.info(f"[{job_id}] Starting...")
            removed = work(db)
            elapsed = (datetime.now() - start_time).total_seconds()
            logger.info(f"[{job_id}] Completed in {elapsed:.2f}s, removed {removed} rows")
            stats['status'] = 'success'
            stats['removed'] = removed
        except Exception as e:
            # Scheduler threads have no caller to propagate to
            db.rollback()
            logger.error(f"[{job_id}] Failed: {e}", exc_info=True)
            stats['status'] = 'failed'
            stats['error'] = str(e)
        finally:
            stats['last_run'] = datetime.now().isoformat()
            db.close()


# Global singleton instance
background_jobs = BackgroundJobService()
