import logging
from datetime import timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import SessionLocal
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def sweep_expired_quizzes(runtime):
    """
    Scheduled task that ends every active quiz whose end_time has passed.
    Runs every ``quiz_expiry_sweep_seconds``.
    """
    db = SessionLocal()
    try:
        ended = runtime.session_service(db).end_expired_quizzes()
        if ended:
            logger.info(f"Expiry sweep ended {len(ended)} quizzes: {ended}")
    except Exception as e:
        logger.error(f"Error during quiz expiry sweep: {e}", exc_info=True)
    finally:
        db.close()


def check_quiz_completion(runtime, quiz_id: int):
    """
    Deferred check fired after the last participant finished; the quiz is
    ended only if everyone is still marked completed.
    """
    db = SessionLocal()
    try:
        if runtime.session_service(db).end_if_all_completed(quiz_id):
            logger.info(f"Quiz {quiz_id} ended early: all participants completed")
    except Exception as e:
        logger.error(f"Error checking completion of quiz {quiz_id}: {e}", exc_info=True)
    finally:
        db.close()


class CompletionWatcher:
    """One pending completion check per quiz, keyed by quiz id."""

    def __init__(self, scheduler: AsyncIOScheduler, runtime, grace_seconds: int = None):
        self.scheduler = scheduler
        self.runtime = runtime
        self.grace_seconds = (
            settings.quiz_completion_grace_seconds if grace_seconds is None else grace_seconds
        )

    @staticmethod
    def job_id(quiz_id: int) -> str:
        return f"quiz-completion:{quiz_id}"

    def schedule(self, quiz_id: int) -> None:
        # Re-scheduling pushes the deadline back instead of stacking checks
        self.scheduler.add_job(
            check_quiz_completion,
            trigger=DateTrigger(run_date=utcnow() + timedelta(seconds=self.grace_seconds)),
            args=[self.runtime, quiz_id],
            id=self.job_id(quiz_id),
            name=f"Completion check for quiz {quiz_id}",
            replace_existing=True,
        )
        logger.debug(f"Completion check for quiz {quiz_id} in {self.grace_seconds}s")

    def cancel(self, quiz_id: int) -> None:
        try:
            self.scheduler.remove_job(self.job_id(quiz_id))
        except JobLookupError:
            pass


def start_scheduler(runtime):
    """
    Initialize and start the APScheduler with the expiry sweep, and attach
    a completion watcher to the runtime.
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        sweep_expired_quizzes,
        trigger=IntervalTrigger(seconds=settings.quiz_expiry_sweep_seconds),
        args=[runtime],
        id="quiz_expiry_sweep",
        name="End expired quizzes",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    runtime.completion_watcher = CompletionWatcher(scheduler, runtime)
    logger.info(
        f"Quiz scheduler started. Expiry sweep every {settings.quiz_expiry_sweep_seconds}s."
    )

    return scheduler


def shutdown_scheduler(scheduler: AsyncIOScheduler):
    """
    Gracefully shutdown the scheduler.
    """
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Quiz scheduler shut down.")
