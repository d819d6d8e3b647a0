from lostfound import create_app
from lostfound.logging_config import get_logger
from lostfound.modules.matches.service import get_match_resolution
from lostfound.tasks.celery_app import celery_app

logger = get_logger(__name__)

_flask_app = None


def _app():
    global _flask_app
    if _flask_app is None:
        # The worker only sweeps; in-process timers stay off here.
        _flask_app = create_app(overrides={"MATCH_EXPIRATION_TIMERS_ENABLED": False})
    return _flask_app


def run_expiration_sweep(app) -> list[int]:
    with app.app_context():
        return get_match_resolution().scheduler.sweep()


@celery_app.task(name="lostfound.tasks.jobs.matches.expire_overdue_matches")
def expire_overdue_matches() -> dict:
    expired = run_expiration_sweep(_app())
    logger.info("expire_overdue_matches_done", expired=len(expired))
    return {"expired": expired}
