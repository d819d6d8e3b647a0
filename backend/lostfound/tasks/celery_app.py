import os
from celery import Celery


def make_celery() -> Celery:
    broker = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    backend = os.getenv("CELERY_RESULT_BACKEND", broker)
    app = Celery("lostfound", broker=broker, backend=backend, include=[
        "lostfound.tasks.jobs.matches",
    ])
    sweep_seconds = int(os.getenv("MATCH_EXPIRATION_SWEEP_SECONDS", "60"))
    app.conf.update(
        task_track_started=True,
        beat_schedule={
            "expire-overdue-matches": {
                "task": "lostfound.tasks.jobs.matches.expire_overdue_matches",
                "schedule": float(sweep_seconds),
            },
        },
    )
    return app

celery_app = make_celery()
