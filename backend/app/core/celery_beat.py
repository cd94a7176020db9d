# app/core/celery_beat.py
from celery.schedules import crontab
from app.core.celery_app import celery_app

celery_app.conf.beat_schedule = {
    "check-unpaid-payment-links": {
        "task": "app.tasks.reminder_celery.check_unpaid_links_task",
        "schedule": crontab(minute=0),  # hourly
    },
}
