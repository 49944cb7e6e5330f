"""Celery application for offer timers and dispatch retries."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "courier_backend.settings")

app = Celery("courier_backend")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
