"""
Celery application for custody_project.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'custody_project.settings')

app = Celery('custody_project')

# All CELERY_* keys in Django settings become Celery configuration.
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
