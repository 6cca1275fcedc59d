import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# Create Celery app
app = Celery('marksheet')

# Configure Celery from the CELERY_ settings in config/settings.py
app.config_from_object('django.conf:settings', namespace='CELERY')

# Pick up tasks.py from every installed app
app.autodiscover_tasks()
