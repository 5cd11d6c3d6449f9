import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'app.settings')

app = Celery('warehouse_ledger')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs.
app.autodiscover_tasks()

app.conf.update(
    task_track_started=True,
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'inventory.*': {'queue': 'inventory'},
    },

    beat_schedule={
        'autosave-stocktake-counts': {
            'task': 'inventory.autosave_stocktake_counts',
            'schedule': float(os.environ.get('INVENTORY_STOCKTAKE_AUTOSAVE_SECONDS', 30)),
        },
        'check-low-stock': {
            'task': 'inventory.check_low_stock',
            'schedule': 21600.0,  # Run every 6 hours
        },
    },
)
