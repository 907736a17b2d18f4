from celery import Celery

# Create Celery app
celery = Celery("delayguard")

# Load configuration from delayguard.config.celeryconfig module
celery.config_from_object("delayguard.config.celeryconfig")
