from celery import Celery

# Worker app for the periodic jobs; Celery Beat drives them when the
# in-process scheduler is disabled
celery = Celery("petcare_scheduler")

celery.config_from_object("app.config.celeryconfig")
