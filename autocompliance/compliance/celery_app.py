from celery import Celery
from kombu import Exchange, Queue
from .config import settings


broker_url = settings.CELERY_BROKER_URL or settings.RABBITMQ_URL
result_backend = settings.CELERY_RESULT_BACKEND or None

celery_app = Celery(
    "compliance",
    broker=broker_url,
    backend=result_backend,
)

exchange = Exchange(settings.RABBITMQ_EXCHANGE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.RABBITMQ_QUEUE,
    task_default_exchange=settings.RABBITMQ_EXCHANGE,
    task_default_routing_key=settings.RABBITMQ_ROUTING_KEY,
    include=["autocompliance.compliance.tasks"],
    task_queues=(
        Queue(settings.RABBITMQ_QUEUE, exchange=exchange, routing_key=settings.RABBITMQ_ROUTING_KEY, durable=True),
    ),
)

# Celery Beat schedule for periodic scanning
celery_app.conf.beat_schedule = {
    "process-due-reminders": {
        "task": "compliance.process_due_reminders",
        "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    },
    "escalate-overdue": {
        "task": "compliance.escalate_overdue",
        "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    },
    "roll-forward-checklists": {
        "task": "compliance.roll_forward_checklists",
        "schedule": settings.CHECKLIST_ROLL_FORWARD_INTERVAL_SECONDS,
    },
}

# Ensure tasks are registered when worker starts
from . import tasks as _tasks  # noqa: E402,F401
