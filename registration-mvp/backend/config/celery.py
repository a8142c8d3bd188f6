import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('registration')

# 从 Django settings 读取所有 CELERY_ 开头的配置
app.config_from_object('django.conf:settings', namespace='CELERY')

REGISTRATION_QUEUE = os.getenv('CELERY_REGISTRATION_QUEUE', 'registration')

app.conf.update(
    task_default_queue=REGISTRATION_QUEUE,
    task_routes={
        'registration.tasks.process_registration_task': {'queue': REGISTRATION_QUEUE},
    },
    # acks_late 的任务一次只预取一条，worker 崩溃时最多重投一条
    worker_prefetch_multiplier=1,
)

app.autodiscover_tasks(['registration'])
