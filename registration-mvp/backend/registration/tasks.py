import logging
from celery import shared_task

from .exceptions import QueueProcessorError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # 初始重试延迟（秒），指数退避会乘以 2^retry_count
    acks_late=True,           # 任务执行完才 ack，防止 worker 崩溃时任务丢失
    reject_on_worker_lost=True,
)
def process_registration_task(self, queue_data_id: str):
    """
    异步处理一条注册 queue 条目。

    重试策略：
      - 校验失败 / 疑似重复 → 不重试，条目标记为 failed，错误写入 queue_data.errors
      - STORAGE_FAILURE → 最多重试 3 次，指数退避 10s → 20s → 40s
        （ledger 保证同一 temporary_uuid 重复处理不会产生第二个 patient）
        等待重试期间条目是 pending
      - 其他异常 → process_queue_data 已标记 failed（UNEXPECTED_ERROR），不重试
    """
    from registration.models import QueueData
    from registration.services import process_queue_data

    logger.info("[Celery][process_registration] 开始处理 queue_data_id=%s (attempt %d/%d)",
                queue_data_id, self.request.retries + 1, self.max_retries + 1)

    try:
        queue_data = QueueData.objects.get(id=queue_data_id)
    except QueueData.DoesNotExist:
        logger.error("[Celery] QueueData %s 不存在，跳过", queue_data_id)
        return None  # 不重试，直接结束

    try:
        result = process_queue_data(queue_data)
    except QueueProcessorError as exc:
        if exc.has_storage_failure() and self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning(
                "[Celery] queue_data_id=%s 存储失败，将在 %ds 后重试 (第 %d 次): %s",
                queue_data_id, countdown, self.request.retries + 1, exc.message,
            )
            # 把条目重置回 pending 等重试，避免 failed 状态下再被 /retry/ 重复提交
            queue_data.status = 'pending'
            queue_data.save(update_fields=['status', 'updated_at'])
            raise self.retry(exc=exc, countdown=countdown)

        logger.warning("[Celery] queue_data_id=%s 处理失败: %s", queue_data_id, exc.codes)
        return {'status': 'failed', 'errors': exc.codes}

    logger.info("[Celery] queue_data_id=%s 处理完成 (%s → %s)",
                queue_data_id, result.outcome, result.assigned_uuid)
    return {
        'status': 'processed',
        'outcome': result.outcome,
        'assigned_uuid': str(result.assigned_uuid),
    }
