"""
Unit tests for process_registration_task.

Celery 不连 broker：用 task.apply() 在当前进程里同步执行。
覆盖：
1. 成功 → processed + outcome
2. 校验失败 → failed，不重试
3. STORAGE_FAILURE → 按 10s / 20s / 40s 指数退避重试
4. 重试次数用完 → failed
5. queue 条目不存在 → 直接结束
"""
import uuid
from unittest.mock import patch

import pytest
from celery.exceptions import Retry

from registration.exceptions import QueueProcessorError, StorageFailure
from registration.models import QueueData
from registration.tasks import process_registration_task
from tests.conftest import QueueDataFactory


def _storage_failure():
    return QueueProcessorError(
        'Registration payload could not be committed.',
        errors=[StorageFailure('db down')],
        http_status=503,
    )


@pytest.mark.django_db
class TestProcessRegistrationTask:

    def test_success(self):
        queue_data = QueueDataFactory()

        result = process_registration_task.apply(args=[str(queue_data.id)]).get()

        assert result['status'] == 'processed'
        assert result['outcome'] == 'committed'
        assert uuid.UUID(result['assigned_uuid'])
        assert QueueData.objects.get(id=queue_data.id).status == 'processed'

    def test_validation_failure_is_not_retried(self):
        queue_data = QueueDataFactory(payload={'patient': {'given_name': 'Jane', 'uuid': 'tmp-1',
                                                           'birth_date': 'not-a-date'}})

        with patch.object(process_registration_task, 'retry') as mock_retry:
            result = process_registration_task.apply(args=[str(queue_data.id)]).get()

        mock_retry.assert_not_called()
        assert result == {'status': 'failed', 'errors': ['MALFORMED_DATE']}
        assert QueueData.objects.get(id=queue_data.id).status == 'failed'

    @pytest.mark.parametrize('retries, countdown', [(0, 10), (1, 20), (2, 40)])
    def test_storage_failure_retries_with_backoff(self, retries, countdown):
        queue_data = QueueDataFactory()

        with patch('registration.services.process_registration', side_effect=_storage_failure()), \
                patch.object(process_registration_task, 'retry', side_effect=Retry()) as mock_retry:
            process_registration_task.apply(args=[str(queue_data.id)], retries=retries)

        mock_retry.assert_called_once()
        assert mock_retry.call_args.kwargs['countdown'] == countdown
        # 等待重试期间不能停在 failed，否则 /retry/ 会重复提交
        assert QueueData.objects.get(id=queue_data.id).status == 'pending'

    def test_storage_failure_after_last_retry_gives_up(self):
        queue_data = QueueDataFactory()

        with patch('registration.services.process_registration', side_effect=_storage_failure()), \
                patch.object(process_registration_task, 'retry') as mock_retry:
            result = process_registration_task.apply(args=[str(queue_data.id)], retries=3).get()

        mock_retry.assert_not_called()
        assert result == {'status': 'failed', 'errors': ['STORAGE_FAILURE']}
        queue_data.refresh_from_db()
        assert queue_data.status == 'failed'
        assert queue_data.errors[0]['code'] == 'STORAGE_FAILURE'

    def test_missing_queue_data_returns_none(self):
        assert process_registration_task.apply(args=[str(uuid.uuid4())]).get() is None

    def test_unexpected_exception_marks_failed_without_retry(self):
        queue_data = QueueDataFactory()

        with patch('registration.services.process_registration', side_effect=RuntimeError('boom')), \
                patch.object(process_registration_task, 'retry') as mock_retry:
            result = process_registration_task.apply(args=[str(queue_data.id)]).get()

        mock_retry.assert_not_called()
        assert result == {'status': 'failed', 'errors': ['UNEXPECTED_ERROR']}
        assert QueueData.objects.get(id=queue_data.id).status == 'failed'
