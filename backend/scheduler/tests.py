from unittest import mock

from django.test import SimpleTestCase, TestCase

from radius.models import RadiusLog
from scheduler import scheduler
from scheduler.jobs.cleanup import cleanup_radius_logs, cleanup_stale_sessions
from sessions.reconciliation import ReconciliationResult


def job():
    pass


class SubmitJobTest(SimpleTestCase):
    @mock.patch('scheduler.scheduler.start_scheduler')
    @mock.patch('scheduler.scheduler.is_scheduler_running', return_value=False)
    @mock.patch('scheduler.scheduler.get_scheduler')
    def test_submit_job_runs_on_background_executor(self, get_scheduler, _running, start):
        scheduler.submit_job(job, job_id='reconcile_nas:10.0.0.1', name='Reconcile',
                             args=('10.0.0.1', 11))

        start.assert_called_once()
        get_scheduler.return_value.add_job.assert_called_once_with(
            job,
            args=['10.0.0.1', 11],
            id='reconcile_nas:10.0.0.1',
            name='Reconcile',
            executor=scheduler.BACKGROUND_EXECUTOR,
            replace_existing=True,
            misfire_grace_time=None,
        )

    @mock.patch('scheduler.scheduler.start_scheduler')
    @mock.patch('scheduler.scheduler.is_scheduler_running', return_value=True)
    @mock.patch('scheduler.scheduler.get_scheduler')
    def test_running_scheduler_is_not_restarted(self, get_scheduler, _running, start):
        scheduler.submit_job(job, job_id='j', name='J')

        start.assert_not_called()
        get_scheduler.return_value.add_job.assert_called_once()


@mock.patch('scheduler.jobs.cleanup.close_old_connections')
class CleanupJobsTest(TestCase):
    def test_cleanup_radius_logs(self, close_connections):
        for i in range(5):
            RadiusLog.objects.create(level='INFO', logger='test', message=f'entry {i}')

        with self.settings(RADIUS_LOG_RETENTION=2):
            deleted = cleanup_radius_logs()

        self.assertGreaterEqual(deleted, 3)
        self.assertLessEqual(RadiusLog.objects.count(), 3)
        close_connections.assert_called_once()

    def test_cleanup_stale_sessions(self, close_connections):
        result = ReconciliationResult(settled=['a', 'b'], skipped=['c'])
        with mock.patch('sessions.reconciliation.reap_stale_sessions', return_value=result):
            self.assertEqual(cleanup_stale_sessions(), 2)
        close_connections.assert_called_once()
