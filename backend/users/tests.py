from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from rest_framework.test import APIClient

from .models import RadiusUser


class RadiusUserTest(TestCase):
    def setUp(self):
        self.user = RadiusUser.objects.create(
            username='alice', available_flow=1000, available_time=600
        )

    def test_debit_quota(self):
        self.assertTrue(RadiusUser.debit_quota('alice', 400, 100))

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 600)
        self.assertEqual(self.user.available_time, 500)

    def test_debit_quota_floors_at_zero(self):
        RadiusUser.debit_quota('alice', 5000, 5000)

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 0)
        self.assertEqual(self.user.available_time, 0)
        self.assertFalse(self.user.has_quota())

    def test_negative_debit_is_ignored(self):
        RadiusUser.debit_quota('alice', -100, -100)

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 1000)
        self.assertEqual(self.user.available_time, 600)

    def test_debit_unknown_subscriber(self):
        self.assertFalse(RadiusUser.debit_quota('nobody', 1, 1))


class UsersCommandTest(TestCase):
    def call(self, *args):
        out = StringIO()
        call_command('users', *args, stdout=out)
        return out.getvalue()

    def test_add_with_quota(self):
        self.call('add', 'bob', '--flow', '2G', '--time', '30d')

        user = RadiusUser.objects.get(username='bob')
        self.assertEqual(user.available_flow, 2 * 1024 ** 3)
        self.assertEqual(user.available_time, 30 * 86400)

    def test_update_tops_up_quota(self):
        RadiusUser.objects.create(username='bob', available_flow=100, available_time=60)

        self.call('update', 'bob', '--add-flow', '1K', '--add-time', '1h', '--inactive')

        user = RadiusUser.objects.get(username='bob')
        self.assertEqual(user.available_flow, 100 + 1024)
        self.assertEqual(user.available_time, 60 + 3600)
        self.assertFalse(user.is_active)

    def test_invalid_quota_format(self):
        with self.assertRaises(CommandError):
            self.call('add', 'bob', '--flow', 'lots')
        with self.assertRaises(CommandError):
            self.call('add', 'bob', '--time', '1w')

    def test_list_exhausted(self):
        RadiusUser.objects.create(username='full', available_flow=100, available_time=100)
        RadiusUser.objects.create(username='empty', available_flow=0, available_time=100)

        output = self.call('list', '--exhausted')

        self.assertIn('empty', output)
        self.assertNotIn('full', output)


class RadiusUserApiTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        admin = get_user_model().objects.create_user(username='admin', password='secret')
        self.client.force_authenticate(user=admin)

    def test_create_subscriber(self):
        response = self.client.post(
            '/api/radius-users/',
            {'username': 'carol', 'available_flow': 5000, 'available_time': 3600},
            format='json'
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data['has_quota'])
        self.assertEqual(response.data['online_sessions'], 0)
        self.assertTrue(RadiusUser.objects.filter(username='carol').exists())

    def test_negative_quota_rejected(self):
        response = self.client.post(
            '/api/radius-users/',
            {'username': 'carol', 'available_flow': -1},
            format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_requires_authentication(self):
        response = APIClient().get('/api/radius-users/')
        self.assertEqual(response.status_code, 401)
