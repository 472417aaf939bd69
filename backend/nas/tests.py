from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from .models import NASClient


class NASClientLookupTest(TestCase):
    def setUp(self):
        NASClient.clear_cache()
        self.nas = NASClient.objects.create(
            identifier='bras-1', ip_address='10.0.0.1', shared_secret='secret-1'
        )

    def test_get_by_ip(self):
        self.assertEqual(NASClient.get_by_ip('10.0.0.1'), self.nas)
        self.assertIsNone(NASClient.get_by_ip('10.0.0.9'))

    def test_inactive_nas_is_ignored(self):
        self.nas.is_active = False
        self.nas.save()
        self.assertIsNone(NASClient.get_by_ip('10.0.0.1'))

    def test_best_match_uses_identifier(self):
        second = NASClient.objects.create(
            identifier='bras-2', ip_address='10.0.0.1', shared_secret='secret-2'
        )

        self.assertEqual(NASClient.get_best_match('10.0.0.1', 'bras-2'), second)
        self.assertEqual(NASClient.get_best_match('10.0.0.1', 'bras-1'), self.nas)
        self.assertIsNone(NASClient.get_best_match('10.0.0.1', 'bras-3'))

    def test_cached_miss_is_cleared_on_save(self):
        self.assertIsNone(NASClient.get_by_ip('10.0.0.2'))
        NASClient.objects.create(identifier='bras-2', ip_address='10.0.0.2', shared_secret='s')
        self.assertIsNotNone(NASClient.get_by_ip('10.0.0.2'))


class NASClientApiTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        admin = get_user_model().objects.create_user(username='admin', password='secret')
        self.client.force_authenticate(user=admin)

    def test_shared_secret_is_write_only(self):
        response = self.client.post(
            '/api/nas/',
            {'identifier': 'bras-1', 'ip_address': '10.0.0.1', 'shared_secret': 'secret-1'},
            format='json'
        )

        self.assertEqual(response.status_code, 201)
        self.assertNotIn('shared_secret', response.data)
        self.assertEqual(NASClient.objects.get(identifier='bras-1').shared_secret, 'secret-1')
