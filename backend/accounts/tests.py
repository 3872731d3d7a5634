from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import Notification

User = get_user_model()


class UserModelTests(TestCase):
    def test_superuser_role_is_forced(self):
        user = User.objects.create_superuser(username="root", password="pass", email="root@example.com")
        self.assertEqual(user.role, 'ROOT_SUPERADMIN')
        self.assertTrue(user.is_privileged())

    def test_display_name_falls_back_to_username(self):
        user = User.objects.create_user(username="plain", password="pass")
        self.assertEqual(user.display_name, 'plain')
        user.first_name, user.last_name = 'Roni', 'Katz'
        self.assertEqual(user.display_name, 'Roni Katz')

    def test_privileged_roles(self):
        soldier = User.objects.create_user(username="s", password="pass")
        manager = User.objects.create_user(username="m", password="pass", role="EQUIPMENT_MANAGER")
        auditor = User.objects.create_user(username="a", password="pass", role="AUDITOR")
        self.assertFalse(soldier.is_privileged())
        self.assertTrue(manager.is_privileged())
        self.assertFalse(auditor.is_privileged())

    def test_in_app_notifications_default_on(self):
        user = User.objects.create_user(username="n", password="pass")
        self.assertTrue(user.wants_in_app_notifications())
        user.notification_preferences = {'in_app_notifications': False}
        self.assertFalse(user.wants_in_app_notifications())


class NotificationApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="reader", password="pass")
        self.other = User.objects.create_user(username="other", password="pass")
        self.first = Notification.objects.create(user=self.user, title="One", message="First")
        self.second = Notification.objects.create(user=self.user, title="Two", message="Second")
        Notification.objects.create(user=self.other, title="Elsewhere", message="Not yours")
        self.client.force_authenticate(self.user)

    def test_list_only_own_notifications(self):
        response = self.client.get('/api/auth/notifications/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item['id'] for item in response.data['results']], [self.second.pk, self.first.pk])

    def test_mark_one_read(self):
        response = self.client.patch(f'/api/auth/notifications/{self.first.pk}/', {'is_read': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.first.refresh_from_db()
        self.assertTrue(self.first.is_read)
        self.assertIsNotNone(self.first.read_at)

    def test_unread_count_and_mark_all_read(self):
        self.assertEqual(self.client.get('/api/auth/notifications/unread-count/').data['unread_count'], 2)

        response = self.client.post('/api/auth/notifications/mark-all-read/')
        self.assertEqual(response.data['marked_read'], 2)
        self.assertEqual(self.client.get('/api/auth/notifications/unread-count/').data['unread_count'], 0)

    def test_profile(self):
        response = self.client.get('/api/auth/profile/')
        self.assertEqual(response.data['username'], 'reader')
        self.assertEqual(response.data['role'], 'SOLDIER')
