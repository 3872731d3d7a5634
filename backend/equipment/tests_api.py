"""
REST endpoints for equipment and transfer requests.
"""
from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import Notification
from equipment.models import Equipment, TransferRequest

User = get_user_model()


class EquipmentApiTestCase(APITestCase):
    def setUp(self):
        self.manager = User.objects.create_user(username="manager", password="pass", role="EQUIPMENT_MANAGER")
        self.sender = User.objects.create_user(username="sender", password="pass")
        self.recipient = User.objects.create_user(username="recipient", password="pass")
        self.outsider = User.objects.create_user(username="outsider", password="pass")
        self.auditor = User.objects.create_user(username="auditor", password="pass", role="AUDITOR")
        self.equipment = Equipment.objects.create(
            serial_number="MED-9",
            product_name="Medical Kit",
            category="Medical",
            location="Clinic",
            current_holder=self.sender,
            current_holder_name=self.sender.display_name,
        )

    def open_transfer(self):
        self.client.force_authenticate(self.sender)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post('/api/equipment/transfers/', {
                'equipment': self.equipment.pk,
                'to_user': self.recipient.pk,
                'reason': 'Handover',
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data['id']


class EquipmentEndpointTests(EquipmentApiTestCase):
    def test_requires_authentication(self):
        response = self.client.get('/api/equipment/items/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_list_and_retrieve(self):
        self.client.force_authenticate(self.sender)

        response = self.client.get('/api/equipment/items/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertNotIn('tracking_history', response.data['results'][0])

        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['serial_number'], 'MED-9')

    def test_manager_registers_equipment(self):
        self.client.force_authenticate(self.manager)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post('/api/equipment/items/', {
                'serial_number': 'MED-10',
                'product_name': 'Medical Kit',
                'category': 'Medical',
                'holder': self.sender.pk,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data['status'], Equipment.STATUS_AVAILABLE)
        self.assertEqual(len(response.data['tracking_history']), 1)

    def test_soldier_cannot_register_equipment(self):
        self.client.force_authenticate(self.sender)
        response = self.client.post('/api/equipment/items/', {
            'serial_number': 'MED-11', 'product_name': 'Kit', 'category': 'Medical',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_duplicate_serial_is_bad_request(self):
        self.client.force_authenticate(self.manager)
        response = self.client.post('/api/equipment/items/', {
            'serial_number': 'MED-9', 'product_name': 'Kit', 'category': 'Medical',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Equipment with this serial number already exists')

    def test_auditor_is_read_only(self):
        self.client.force_authenticate(self.auditor)
        self.assertEqual(self.client.get('/api/equipment/items/').status_code, status.HTTP_200_OK)
        response = self.client.post(f'/api/equipment/items/{self.equipment.pk}/check-in/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_check_in_and_history(self):
        self.client.force_authenticate(self.sender)
        response = self.client.post(f'/api/equipment/items/{self.equipment.pk}/check-in/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['last_seen'])

        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/history/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([entry['action'] for entry in response.data], ['daily_check_in'])

        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/history/?action=status_update')
        self.assertEqual(response.data, [])

    def test_history_rejects_bad_dates(self):
        self.client.force_authenticate(self.sender)
        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/history/?start=yesterday&end=today')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_status_unknown_equipment(self):
        self.client.force_authenticate(self.manager)
        response = self.client.post('/api/equipment/items/999999/update-status/', {'status': 'LOST'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Equipment not found')

    def test_update_status_while_pending_is_bad_request(self):
        self.open_transfer()
        self.client.force_authenticate(self.manager)
        response = self.client.post(
            f'/api/equipment/items/{self.equipment.pk}/update-status/', {'status': 'LOST'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_pending_transfer_endpoint(self):
        self.client.force_authenticate(self.sender)
        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/pending-transfer/')
        self.assertFalse(response.data['pending'])

        transfer_id = self.open_transfer()
        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/pending-transfer/')
        self.assertTrue(response.data['pending'])
        self.assertEqual(response.data['transfer_request']['id'], transfer_id)

    def test_action_logs_endpoint(self):
        self.open_transfer()
        self.client.force_authenticate(self.sender)
        response = self.client.get(f'/api/equipment/items/{self.equipment.pk}/action-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['action_type'], 'TRANSFER_REQUESTED')


class TransferEndpointTests(EquipmentApiTestCase):
    def test_create_transfer(self):
        transfer_id = self.open_transfer()

        transfer = TransferRequest.objects.get(pk=transfer_id)
        self.assertEqual(transfer.from_user, self.sender)
        self.assertEqual(transfer.status, TransferRequest.STATUS_PENDING)
        self.assertTrue(Notification.objects.filter(user=self.recipient, event='transfer_request').exists())

    def test_cannot_transfer_to_self(self):
        self.client.force_authenticate(self.sender)
        response = self.client.post('/api/equipment/transfers/', {
            'equipment': self.equipment.pk, 'to_user': self.sender.pk, 'reason': 'x',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_second_pending_transfer_is_bad_request(self):
        self.open_transfer()
        self.client.force_authenticate(self.sender)
        response = self.client.post('/api/equipment/transfers/', {
            'equipment': self.equipment.pk, 'to_user': self.outsider.pk, 'reason': 'Again',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Equipment already has a pending transfer request')

    def test_recipient_approves(self):
        transfer_id = self.open_transfer()

        self.client.force_authenticate(self.recipient)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(f'/api/equipment/transfers/{transfer_id}/approve/', {'note': 'Got it'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['status'], TransferRequest.STATUS_APPROVED)
        self.equipment.refresh_from_db()
        self.assertEqual(self.equipment.current_holder, self.recipient)

        response = self.client.post(f'/api/equipment/transfers/{transfer_id}/approve/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Transfer request is not pending')

    def test_requester_cannot_approve_own_request(self):
        transfer_id = self.open_transfer()
        response = self.client.post(f'/api/equipment/transfers/{transfer_id}/approve/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_outsider_cannot_see_request(self):
        transfer_id = self.open_transfer()
        self.client.force_authenticate(self.outsider)
        response = self.client.post(f'/api/equipment/transfers/{transfer_id}/reject/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_recipient_cannot_cancel(self):
        transfer_id = self.open_transfer()
        self.client.force_authenticate(self.recipient)
        response = self.client.post(f'/api/equipment/transfers/{transfer_id}/cancel/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'Only the original requester can cancel the transfer')

    def test_requester_cancels_and_reminds(self):
        transfer_id = self.open_transfer()

        response = self.client.post(f'/api/equipment/transfers/{transfer_id}/remind/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(Notification.objects.filter(user=self.recipient, event='transfer_reminder').exists())

        response = self.client.post(
            f'/api/equipment/transfers/{transfer_id}/cancel/', {'reason': 'Wrong kit'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], TransferRequest.STATUS_CANCELLED)

    def test_incoming_and_pending_lists(self):
        transfer_id = self.open_transfer()

        self.client.force_authenticate(self.recipient)
        response = self.client.get('/api/equipment/transfers/incoming/')
        self.assertEqual([item['id'] for item in response.data['results']], [transfer_id])

        response = self.client.get('/api/equipment/transfers/pending/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.manager)
        response = self.client.get('/api/equipment/transfers/pending/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
