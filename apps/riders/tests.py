from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.utils.exceptions import NotFound
from .models import DeliveryPartner
from .services import PartnerService

User = get_user_model()


class PartnerServiceTests(APITestCase):
    def test_lookup_by_id_and_user(self):
        user = User.objects.create_user(username="rider1", password="test")
        partner = DeliveryPartner.objects.create(user=user, full_name="Ravi", phone="9100000000")

        self.assertEqual(PartnerService.get_partner(partner.id), partner)
        self.assertEqual(PartnerService.get_for_user(user), partner)

    def test_missing_partner(self):
        with self.assertRaises(NotFound):
            PartnerService.get_partner("not-a-uuid")

        stranger = User.objects.create_user(username="walkin", password="test")
        with self.assertRaises(NotFound):
            PartnerService.get_for_user(stranger)


class PartnerProfileApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(user=self.user, full_name="Ravi", phone="9100000000")

    def test_unapproved_partner_is_forbidden(self):
        self.client.force_authenticate(self.user)
        response = self.client.get(reverse("partner-profile"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_approved_partner_sees_profile(self):
        self.partner.is_approved = True
        self.partner.save()
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse("partner-profile"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["phone"], "9100000000")
