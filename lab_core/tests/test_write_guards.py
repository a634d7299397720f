from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from lab_core.models import AuditLog, Patient, TestCatalog, TestRequest, TestRequestItem
from lab_core.workflows.guards import ItemWriteRefused


class ItemWriteGuardTests(TestCase):
    """
    Item status, result and version move only through the action and
    result endpoints; save() refuses to change them unless a repair
    script opts in.
    """

    def setUp(self):
        self.user = User.objects.create_superuser(username="admin", password="pass123", email="a@example.com")
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

        patient = Patient.objects.create(
            lab_id="LAB-9000",
            first_name="Peter",
            last_name="Ssali",
            gender="Male",
            date_of_birth=date(1970, 5, 5),
        )
        test = TestCatalog.objects.create(name="Urea", price=Decimal("3.00"))
        self.request = TestRequest.objects.create(patient=patient)
        self.item = TestRequestItem.objects.create(request=self.request, test=test)

    def test_save_with_changed_status_is_refused(self):
        self.item.status = "completed"
        with self.assertRaises(ItemWriteRefused):
            self.item.save()

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, "pending")

    def test_result_fields_and_version_are_guarded(self):
        for field, value in (("result_value", "4.2"), ("result_flag", "H"), ("version", 7)):
            item = TestRequestItem.objects.get(pk=self.item.pk)
            setattr(item, field, value)
            with self.assertRaises(ItemWriteRefused) as ctx:
                item.save()
            self.assertIn(field, str(ctx.exception.detail))
            self.assertEqual(ctx.exception.status_code, status.HTTP_409_CONFLICT)

        self.item.refresh_from_db()
        self.assertEqual(self.item.result_value, "")
        self.assertEqual(self.item.version, 0)

    def test_other_fields_save_normally(self):
        self.item.is_under_review = True
        self.item.save()

        self.item.refresh_from_db()
        self.assertTrue(self.item.is_under_review)

    def test_update_fields_outside_the_guarded_set_pass(self):
        self.item.status = "completed"
        self.item.is_under_review = True
        self.item.save(update_fields=["is_under_review", "updated_at"])

        self.item.refresh_from_db()
        self.assertTrue(self.item.is_under_review)
        self.assertEqual(self.item.status, "pending")

    def test_repair_scripts_can_opt_in(self):
        self.item.status = "cancelled"
        self.item.save(allow_workflow_fields=True)

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, "cancelled")

    def test_serializer_fields_are_read_only(self):
        url = f"/api/test-requests/{self.request.pk}/"
        resp = self.client.patch(url, {"reception_status": "completed"}, format="json")

        # test requests are not editable through the collection endpoint
        self.assertEqual(resp.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

        self.request.refresh_from_db()
        self.assertEqual(self.request.reception_status, "billing_pending")

    def test_item_actions_are_audited(self):
        self.client.post(f"/api/pathologist/items/{self.item.pk}/actions/collect_sample", {}, format="json")

        entry = AuditLog.objects.filter(action__startswith=f"ITEM {self.item.pk}:").get()
        self.assertEqual(entry.user, self.user)
        self.assertEqual(entry.details["to_status"], "sample_collected")
