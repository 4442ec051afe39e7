from decimal import Decimal

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from procurement import rules
from procurement.models import AppUser, Item, Project, Supplier
from procurement.roles import Role

BASE = "/api/v1/procurement"


def _dev_auth(username: str):
    return override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID=username,
        DEV_AUTH_ROLES=[],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=True,
    )


class ProcurementApiTestCase(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.users = {}
        for username, role in (
            ("pm", Role.PROJECT_MANAGER),
            ("direktur", Role.DIREKTUR),
            ("purchasing", Role.PURCHASING),
            ("warehouse", Role.WAREHOUSE),
            ("admin", Role.ADMIN),
        ):
            self.users[username] = AppUser.objects.create(
                username=username,
                name=username.title(),
                role=role.value,
                create_by_id="tester",
                update_by_id="tester",
            )
        self.project = Project.objects.create(
            project_name="Gedung A",
            pm=self.users["pm"],
            create_by_id="tester",
            update_by_id="tester",
        )
        self.bolt = Item.objects.create(
            item_name="Bolt M8",
            unit="pcs",
            current_stock=10,
            estimated_unit_price=Decimal("2500.00"),
            create_by_id="tester",
            update_by_id="tester",
        )
        self.supplier = Supplier.objects.create(
            supplier_name="PT Baja", create_by_id="tester", update_by_id="tester"
        )

    def _post(self, username: str, path: str, data: dict | None = None):
        with _dev_auth(username):
            return self.client.post(f"{BASE}{path}", data or {}, format="json")

    def _get(self, username: str, path: str):
        with _dev_auth(username):
            return self.client.get(f"{BASE}{path}")

    def _create_frb(self, qty: int = 15):
        return self._post(
            "pm",
            "/frbs/",
            {
                "project_id": self.project.project_id,
                "delivery_deadline": "2026-12-01",
                "recipient_name": "Site Foreman",
                "recipient_contact": "0812000000",
                "delivery_address": "Jl. Sudirman 1",
                "items": [{"item_id": self.bolt.item_id, "requested_qty": qty}],
            },
        )


class FRBEndpointTests(ProcurementApiTestCase):
    def test_pm_creates_frb(self) -> None:
        response = self._create_frb()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status_code"], rules.FRB_AWAITING_DIRECTOR_APPROVAL)
        self.assertEqual(body["pm_id"], self.users["pm"].user_id)

    def test_warehouse_cannot_create_frb(self) -> None:
        response = self._post("warehouse", "/frbs/", {})

        self.assertEqual(response.status_code, 403)

    def test_validation_error_shape(self) -> None:
        response = self._post("pm", "/frbs/", {"project_id": self.project.project_id, "items": []})

        self.assertEqual(response.status_code, 400)
        self.assertIn("delivery_deadline", response.json()["errors"])

    def test_unknown_frb_is_404(self) -> None:
        response = self._get("direktur", "/frbs/999/")

        self.assertEqual(response.status_code, 404)
        self.assertIn("frb_id", response.json()["errors"])

    def test_decision_and_validation(self) -> None:
        frb_id = self._create_frb().json()["frb_id"]

        decided = self._post("direktur", f"/frbs/{frb_id}/decision/", {"approve": True})
        self.assertEqual(decided.status_code, 200)
        self.assertEqual(decided.json()["status_code"], rules.FRB_APPROVED_BY_DIRECTOR)

        payload = {"approved_quantities": [{"item_id": self.bolt.item_id, "approved_qty": 15}]}
        validated = self._post("purchasing", f"/frbs/{frb_id}/validate/", payload)
        self.assertEqual(validated.status_code, 201)
        self.assertEqual(len(validated.json()["purchase_requests"]), 1)

        replayed = self._post("purchasing", f"/frbs/{frb_id}/validate/", payload)
        self.assertEqual(replayed.status_code, 200)
        self.assertTrue(replayed.json()["replayed"])

        conflicting = self._post(
            "purchasing",
            f"/frbs/{frb_id}/validate/",
            {"approved_quantities": [{"item_id": self.bolt.item_id, "approved_qty": 3}]},
        )
        self.assertEqual(conflicting.status_code, 409)
        self.assertIn("status", conflicting.json()["errors"])

    def test_director_decision_twice_is_conflict(self) -> None:
        frb_id = self._create_frb().json()["frb_id"]
        self._post("direktur", f"/frbs/{frb_id}/decision/", {"approve": True})

        response = self._post("direktur", f"/frbs/{frb_id}/decision/", {"approve": False, "reason": "x"})

        self.assertEqual(response.status_code, 409)

    def test_pm_lists_own_frbs(self) -> None:
        self._create_frb()

        response = self._get("pm", "/frbs/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)


class DeliveryEndpointTests(ProcurementApiTestCase):
    def _do_id(self, qty: int = 4) -> int:
        frb_id = self._create_frb(qty).json()["frb_id"]
        self._post("direktur", f"/frbs/{frb_id}/decision/", {"approve": True})
        validated = self._post("purchasing", f"/frbs/{frb_id}/validate/")
        return validated.json()["delivery_orders"][0]["do_id"]

    def test_checklist_and_acceptance(self) -> None:
        do_id = self._do_id()

        checklist = self._post(
            "warehouse",
            f"/delivery-orders/{do_id}/checklist/",
            {"items": [{"item_id": self.bolt.item_id, "prepared_qty": 4}]},
        )
        self.assertEqual(checklist.status_code, 201)
        self.assertEqual(
            checklist.json()["delivery_order"]["status_code"], rules.DO_PREPARED_BY_WAREHOUSE
        )

        ttb = self._post(
            "warehouse",
            f"/delivery-orders/{do_id}/ttb/",
            {"accepted": True, "recipient_signature_ref": "sig/1.png"},
        )
        self.assertEqual(ttb.status_code, 201)
        self.assertEqual(ttb.json()["status_code"], rules.TTB_ACCEPTED)

        item = self._get("pm", f"/items/{self.bolt.item_id}/")
        self.assertEqual(item.json()["current_stock"], 6)

    def test_purchasing_cannot_record_checklist(self) -> None:
        do_id = self._do_id()

        response = self._post(
            "purchasing",
            f"/delivery-orders/{do_id}/checklist/",
            {"items": [{"item_id": self.bolt.item_id, "prepared_qty": 4}]},
        )

        self.assertEqual(response.status_code, 403)

    def test_short_stock_is_conflict(self) -> None:
        do_id = self._do_id()
        self._post(
            "warehouse",
            f"/items/{self.bolt.item_id}/adjust-stock/",
            {"quantity": 8, "direction": "subtract", "reason": "Stock opname"},
        )

        response = self._post(
            "warehouse",
            f"/delivery-orders/{do_id}/checklist/",
            {"items": [{"item_id": self.bolt.item_id, "prepared_qty": 4}]},
        )

        self.assertEqual(response.status_code, 409)
        self.assertIn("items", response.json()["errors"])

    def test_rejection_then_reconciliation(self) -> None:
        do_id = self._do_id()
        self._post(
            "warehouse",
            f"/delivery-orders/{do_id}/checklist/",
            {"items": [{"item_id": self.bolt.item_id, "prepared_qty": 4}]},
        )
        ttb = self._post(
            "warehouse",
            f"/delivery-orders/{do_id}/ttb/",
            {"accepted": False, "reason_for_rejection": "DAMAGED", "detailed_reason": "Rusted"},
        )
        report_id = ttb.json()["rejection_report"]["report_id"]

        missing_notes = self._post("purchasing", f"/rejection-reports/{report_id}/resolve/")
        self.assertEqual(missing_notes.status_code, 400)

        resolved = self._post(
            "purchasing",
            f"/rejection-reports/{report_id}/resolve/",
            {"resolution_notes": "Replacement scheduled"},
        )
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.json()["reconciliation_status"], rules.RECON_RESOLVED)


class MasterDataEndpointTests(ProcurementApiTestCase):
    def test_manual_adjustment_requires_reason(self) -> None:
        response = self._post(
            "warehouse",
            f"/items/{self.bolt.item_id}/adjust-stock/",
            {"quantity": 2, "direction": "ADD"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("reason", response.json()["errors"])

    def test_movements_listed(self) -> None:
        self._post(
            "warehouse",
            f"/items/{self.bolt.item_id}/adjust-stock/",
            {"quantity": 2, "direction": "ADD", "reason": "Found in yard"},
        )

        response = self._get("pm", f"/items/{self.bolt.item_id}/movements/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["movements"][0]["balance_after"], 12)

    def test_only_admin_manages_users(self) -> None:
        payload = {"username": "gudang2", "name": "Gudang Dua", "role": "WAREHOUSE"}

        self.assertEqual(self._post("pm", "/users/", payload).status_code, 403)
        created = self._post("admin", "/users/", payload)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["role"], Role.WAREHOUSE.value)

    def test_summary_for_admin_only(self) -> None:
        self.assertEqual(self._get("direktur", "/reports/summary/").status_code, 403)
        response = self._get("admin", "/reports/summary/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["low_stock_threshold"], 5)

    def test_notifications_for_director(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            self._create_frb()

        response = self._get("direktur", "/notifications/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["unread_count"], 1)
        notification_id = response.json()["notifications"][0]["notification_id"]
        self.assertEqual(
            self._post("pm", f"/notifications/{notification_id}/read/").status_code, 403
        )
        read = self._post("direktur", f"/notifications/{notification_id}/read/")
        self.assertTrue(read.json()["is_read"])

    def test_login_without_sipb_user_is_forbidden(self) -> None:
        response = self._get("stranger", "/items/")

        self.assertEqual(response.status_code, 403)
