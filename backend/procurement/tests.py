from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from procurement import feed, rules
from procurement.exceptions import (
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StockInsufficient,
    ValidationError,
    WorkflowError,
)
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import (
    ActivityLog,
    AppUser,
    ChecklistItem,
    DeliveryOrder,
    FormRequestBarang,
    GoodsPreparationChecklist,
    Item,
    Notification,
    Project,
    PurchaseOrder,
    PurchaseRequest,
    RejectionReport,
    StockMovement,
    Supplier,
)
from procurement.roles import Actor, Capability, Role, capabilities_for, parse_role
from procurement.services import (
    activity,
    delivery,
    frb as frb_service,
    master_data,
    purchase_order,
    purchase_request,
    reports,
    stock_ledger,
)


def _user(username: str, role: Role) -> AppUser:
    return AppUser.objects.create(
        username=username,
        name=username.title(),
        role=role.value,
        create_by_id="tester",
        update_by_id="tester",
    )


def _actor(user: AppUser) -> Actor:
    return Actor(user_id=user.user_id, name=user.name, role=user.role_enum)


class RoleTableTests(SimpleTestCase):
    def test_parse_role_accepts_aliases(self) -> None:
        self.assertEqual(parse_role("pm"), Role.PROJECT_MANAGER)
        self.assertEqual(parse_role("Director"), Role.DIREKTUR)
        self.assertEqual(parse_role("gudang"), Role.WAREHOUSE)
        self.assertIsNone(parse_role("VIEWER"))
        self.assertIsNone(parse_role(""))

    def test_admin_holds_every_capability(self) -> None:
        self.assertEqual(capabilities_for(["ADMIN"]), set(Capability))

    def test_warehouse_cannot_decide_or_order(self) -> None:
        caps = capabilities_for(["WAREHOUSE"])
        self.assertNotIn(Capability.FRB_DECIDE, caps)
        self.assertNotIn(Capability.PO_MANAGE, caps)
        self.assertIn(Capability.STOCK_ADJUST, caps)

    def test_resulting_status_table(self) -> None:
        self.assertEqual(frb_service.resulting_status(True, False), rules.FRB_FULLY_STOCKED)
        self.assertEqual(frb_service.resulting_status(True, True), rules.FRB_PARTIALLY_STOCKED)
        self.assertEqual(frb_service.resulting_status(False, True), rules.FRB_IN_PURCHASING_PROCESS)
        self.assertEqual(frb_service.resulting_status(False, False), rules.FRB_COMPLETED)

    def test_sanitize_for_log_strips_control_characters(self) -> None:
        self.assertEqual(sanitize_for_log("line\nbreak\r"), "line[LF]break[CR]")
        self.assertEqual(sanitize_for_log(None), "[None]")


class WorkflowTestCase(TestCase):
    """Shared fixtures: one user per role, a project, a supplier and an item."""

    def setUp(self) -> None:
        self.pm_user = _user("pm", Role.PROJECT_MANAGER)
        self.director_user = _user("direktur", Role.DIREKTUR)
        self.purchasing_user = _user("purchasing", Role.PURCHASING)
        self.warehouse_user = _user("warehouse", Role.WAREHOUSE)
        self.admin_user = _user("admin", Role.ADMIN)

        self.pm = _actor(self.pm_user)
        self.director = _actor(self.director_user)
        self.purchasing = _actor(self.purchasing_user)
        self.warehouse = _actor(self.warehouse_user)
        self.admin = _actor(self.admin_user)

        self.project = Project.objects.create(
            project_name="Gedung A",
            pm=self.pm_user,
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
            supplier_name="PT Baja",
            create_by_id="tester",
            update_by_id="tester",
        )

    def _frb_payload(self, qty: int = 15, item: Item | None = None) -> dict:
        return {
            "project_id": self.project.project_id,
            "delivery_deadline": "2026-12-01",
            "recipient_name": "Site Foreman",
            "recipient_contact": "0812000000",
            "delivery_address": "Jl. Sudirman 1",
            "items": [{"item_id": (item or self.bolt).item_id, "requested_qty": qty}],
        }

    def _approved_frb(self, qty: int = 15) -> int:
        created = frb_service.create_frb(self.pm, self._frb_payload(qty))
        frb_service.director_decide(created["frb_id"], self.director, approve=True)
        return created["frb_id"]

    def _validated_frb(self, qty: int = 15) -> dict:
        frb_id = self._approved_frb(qty)
        return frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: qty})

    def _stock(self, item: Item | None = None) -> int:
        return Item.objects.get(item_id=(item or self.bolt).item_id).current_stock

    def _frb_status(self, frb_id: int) -> str:
        return FormRequestBarang.objects.get(frb_id=frb_id).status_code

    def _prepare(self, do: dict, qty: int) -> None:
        delivery.record_checklist(
            do["do_id"], self.warehouse, [{"item_id": self.bolt.item_id, "prepared_qty": qty}]
        )

    def _accept(self, do: dict) -> dict:
        return delivery.record_ttb(
            do["do_id"], self.warehouse, True, {"recipient_signature_ref": "sig/001.png"}
        )


class FRBLifecycleTests(WorkflowTestCase):
    def test_create_submits_to_director(self) -> None:
        result = frb_service.create_frb(self.pm, self._frb_payload())

        self.assertEqual(result["status_code"], rules.FRB_AWAITING_DIRECTOR_APPROVAL)
        self.assertTrue(result["frb_no"].startswith("FRB-"))
        self.assertEqual(result["items"][0]["requested_qty"], 15)
        self.assertEqual(result["items"][0]["estimated_unit_price"], "2500.00")
        self.assertEqual(result["total_requested_value"], "37500.00")

    def test_draft_then_submit(self) -> None:
        draft = frb_service.create_frb(self.pm, self._frb_payload(), as_draft=True)
        self.assertEqual(draft["status_code"], rules.FRB_DRAFT)

        submitted = frb_service.submit_frb(draft["frb_id"], self.pm)

        self.assertEqual(submitted["status_code"], rules.FRB_AWAITING_DIRECTOR_APPROVAL)

    def test_create_rejects_bad_lines(self) -> None:
        payload = self._frb_payload()
        payload["items"] = [{"item_id": self.bolt.item_id, "requested_qty": 0}]
        with self.assertRaises(ValidationError) as ctx:
            frb_service.create_frb(self.pm, payload)
        self.assertEqual(ctx.exception.field, "requested_qty")

        payload["items"] = [
            {"item_id": self.bolt.item_id, "requested_qty": 1},
            {"item_id": self.bolt.item_id, "requested_qty": 2},
        ]
        with self.assertRaises(ValidationError):
            frb_service.create_frb(self.pm, payload)

        payload["items"] = []
        with self.assertRaises(ValidationError):
            frb_service.create_frb(self.pm, payload)
        self.assertFalse(FormRequestBarang.objects.exists())

    def test_create_requires_recipient(self) -> None:
        payload = self._frb_payload()
        payload["recipient_name"] = "  "

        with self.assertRaises(ValidationError) as ctx:
            frb_service.create_frb(self.pm, payload)

        self.assertEqual(ctx.exception.field, "recipient_name")

    def test_pm_cannot_request_for_foreign_project(self) -> None:
        other_pm = _user("other-pm", Role.PROJECT_MANAGER)
        payload = self._frb_payload()

        with self.assertRaises(PermissionDenied):
            frb_service.create_frb(_actor(other_pm), payload)

    def test_warehouse_cannot_create_frb(self) -> None:
        with self.assertRaises(PermissionDenied):
            frb_service.create_frb(self.warehouse, self._frb_payload())

    def test_pm_cannot_decide(self) -> None:
        created = frb_service.create_frb(self.pm, self._frb_payload())

        with self.assertRaises(PermissionDenied):
            frb_service.director_decide(created["frb_id"], self.pm, approve=True)
        self.assertEqual(self._frb_status(created["frb_id"]), rules.FRB_AWAITING_DIRECTOR_APPROVAL)

    def test_rejection_requires_reason(self) -> None:
        created = frb_service.create_frb(self.pm, self._frb_payload())

        with self.assertRaises(ValidationError) as ctx:
            frb_service.director_decide(created["frb_id"], self.director, approve=False, reason=" ")

        self.assertEqual(ctx.exception.field, "reason")
        self.assertEqual(self._frb_status(created["frb_id"]), rules.FRB_AWAITING_DIRECTOR_APPROVAL)

    def test_rejected_frb_can_be_edited_and_resubmitted(self) -> None:
        created = frb_service.create_frb(self.pm, self._frb_payload())
        rejected = frb_service.director_decide(
            created["frb_id"], self.director, approve=False, reason="Budget exceeded"
        )
        self.assertEqual(rejected["status_code"], rules.FRB_REJECTED_BY_DIRECTOR)
        self.assertEqual(rejected["director_rejection_reason"], "Budget exceeded")

        updated = frb_service.update_frb(
            created["frb_id"],
            self.pm,
            {"items": [{"item_id": self.bolt.item_id, "requested_qty": 8}]},
        )

        self.assertEqual(updated["status_code"], rules.FRB_AWAITING_DIRECTOR_APPROVAL)
        self.assertIsNone(updated["director_rejection_reason"])
        self.assertEqual([line["requested_qty"] for line in updated["items"]], [8])
        self.assertEqual(updated["recipient_name"], "Site Foreman")

    def test_approved_frb_cannot_be_edited(self) -> None:
        frb_id = self._approved_frb()

        with self.assertRaises(InvalidTransition):
            frb_service.update_frb(frb_id, self.pm, {"recipient_name": "Someone else"})

    def test_only_owner_edits(self) -> None:
        created = frb_service.create_frb(self.pm, self._frb_payload(), as_draft=True)
        other_pm = _user("other-pm", Role.PROJECT_MANAGER)

        with self.assertRaises(PermissionDenied):
            frb_service.submit_frb(created["frb_id"], _actor(other_pm))

    def test_decision_twice_is_invalid(self) -> None:
        frb_id = self._approved_frb()

        with self.assertRaises(InvalidTransition):
            frb_service.director_decide(frb_id, self.director, approve=True)

    def test_pm_only_lists_own_frbs(self) -> None:
        frb_service.create_frb(self.pm, self._frb_payload())
        other_pm = _user("other-pm", Role.PROJECT_MANAGER)

        self.assertEqual(len(frb_service.list_frbs(self.pm)), 1)
        self.assertEqual(frb_service.list_frbs(_actor(other_pm)), [])
        self.assertEqual(len(frb_service.list_frbs(self.director)), 1)

    def test_unknown_frb_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            frb_service.director_decide(999, self.director, approve=True)


class PurchasingValidationTests(WorkflowTestCase):
    def test_split_between_stock_and_purchase(self) -> None:
        outcome = self._validated_frb(15)

        self.assertFalse(outcome["replayed"])
        self.assertEqual(outcome["frb"]["status_code"], rules.FRB_PARTIALLY_STOCKED)
        self.assertEqual(len(outcome["delivery_orders"]), 1)
        self.assertEqual(outcome["delivery_orders"][0]["items"][0]["delivered_qty"], 10)
        self.assertEqual(len(outcome["purchase_requests"]), 1)
        pr = outcome["purchase_requests"][0]
        self.assertEqual(pr["items"][0]["quantity_to_purchase"], 5)
        self.assertEqual(pr["status_code"], rules.PR_AWAITING_DIRECTOR_APPROVAL)
        # Validation does not reserve stock.
        self.assertEqual(self._stock(), 10)

    def test_fully_in_stock(self) -> None:
        outcome = self._validated_frb(4)

        self.assertEqual(outcome["frb"]["status_code"], rules.FRB_FULLY_STOCKED)
        self.assertEqual(outcome["purchase_requests"], [])

    def test_nothing_in_stock(self) -> None:
        self.bolt.current_stock = 0
        self.bolt.save()

        outcome = self._validated_frb(6)

        self.assertEqual(outcome["frb"]["status_code"], rules.FRB_IN_PURCHASING_PROCESS)
        self.assertEqual(outcome["delivery_orders"], [])
        self.assertEqual(outcome["purchase_requests"][0]["items"][0]["quantity_to_purchase"], 6)

    def test_zero_approved_completes(self) -> None:
        frb_id = self._approved_frb(3)

        outcome = frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 0})

        self.assertEqual(outcome["frb"]["status_code"], rules.FRB_COMPLETED)
        self.assertFalse(DeliveryOrder.objects.exists())

    def test_approved_cannot_exceed_request(self) -> None:
        frb_id = self._approved_frb(3)

        with self.assertRaises(ValidationError) as ctx:
            frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 4})

        self.assertEqual(ctx.exception.field, "approved_qty")
        self.assertEqual(self._frb_status(frb_id), rules.FRB_APPROVED_BY_DIRECTOR)

    def test_list_form_of_approved_quantities(self) -> None:
        frb_id = self._approved_frb(15)

        outcome = frb_service.purchasing_validate(
            frb_id, self.purchasing, [{"item_id": self.bolt.item_id, "approved_qty": 12}]
        )

        self.assertEqual(outcome["frb"]["items"][0]["approved_qty"], 12)
        self.assertEqual(outcome["purchase_requests"][0]["items"][0]["quantity_to_purchase"], 2)

    def test_replay_returns_original_outcome(self) -> None:
        frb_id = self._approved_frb(15)
        first = frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 15})

        second = frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 15})

        self.assertTrue(second["replayed"])
        self.assertEqual(
            [do["do_no"] for do in second["delivery_orders"]],
            [do["do_no"] for do in first["delivery_orders"]],
        )
        self.assertEqual(DeliveryOrder.objects.count(), 1)
        self.assertEqual(PurchaseRequest.objects.count(), 1)

    def test_revalidation_with_other_quantities_is_rejected(self) -> None:
        frb_id = self._approved_frb(15)
        frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 15})

        with self.assertRaises(InvalidTransition):
            frb_service.purchasing_validate(frb_id, self.purchasing, {self.bolt.item_id: 9})
        self.assertEqual(DeliveryOrder.objects.count(), 1)

    def test_cannot_validate_before_director_approval(self) -> None:
        created = frb_service.create_frb(self.pm, self._frb_payload())

        with self.assertRaises(InvalidTransition):
            frb_service.purchasing_validate(created["frb_id"], self.purchasing)

    def test_begin_validation_claims_frb(self) -> None:
        frb_id = self._approved_frb()

        result = frb_service.begin_validation(frb_id, self.purchasing)

        self.assertEqual(result["status_code"], rules.FRB_IN_PURCHASING_VALIDATION)
        outcome = frb_service.purchasing_validate(frb_id, self.purchasing)
        self.assertEqual(outcome["frb"]["status_code"], rules.FRB_PARTIALLY_STOCKED)

    def test_director_cannot_validate(self) -> None:
        frb_id = self._approved_frb()

        with self.assertRaises(PermissionDenied):
            frb_service.purchasing_validate(frb_id, self.director)


class PurchaseOrderTests(WorkflowTestCase):
    def _approved_pr_id(self) -> int:
        outcome = self._validated_frb(15)
        pr_id = outcome["purchase_requests"][0]["pr_id"]
        purchase_request.director_decide_pr(pr_id, self.director, approve=True)
        return pr_id

    def _po(self) -> dict:
        return purchase_request.create_po(
            self._approved_pr_id(), self.purchasing, self.supplier.supplier_id, "2026-11-20"
        )

    def test_create_po_totals_estimated_prices(self) -> None:
        po = self._po()

        self.assertEqual(po["status_code"], rules.PO_ORDERED)
        self.assertEqual(po["total_price"], "12500.00")
        self.assertEqual(
            PurchaseRequest.objects.get(pr_id=po["pr_id"]).status_code, rules.PR_PROCESSED
        )

    def test_po_only_from_approved_pr(self) -> None:
        outcome = self._validated_frb(15)
        pr_id = outcome["purchase_requests"][0]["pr_id"]

        with self.assertRaises(InvalidTransition):
            purchase_request.create_po(pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20")

    def test_pr_ordered_only_once(self) -> None:
        pr_id = self._approved_pr_id()
        purchase_request.create_po(pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20")

        with self.assertRaises(InvalidTransition):
            purchase_request.create_po(pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20")

    def test_inactive_supplier_rejected(self) -> None:
        pr_id = self._approved_pr_id()
        self.supplier.status_code = "I"
        self.supplier.save()

        with self.assertRaises(ValidationError) as ctx:
            purchase_request.create_po(pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20")

        self.assertEqual(ctx.exception.field, "supplier_id")

    def test_warehouse_cannot_order(self) -> None:
        pr_id = self._approved_pr_id()

        with self.assertRaises(PermissionDenied):
            purchase_request.create_po(pr_id, self.warehouse, self.supplier.supplier_id, "2026-11-20")

    def test_full_receipt_stocks_items(self) -> None:
        po = self._po()

        result = purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 5}]
        )

        self.assertEqual(result["po"]["status_code"], rules.PO_FULLY_RECEIVED)
        self.assertIsNotNone(result["po"]["actual_delivery_date"])
        self.assertEqual(result["grn"]["overall_condition"], rules.GRN_CONDITION_GOOD)
        self.assertEqual(self._stock(), 15)

    def test_partial_receipts_accumulate(self) -> None:
        po = self._po()

        first = purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 2}]
        )
        self.assertEqual(first["po"]["status_code"], rules.PO_PARTIALLY_RECEIVED)

        second = purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 3}]
        )
        self.assertEqual(second["po"]["status_code"], rules.PO_FULLY_RECEIVED)
        self.assertEqual(len(second["po"]["goods_receipt_nos"]), 2)
        self.assertEqual(self._stock(), 15)

    def test_over_receipt_rejected(self) -> None:
        po = self._po()

        with self.assertRaises(ValidationError) as ctx:
            purchase_order.record_grn(
                po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 6}]
            )

        self.assertEqual(ctx.exception.field, "received_qty")
        self.assertEqual(self._stock(), 10)

    def test_damaged_above_received_rejected(self) -> None:
        po = self._po()

        with self.assertRaises(ValidationError) as ctx:
            purchase_order.record_grn(
                po["po_id"],
                self.warehouse,
                [{"item_id": self.bolt.item_id, "received_qty": 3, "damaged_qty": 4}],
            )

        self.assertEqual(ctx.exception.field, "damaged_qty")
        self.assertEqual(self._stock(), 10)
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, rules.PO_ORDERED)

    def test_damaged_units_cannot_be_received_as_good(self) -> None:
        po = self._po()

        with self.assertRaises(ValidationError) as ctx:
            purchase_order.record_grn(
                po["po_id"],
                self.warehouse,
                [
                    {
                        "item_id": self.bolt.item_id,
                        "received_qty": 5,
                        "damaged_qty": 2,
                        "condition_at_receipt": rules.RECEIPT_GOOD,
                    }
                ],
            )

        self.assertEqual(ctx.exception.field, "condition_at_receipt")
        self.assertEqual(self._stock(), 10)
        self.assertEqual(PurchaseOrder.objects.get(po_id=po["po_id"]).status_code, rules.PO_ORDERED)

    def test_returned_damage_is_not_stocked(self) -> None:
        po = self._po()

        result = purchase_order.record_grn(
            po["po_id"],
            self.warehouse,
            [
                {
                    "item_id": self.bolt.item_id,
                    "received_qty": 5,
                    "damaged_qty": 2,
                    "condition_at_receipt": rules.RECEIPT_MAJOR_DAMAGE,
                    "action_taken": rules.ACTION_RETURNED_TO_SUPPLIER,
                }
            ],
        )

        self.assertEqual(self._stock(), 13)
        self.assertEqual(result["po"]["status_code"], rules.PO_PARTIALLY_RECEIVED)
        self.assertEqual(result["grn"]["overall_condition"], rules.GRN_CONDITION_PARTIALLY_DAMAGED)

        replacement = purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 2}]
        )
        self.assertEqual(replacement["po"]["status_code"], rules.PO_FULLY_RECEIVED)
        self.assertEqual(self._stock(), 15)

    def test_repaired_units_enter_stock_on_release(self) -> None:
        po = self._po()
        result = purchase_order.record_grn(
            po["po_id"],
            self.warehouse,
            [
                {
                    "item_id": self.bolt.item_id,
                    "received_qty": 5,
                    "damaged_qty": 2,
                    "action_taken": rules.ACTION_TO_BE_REPAIRED,
                }
            ],
        )
        line = result["grn"]["items"][0]
        self.assertEqual(line["stocked_qty"], 3)
        self.assertEqual(self._stock(), 13)

        released = purchase_order.release_repaired(line["grn_item_id"], self.warehouse, 2)

        self.assertEqual(released["pending_repair_qty"], 0)
        self.assertEqual(released["current_stock"], 15)
        with self.assertRaises(ValidationError):
            purchase_order.release_repaired(line["grn_item_id"], self.warehouse, 1)

    def test_release_requires_repair_line(self) -> None:
        po = self._po()
        result = purchase_order.record_grn(
            po["po_id"],
            self.warehouse,
            [{"item_id": self.bolt.item_id, "received_qty": 5, "damaged_qty": 1}],
        )

        with self.assertRaises(InvalidTransition):
            purchase_order.release_repaired(result["grn"]["items"][0]["grn_item_id"], self.warehouse, 1)

    def test_received_po_cannot_receive_again(self) -> None:
        po = self._po()
        purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 5}]
        )

        with self.assertRaises(InvalidTransition):
            purchase_order.record_grn(
                po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 1}]
            )

    def test_ship_then_cancel(self) -> None:
        po = self._po()

        shipped = purchase_order.mark_shipped(po["po_id"], self.purchasing)
        self.assertEqual(shipped["status_code"], rules.PO_SHIPPED)

        with self.assertRaises(ValidationError):
            purchase_order.cancel_po(po["po_id"], self.purchasing, "")

        canceled = purchase_order.cancel_po(po["po_id"], self.purchasing, "Supplier out of stock")
        self.assertEqual(canceled["status_code"], rules.PO_CANCELED)
        self.assertIn("Supplier out of stock", canceled["notes_text"])


class DeliveryTests(WorkflowTestCase):
    def test_end_to_end_bolt_request(self) -> None:
        outcome = self._validated_frb(15)
        frb_id = outcome["frb"]["frb_id"]
        first_do = outcome["delivery_orders"][0]
        pr_id = outcome["purchase_requests"][0]["pr_id"]

        purchase_request.director_decide_pr(pr_id, self.director, approve=True)
        po = purchase_request.create_po(
            pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20"
        )
        self.assertEqual(po["total_price"], "12500.00")
        purchase_order.record_grn(
            po["po_id"], self.warehouse, [{"item_id": self.bolt.item_id, "received_qty": 5}]
        )
        self.assertEqual(self._stock(), 15)

        self._prepare(first_do, 10)
        self.assertEqual(self._stock(), 5)
        delivery.mark_sent(first_do["do_id"], self.warehouse)
        self._accept(first_do)
        self.assertEqual(self._frb_status(frb_id), rules.FRB_PARTIALLY_STOCKED)

        fulfilled = frb_service.fulfil_purchased_items(frb_id, self.purchasing)
        self.assertEqual(fulfilled["frb"]["status_code"], rules.FRB_FULLY_STOCKED)
        second_do = fulfilled["delivery_orders"][0]
        self.assertEqual(second_do["source_pr_id"], pr_id)
        self.assertEqual(second_do["items"][0]["delivered_qty"], 5)

        self._prepare(second_do, 5)
        self.assertEqual(self._stock(), 0)
        self._accept(second_do)

        self.assertEqual(self._frb_status(frb_id), rules.FRB_COMPLETED)

    def test_fulfil_waits_for_full_receipt(self) -> None:
        outcome = self._validated_frb(15)

        with self.assertRaises(InvalidTransition):
            frb_service.fulfil_purchased_items(outcome["frb"]["frb_id"], self.purchasing)

    def test_checklist_cannot_exceed_do(self) -> None:
        do = self._validated_frb(4)["delivery_orders"][0]

        with self.assertRaises(ValidationError) as ctx:
            self._prepare(do, 5)

        self.assertEqual(ctx.exception.field, "prepared_qty")
        self.assertEqual(self._stock(), 10)

    def test_checklist_must_prepare_whole_do(self) -> None:
        outcome = self._validated_frb(10)
        do = outcome["delivery_orders"][0]

        with self.assertRaises(ValidationError) as ctx:
            self._prepare(do, 3)

        self.assertEqual(ctx.exception.field, "prepared_qty")
        self.assertEqual(self._stock(), 10)
        self.assertFalse(GoodsPreparationChecklist.objects.exists())
        self.assertEqual(
            DeliveryOrder.objects.get(do_id=do["do_id"]).status_code, rules.DO_CREATED
        )
        self.assertEqual(self._frb_status(outcome["frb"]["frb_id"]), rules.FRB_FULLY_STOCKED)

    def test_checklist_must_cover_every_do_line(self) -> None:
        nut = Item.objects.create(
            item_name="Nut M8",
            unit="pcs",
            current_stock=3,
            create_by_id="tester",
            update_by_id="tester",
        )
        payload = self._frb_payload()
        payload["items"] = [
            {"item_id": self.bolt.item_id, "requested_qty": 4},
            {"item_id": nut.item_id, "requested_qty": 3},
        ]
        created = frb_service.create_frb(self.pm, payload)
        frb_service.director_decide(created["frb_id"], self.director, approve=True)
        do = frb_service.purchasing_validate(created["frb_id"], self.purchasing)["delivery_orders"][0]

        with self.assertRaises(ValidationError) as ctx:
            self._prepare(do, 4)

        self.assertEqual(ctx.exception.field, "items")
        self.assertEqual(self._stock(), 10)
        self.assertEqual(self._stock(nut), 3)

    def test_completion_counts_accepted_quantities(self) -> None:
        outcome = self._validated_frb(4)
        frb_id = outcome["frb"]["frb_id"]
        do = outcome["delivery_orders"][0]
        self._prepare(do, 4)
        # The shipped line ends up one unit short of the approved quantity.
        ChecklistItem.objects.filter(checklist__delivery_order_id=do["do_id"]).update(prepared_qty=3)

        ttb = self._accept(do)

        self.assertEqual(ttb["items"][0]["delivered_qty"], 3)
        self.assertEqual(
            DeliveryOrder.objects.get(do_id=do["do_id"]).status_code, rules.DO_DELIVERED
        )
        self.assertEqual(self._frb_status(frb_id), rules.FRB_FULLY_STOCKED)

    def test_checklist_short_of_stock_changes_nothing(self) -> None:
        nut = Item.objects.create(
            item_name="Nut M8",
            unit="pcs",
            current_stock=3,
            estimated_unit_price=Decimal("500.00"),
            create_by_id="tester",
            update_by_id="tester",
        )
        payload = self._frb_payload()
        payload["items"] = [
            {"item_id": self.bolt.item_id, "requested_qty": 4},
            {"item_id": nut.item_id, "requested_qty": 3},
        ]
        created = frb_service.create_frb(self.pm, payload)
        frb_service.director_decide(created["frb_id"], self.director, approve=True)
        outcome = frb_service.purchasing_validate(created["frb_id"], self.purchasing)
        do = outcome["delivery_orders"][0]
        # Stock moved out from under the DO before preparation.
        stock_ledger.adjust(nut.item_id, 2, stock_ledger.SUBTRACT, reason="Site use")

        with self.assertRaises(StockInsufficient):
            delivery.record_checklist(
                do["do_id"],
                self.warehouse,
                [
                    {"item_id": self.bolt.item_id, "prepared_qty": 4},
                    {"item_id": nut.item_id, "prepared_qty": 3},
                ],
            )

        self.assertEqual(self._stock(), 10)
        self.assertEqual(self._stock(nut), 1)
        self.assertFalse(GoodsPreparationChecklist.objects.exists())
        self.assertEqual(
            DeliveryOrder.objects.get(do_id=do["do_id"]).status_code, rules.DO_CREATED
        )

    def test_rejection_returns_stock(self) -> None:
        outcome = self._validated_frb(10)
        do = outcome["delivery_orders"][0]
        self._prepare(do, 10)
        self.assertEqual(self._stock(), 0)

        ttb = delivery.record_ttb(
            do["do_id"],
            self.warehouse,
            False,
            {"reason_for_rejection": "DAMAGED", "detailed_reason": "Threads stripped"},
        )

        self.assertEqual(ttb["status_code"], rules.TTB_REJECTED)
        self.assertEqual(ttb["rejection_report"]["reconciliation_status"], rules.RECON_PENDING)
        self.assertEqual(self._stock(), 10)
        self.assertEqual(
            DeliveryOrder.objects.get(do_id=do["do_id"]).status_code, rules.DO_REJECTED_BY_RECIPIENT
        )
        self.assertEqual(self._frb_status(outcome["frb"]["frb_id"]), rules.FRB_REJECTED_BY_RECIPIENT)
        movements = StockMovement.objects.filter(item=self.bolt).order_by("movement_id")
        self.assertEqual(
            [(m.direction, m.quantity) for m in movements],
            [(stock_ledger.SUBTRACT, 10), (stock_ledger.ADD, 10)],
        )

    def _reject_delivery(self, do: dict) -> dict:
        return delivery.record_ttb(
            do["do_id"],
            self.warehouse,
            False,
            {"reason_for_rejection": "DAMAGED", "detailed_reason": "Threads stripped"},
        )

    def test_recipient_rejection_withdraws_pending_pr(self) -> None:
        outcome = self._validated_frb(15)
        pr_id = outcome["purchase_requests"][0]["pr_id"]
        do = outcome["delivery_orders"][0]
        self._prepare(do, 10)

        with self.captureOnCommitCallbacks(execute=True):
            self._reject_delivery(do)

        pr = PurchaseRequest.objects.get(pr_id=pr_id)
        self.assertEqual(pr.status_code, rules.PR_REJECTED)
        self.assertIn("rejected by the recipient", pr.director_rejection_reason)
        note = Notification.objects.get(user=self.purchasing_user, message__contains=pr.pr_no)
        self.assertIn("withdrawn", note.message)
        with self.assertRaises(InvalidTransition):
            purchase_request.director_decide_pr(pr_id, self.director, approve=True)

    def test_no_order_after_recipient_rejection(self) -> None:
        outcome = self._validated_frb(15)
        pr_id = outcome["purchase_requests"][0]["pr_id"]
        purchase_request.director_decide_pr(pr_id, self.director, approve=True)
        do = outcome["delivery_orders"][0]
        self._prepare(do, 10)
        self._reject_delivery(do)

        with self.assertRaises(InvalidTransition) as ctx:
            purchase_request.create_po(
                pr_id, self.purchasing, self.supplier.supplier_id, "2026-11-20"
            )

        self.assertEqual(ctx.exception.field, "status")
        self.assertFalse(PurchaseOrder.objects.filter(pr_id=pr_id).exists())
        self.assertEqual(
            PurchaseRequest.objects.get(pr_id=pr_id).status_code, rules.PR_APPROVED
        )

    def test_rejection_needs_reason(self) -> None:
        do = self._validated_frb(4)["delivery_orders"][0]
        self._prepare(do, 4)

        with self.assertRaises(ValidationError):
            delivery.record_ttb(do["do_id"], self.warehouse, False, {"reason_for_rejection": "DAMAGED"})
        with self.assertRaises(ValidationError):
            delivery.record_ttb(
                do["do_id"], self.warehouse, False,
                {"reason_for_rejection": "BROKEN", "detailed_reason": "x"},
            )
        self.assertEqual(self._stock(), 6)

    def test_acceptance_needs_signature(self) -> None:
        do = self._validated_frb(4)["delivery_orders"][0]
        self._prepare(do, 4)

        with self.assertRaises(ValidationError) as ctx:
            delivery.record_ttb(do["do_id"], self.warehouse, True, {})

        self.assertEqual(ctx.exception.field, "recipient_signature_ref")

    def test_ttb_requires_prepared_do(self) -> None:
        do = self._validated_frb(4)["delivery_orders"][0]

        with self.assertRaises(InvalidTransition):
            self._accept(do)

    def test_one_ttb_per_do(self) -> None:
        do = self._validated_frb(4)["delivery_orders"][0]
        self._prepare(do, 4)
        self._accept(do)

        with self.assertRaises(InvalidTransition):
            self._accept(do)

    def test_fully_stocked_frb_completes_on_acceptance(self) -> None:
        outcome = self._validated_frb(4)
        do = outcome["delivery_orders"][0]
        self._prepare(do, 4)

        ttb = self._accept(do)

        self.assertEqual(ttb["items"][0]["delivered_qty"], 4)
        self.assertEqual(self._frb_status(outcome["frb"]["frb_id"]), rules.FRB_COMPLETED)

    def test_rejected_pr_does_not_block_completion(self) -> None:
        outcome = self._validated_frb(15)
        frb_id = outcome["frb"]["frb_id"]
        purchase_request.director_decide_pr(
            outcome["purchase_requests"][0]["pr_id"], self.director, approve=False, reason="Too costly"
        )
        self.assertEqual(self._frb_status(frb_id), rules.FRB_PARTIALLY_STOCKED)

        do = outcome["delivery_orders"][0]
        self._prepare(do, 10)
        self._accept(do)

        self.assertEqual(self._frb_status(frb_id), rules.FRB_COMPLETED)


class ReconciliationTests(WorkflowTestCase):
    def _report_id(self) -> int:
        do = self._validated_frb(4)["delivery_orders"][0]
        self._prepare(do, 4)
        ttb = delivery.record_ttb(
            do["do_id"],
            self.warehouse,
            False,
            {"reason_for_rejection": "WRONG_ITEM", "detailed_reason": "M10 instead of M8"},
        )
        return ttb["rejection_report"]["report_id"]

    def test_start_then_resolve(self) -> None:
        report_id = self._report_id()

        started = delivery.start_reconciliation(report_id, self.purchasing)
        self.assertEqual(started["reconciliation_status"], rules.RECON_IN_PROGRESS)

        with self.assertRaises(ValidationError):
            delivery.resolve_reconciliation(report_id, self.purchasing, "")

        resolved = delivery.resolve_reconciliation(report_id, self.purchasing, "Reshipped correct bolts")
        self.assertEqual(resolved["reconciliation_status"], rules.RECON_RESOLVED)
        self.assertEqual(resolved["resolved_by_id"], self.purchasing.user_id)

        with self.assertRaises(InvalidTransition):
            delivery.start_reconciliation(report_id, self.purchasing)

    def test_resolution_leaves_stock_alone(self) -> None:
        report_id = self._report_id()

        delivery.resolve_reconciliation(report_id, self.warehouse, "Written off")

        self.assertEqual(self._stock(), 10)

    def test_director_cannot_reconcile(self) -> None:
        report_id = self._report_id()

        with self.assertRaises(PermissionDenied):
            delivery.start_reconciliation(report_id, self.director)
        self.assertEqual(
            RejectionReport.objects.get(report_id=report_id).reconciliation_status,
            rules.RECON_PENDING,
        )


class StockLedgerTests(WorkflowTestCase):
    def test_adjust_records_movement(self) -> None:
        balance = stock_ledger.adjust(
            self.bolt.item_id, 3, stock_ledger.SUBTRACT, actor=self.warehouse, reference_no="DO-1"
        )

        self.assertEqual(balance, 7)
        movement = StockMovement.objects.get(item=self.bolt)
        self.assertEqual(movement.balance_after, 7)
        self.assertEqual(movement.actor_user_id, self.warehouse.audit_id)

    def test_subtract_never_goes_negative(self) -> None:
        with self.assertRaises(StockInsufficient) as ctx:
            stock_ledger.adjust(self.bolt.item_id, 11, stock_ledger.SUBTRACT)

        self.assertEqual(ctx.exception.available, 10)
        self.assertEqual(self._stock(), 10)
        self.assertFalse(StockMovement.objects.exists())
        self.assertFalse(stock_ledger.try_adjust(self.bolt.item_id, 11, stock_ledger.SUBTRACT))
        self.assertTrue(stock_ledger.try_adjust(self.bolt.item_id, 10, stock_ledger.SUBTRACT))
        self.assertEqual(self._stock(), 0)

    def test_balance_tracks_mixed_sequence(self) -> None:
        steps = [
            (stock_ledger.SUBTRACT, 4, True, 6),
            (stock_ledger.SUBTRACT, 7, False, 6),
            (stock_ledger.ADD, 3, True, 9),
            (stock_ledger.SUBTRACT, 9, True, 0),
            (stock_ledger.SUBTRACT, 1, False, 0),
            (stock_ledger.ADD, 12, True, 12),
            (stock_ledger.SUBTRACT, 13, False, 12),
        ]
        for direction, qty, applied, balance in steps:
            with self.subTest(direction=direction, quantity=qty):
                self.assertEqual(stock_ledger.try_adjust(self.bolt.item_id, qty, direction), applied)
                self.assertEqual(self._stock(), balance)
        self.assertEqual(StockMovement.objects.filter(item=self.bolt).count(), 4)
        last = StockMovement.objects.filter(item=self.bolt).order_by("-movement_id").first()
        self.assertEqual(last.balance_after, 12)

    def test_quantity_must_be_positive_whole_number(self) -> None:
        for bad in (0, -1, 1.5, "two", True):
            with self.subTest(quantity=bad):
                with self.assertRaises(ValidationError):
                    stock_ledger.adjust(self.bolt.item_id, bad, stock_ledger.ADD)

    def test_unknown_item(self) -> None:
        with self.assertRaises(NotFound):
            stock_ledger.adjust(999, 1, stock_ledger.ADD)

    def test_manual_adjustment_requires_reason(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            stock_ledger.manual_adjustment(self.warehouse, self.bolt.item_id, 2, stock_ledger.ADD, " ")
        self.assertEqual(ctx.exception.field, "reason")

        result = stock_ledger.manual_adjustment(
            self.warehouse, self.bolt.item_id, 2, stock_ledger.ADD, "Stock opname"
        )
        self.assertEqual(result["current_stock"], 12)
        movements = stock_ledger.list_movements(self.bolt.item_id)
        self.assertEqual(movements[0]["reason_text"], "Stock opname")
        self.assertEqual(movements[0]["reference_no"], "MANUAL")

    def test_purchasing_cannot_adjust_stock(self) -> None:
        with self.assertRaises(PermissionDenied):
            stock_ledger.manual_adjustment(
                self.purchasing, self.bolt.item_id, 2, stock_ledger.ADD, "Stock opname"
            )


class MasterDataTests(WorkflowTestCase):
    def test_create_item_books_initial_stock(self) -> None:
        item = master_data.create_item(
            self.warehouse,
            {"item_name": "Washer", "unit": "pcs", "initial_stock": 7, "estimated_unit_price": "150"},
        )

        self.assertEqual(item["current_stock"], 7)
        movement = StockMovement.objects.get(item_id=item["item_id"])
        self.assertEqual(movement.reference_no, "INITIAL")

    def test_item_edit_cannot_touch_stock(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            master_data.update_item(self.bolt.item_id, self.admin, {"current_stock": 99})

        self.assertEqual(ctx.exception.field, "current_stock")
        self.assertEqual(self._stock(), 10)

    def test_low_stock_filter(self) -> None:
        Item.objects.create(
            item_name="Rivet",
            unit="pcs",
            current_stock=2,
            create_by_id="tester",
            update_by_id="tester",
        )

        names = [i["item_name"] for i in master_data.list_items(self.pm, low_stock_only=True)]

        self.assertEqual(names, ["Rivet"])

    def test_duplicate_username(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            master_data.create_user(
                self.admin, {"username": "pm", "name": "Another", "role": "PROJECT_MANAGER"}
            )

        self.assertEqual(ctx.exception.field, "username")

    def test_admin_cannot_deactivate_self(self) -> None:
        with self.assertRaises(ValidationError):
            master_data.update_user(self.admin.user_id, self.admin, {"is_active": False})

    def test_pm_sees_only_own_projects(self) -> None:
        other_pm = _user("other-pm", Role.PROJECT_MANAGER)
        Project.objects.create(
            project_name="Gedung B", pm=other_pm, create_by_id="tester", update_by_id="tester"
        )

        names = [p["project_name"] for p in master_data.list_projects(self.pm)]

        self.assertEqual(names, ["Gedung A"])


class DocumentNumberTests(WorkflowTestCase):
    def test_numbers_increment_per_day(self) -> None:
        today = timezone.localdate().strftime("%Y%m%d")

        first = frb_service.create_frb(self.pm, self._frb_payload())
        second = frb_service.create_frb(self.pm, self._frb_payload())

        self.assertEqual(first["frb_no"], f"FRB-{today}-001")
        self.assertEqual(second["frb_no"], f"FRB-{today}-002")

    @patch("procurement.services.numbering.time.sleep")
    def test_collision_is_retried(self, sleep_mock) -> None:
        existing = frb_service.create_frb(self.pm, self._frb_payload())["frb_no"]
        fresh = existing[:-3] + "042"

        with patch(
            "procurement.services.numbering.generate_document_no",
            side_effect=[existing, fresh],
        ):
            created = frb_service.create_frb(self.pm, self._frb_payload())

        self.assertEqual(created["frb_no"], fresh)
        sleep_mock.assert_called_once()

    @override_settings(SIPB_DOCUMENT_NO_RETRY_ATTEMPTS=2)
    @patch("procurement.services.numbering.time.sleep")
    def test_collision_exhausts_retries(self, _sleep_mock) -> None:
        existing = frb_service.create_frb(self.pm, self._frb_payload())["frb_no"]

        with patch(
            "procurement.services.numbering.generate_document_no",
            return_value=existing,
        ):
            with self.assertRaises(WorkflowError) as ctx:
                frb_service.create_frb(self.pm, self._frb_payload())

        self.assertEqual(ctx.exception.code, "duplicate_document_no")
        self.assertEqual(FormRequestBarang.objects.count(), 1)


class ActivityAndNotificationTests(WorkflowTestCase):
    def test_submission_notifies_director(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            created = frb_service.create_frb(self.pm, self._frb_payload())

        note = Notification.objects.get(user=self.director_user)
        self.assertEqual(note.message, f"New FRB {created['frb_no']} requires approval.")
        self.assertEqual(activity.unread_count(self.director), 1)
        entry = ActivityLog.objects.get()
        self.assertEqual(entry.related_document_no, created["frb_no"])
        self.assertEqual(entry.user_role, Role.PROJECT_MANAGER.value)

    def test_rolled_back_mutation_leaves_no_trail(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(PermissionDenied):
                frb_service.create_frb(self.warehouse, self._frb_payload())

        self.assertFalse(ActivityLog.objects.exists())
        self.assertFalse(Notification.objects.exists())

    def test_audit_failure_does_not_undo_mutation(self) -> None:
        with patch.object(ActivityLog.objects, "create", side_effect=DatabaseError("disk full")):
            with self.captureOnCommitCallbacks(execute=True):
                created = frb_service.create_frb(self.pm, self._frb_payload())

        self.assertTrue(FormRequestBarang.objects.filter(frb_id=created["frb_id"]).exists())

    def test_mark_read(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            frb_service.create_frb(self.pm, self._frb_payload())
        note = Notification.objects.get(user=self.director_user)

        with self.assertRaises(PermissionDenied):
            activity.mark_read(self.pm, note.notification_id)

        result = activity.mark_read(self.director, note.notification_id)
        self.assertTrue(result["is_read"])
        self.assertEqual(activity.unread_count(self.director), 0)

    def test_mark_all_read(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            frb_service.create_frb(self.pm, self._frb_payload())
            frb_service.create_frb(self.pm, self._frb_payload())

        self.assertEqual(activity.mark_all_read(self.director), 2)
        self.assertEqual(activity.list_notifications(self.director, unread_only=True), [])

    def test_activity_view_is_admin_only(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            frb_service.create_frb(self.pm, self._frb_payload())

        with self.assertRaises(PermissionDenied):
            activity.list_activity(self.pm)
        self.assertEqual(len(activity.list_activity(self.admin)), 1)


class FeedTests(WorkflowTestCase):
    def _subscribe(self, collection: str, order_by: str | None = None) -> feed.Subscription:
        sub = feed.subscribe(collection, order_by)
        self.addCleanup(sub.close)
        return sub

    def test_snapshot_is_ordered(self) -> None:
        Item.objects.create(
            item_name="Anchor", unit="pcs", create_by_id="tester", update_by_id="tester"
        )
        sub = self._subscribe("items")

        self.assertEqual([row["item_name"] for row in sub.snapshot()], ["Anchor", "Bolt M8"])

    def test_stock_changes_are_streamed_in_order(self) -> None:
        sub = self._subscribe("items")

        with self.captureOnCommitCallbacks(execute=True):
            stock_ledger.adjust(self.bolt.item_id, 2, stock_ledger.SUBTRACT)
        with self.captureOnCommitCallbacks(execute=True):
            stock_ledger.adjust(self.bolt.item_id, 5, stock_ledger.ADD)

        events = sub.drain()
        self.assertEqual([e["data"]["current_stock"] for e in events], [8, 13])
        self.assertTrue(all(e["type"] == feed.UPDATED for e in events))

    def test_workflow_document_events(self) -> None:
        sub = self._subscribe("frbs")

        with self.captureOnCommitCallbacks(execute=True):
            created = frb_service.create_frb(self.pm, self._frb_payload())
        with self.captureOnCommitCallbacks(execute=True):
            frb_service.director_decide(created["frb_id"], self.director, approve=True)

        events = sub.drain()
        self.assertEqual(events[0]["type"], feed.CREATED)
        self.assertEqual(events[-1]["data"]["status_code"], rules.FRB_APPROVED_BY_DIRECTOR)

    def test_rolled_back_change_is_not_streamed(self) -> None:
        sub = self._subscribe("items")

        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(StockInsufficient):
                stock_ledger.adjust(self.bolt.item_id, 50, stock_ledger.SUBTRACT)

        self.assertEqual(sub.drain(), [])

    def test_notifications_are_streamed(self) -> None:
        sub = self._subscribe("notifications")

        with self.captureOnCommitCallbacks(execute=True):
            frb_service.create_frb(self.pm, self._frb_payload())

        events = sub.drain()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["data"]["user"], self.director_user.user_id)

    def test_closed_subscription_stops_receiving(self) -> None:
        sub = feed.subscribe("items")
        sub.close()

        with self.captureOnCommitCallbacks(execute=True):
            stock_ledger.adjust(self.bolt.item_id, 1, stock_ledger.ADD)

        self.assertTrue(sub.closed)
        self.assertEqual(sub.drain(), [])

    @override_settings(SIPB_FEED_QUEUE_SIZE=1)
    def test_overflow_closes_the_subscription(self) -> None:
        sub = self._subscribe("items")

        with self.captureOnCommitCallbacks(execute=True):
            stock_ledger.adjust(self.bolt.item_id, 1, stock_ledger.ADD)
            stock_ledger.adjust(self.bolt.item_id, 1, stock_ledger.ADD)

        self.assertTrue(sub.overflowed)
        self.assertTrue(sub.closed)
        self.assertNotIn(sub, feed._listeners("items"))
        self.assertEqual(len(sub.drain()), 1)

        with self.captureOnCommitCallbacks(execute=True):
            stock_ledger.adjust(self.bolt.item_id, 1, stock_ledger.ADD)
        self.assertEqual(sub.drain(), [])

    def test_unknown_collection_or_order(self) -> None:
        with self.assertRaises(ValidationError):
            feed.subscribe("invoices")
        with self.assertRaises(ValidationError):
            feed.subscribe("items", "-colour")


class SystemSummaryTests(WorkflowTestCase):
    def test_counts(self) -> None:
        frb_service.create_frb(self.pm, self._frb_payload())
        self._validated_frb(15)

        summary = reports.system_summary(self.admin)

        self.assertEqual(summary["frb_total"], 2)
        self.assertEqual(summary["frb_awaiting_director"], 1)
        self.assertEqual(summary["frb_by_status"][rules.FRB_PARTIALLY_STOCKED], 1)
        self.assertEqual(summary["pr_total"], 1)
        self.assertEqual(summary["do_total"], 1)
        self.assertEqual(summary["low_stock_items"], 0)

    def test_requires_reports_capability(self) -> None:
        with self.assertRaises(PermissionDenied):
            reports.system_summary(self.warehouse)
