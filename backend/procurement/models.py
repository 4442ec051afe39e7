"""
Django models for the SIPB procurement and inventory workflow.

Master data (users, projects, items, suppliers), the stock movement ledger and
the workflow documents FRB -> PR -> PO -> DO -> GRN / Checklist -> TTB ->
Rejection Report, plus the append-only activity log and notification feed.
"""

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from procurement import rules
from procurement.roles import ROLE_CHOICES, Role


# =============================================================================
# Base Model with Audit Fields
# =============================================================================

class AuditedModel(models.Model):
    """
    Abstract base model providing common audit fields.
    ``version_nbr`` is bumped on every workflow update.
    """
    create_by_id = models.CharField(max_length=20)
    create_dtime = models.DateTimeField(auto_now_add=True)
    update_by_id = models.CharField(max_length=20)
    update_dtime = models.DateTimeField(auto_now=True)
    version_nbr = models.IntegerField(default=1)

    class Meta:
        abstract = True


# =============================================================================
# Master Data
# =============================================================================

class AppUser(AuditedModel):
    """Application user and the single role that drives their capabilities."""
    user_id = models.AutoField(primary_key=True)
    username = models.CharField(max_length=60, unique=True)
    name = models.CharField(max_length=120)
    email = models.EmailField(max_length=120, null=True, blank=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'app_user'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.role})"

    @property
    def role_enum(self) -> Role:
        return Role(self.role)


class Project(AuditedModel):
    project_id = models.AutoField(primary_key=True)
    project_name = models.CharField(max_length=150)
    pm = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='projects')
    project_po_ref = models.CharField(max_length=255, null=True, blank=True)

    class Meta:
        db_table = 'project'
        ordering = ['project_name']

    def __str__(self):
        return self.project_name


class Item(AuditedModel):
    """
    Stock-keeping item. ``current_stock`` is only written by
    ``procurement.services.stock_ledger``.
    """
    item_id = models.AutoField(primary_key=True)
    item_name = models.CharField(max_length=150)
    description = models.CharField(max_length=500, null=True, blank=True)
    unit = models.CharField(max_length=25)
    current_stock = models.PositiveIntegerField(default=0)
    estimated_unit_price = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))]
    )

    class Meta:
        db_table = 'item'
        ordering = ['item_name']

    def __str__(self):
        return f"{self.item_name} ({self.current_stock} {self.unit})"


class StockMovement(models.Model):
    """Append-only record of every stock adjustment."""
    DIRECTION_CHOICES = [
        ('ADD', 'Add'),
        ('SUBTRACT', 'Subtract'),
    ]

    movement_id = models.AutoField(primary_key=True)
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='movements')
    direction = models.CharField(max_length=10, choices=DIRECTION_CHOICES)
    quantity = models.PositiveIntegerField()
    balance_after = models.PositiveIntegerField()
    reason_text = models.CharField(max_length=255, null=True, blank=True)
    reference_no = models.CharField(max_length=30, null=True, blank=True)
    actor_user_id = models.CharField(max_length=20)
    movement_dtime = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'stock_movement'
        ordering = ['-movement_dtime', '-movement_id']
        indexes = [
            models.Index(fields=['item']),
            models.Index(fields=['reference_no']),
        ]

    def __str__(self):
        return f"{self.direction} {self.quantity} of item {self.item_id}"


class Supplier(AuditedModel):
    STATUS_CHOICES = [
        ('A', 'Active'),
        ('I', 'Inactive'),
    ]

    supplier_id = models.AutoField(primary_key=True)
    supplier_name = models.CharField(max_length=120)
    contact_person = models.CharField(max_length=80, null=True, blank=True)
    phone_no = models.CharField(max_length=30, null=True, blank=True)
    email_text = models.EmailField(max_length=100, null=True, blank=True)
    status_code = models.CharField(max_length=1, choices=STATUS_CHOICES, default='A')

    class Meta:
        db_table = 'supplier'
        ordering = ['supplier_name']

    def __str__(self):
        return self.supplier_name


# =============================================================================
# Form Request Barang
# =============================================================================

class FormRequestBarang(AuditedModel):
    """Goods request raised by a project manager for one project."""
    frb_id = models.AutoField(primary_key=True)
    frb_no = models.CharField(max_length=30, unique=True)
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='frbs')
    pm = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='frbs')
    submission_date = models.DateTimeField()
    delivery_deadline = models.DateField()
    recipient_name = models.CharField(max_length=120)
    recipient_contact = models.CharField(max_length=60)
    delivery_address = models.CharField(max_length=255)
    project_po_ref = models.CharField(max_length=255, null=True, blank=True)
    status_code = models.CharField(
        max_length=30, choices=rules.FRB_STATUS_CHOICES, default=rules.FRB_DRAFT
    )

    director_approval_date = models.DateTimeField(null=True, blank=True)
    director_rejection_reason = models.TextField(null=True, blank=True)

    purchasing_validation_date = models.DateTimeField(null=True, blank=True)
    purchasing_validation_notes = models.TextField(null=True, blank=True)
    validated_by = models.ForeignKey(
        AppUser,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='validated_frbs'
    )
    # Digest of the approved quantities; replays with the same digest are no-ops.
    validation_fingerprint = models.CharField(max_length=64, null=True, blank=True)

    class Meta:
        db_table = 'frb'
        ordering = ['-submission_date']
        indexes = [
            models.Index(fields=['status_code']),
            models.Index(fields=['pm']),
        ]

    def __str__(self):
        return f"{self.frb_no} ({self.status_code})"

    @property
    def total_requested_value(self) -> Decimal:
        total = Decimal('0.00')
        for line in self.items.all():
            total += line.requested_qty * line.estimated_unit_price
        return total


class FRBItem(AuditedModel):
    frb_item_id = models.AutoField(primary_key=True)
    frb = models.ForeignKey(FormRequestBarang, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='frb_lines')
    requested_qty = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    approved_qty = models.PositiveIntegerField(null=True, blank=True)
    # Snapshot of Item.estimated_unit_price when the line was written.
    estimated_unit_price = models.DecimalField(max_digits=15, decimal_places=2)

    class Meta:
        db_table = 'frb_item'
        unique_together = [['frb', 'item']]
        ordering = ['frb', 'frb_item_id']

    def __str__(self):
        return f"{self.frb.frb_no} - Item {self.item_id}"


# =============================================================================
# Purchasing
# =============================================================================

class PurchaseRequest(AuditedModel):
    """Request to buy the stock shortfall of a validated FRB."""
    pr_id = models.AutoField(primary_key=True)
    pr_no = models.CharField(max_length=30, unique=True)
    frb = models.ForeignKey(
        FormRequestBarang,
        on_delete=models.PROTECT,
        related_name='purchase_requests'
    )
    pm = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='+')
    purchasing = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='purchase_requests')
    request_date = models.DateTimeField()
    status_code = models.CharField(
        max_length=30,
        choices=rules.PR_STATUS_CHOICES,
        default=rules.PR_AWAITING_DIRECTOR_APPROVAL
    )
    director_approval_date = models.DateTimeField(null=True, blank=True)
    director_rejection_reason = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'purchase_request'
        ordering = ['-request_date']
        indexes = [
            models.Index(fields=['status_code']),
            models.Index(fields=['frb']),
        ]

    def __str__(self):
        return f"{self.pr_no} ({self.status_code})"


class PRItem(AuditedModel):
    pr_item_id = models.AutoField(primary_key=True)
    pr = models.ForeignKey(PurchaseRequest, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='pr_lines')
    quantity_to_purchase = models.PositiveIntegerField(validators=[MinValueValidator(1)])

    class Meta:
        db_table = 'pr_item'
        unique_together = [['pr', 'item']]
        ordering = ['pr', 'pr_item_id']

    def __str__(self):
        return f"{self.pr.pr_no} - Item {self.item_id}"


class PurchaseOrder(AuditedModel):
    """Supplier order for exactly one approved purchase request."""
    po_id = models.AutoField(primary_key=True)
    po_no = models.CharField(max_length=30, unique=True)
    pr = models.OneToOneField(PurchaseRequest, on_delete=models.PROTECT, related_name='purchase_order')
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name='purchase_orders')
    order_date = models.DateTimeField()
    expected_delivery_date = models.DateField()
    actual_delivery_date = models.DateTimeField(null=True, blank=True)
    total_price = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    status_code = models.CharField(
        max_length=30, choices=rules.PO_STATUS_CHOICES, default=rules.PO_ORDERED
    )
    shipped_at = models.DateTimeField(null=True, blank=True)
    notes_text = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'purchase_order'
        ordering = ['-order_date']
        indexes = [
            models.Index(fields=['status_code']),
        ]

    def __str__(self):
        return f"{self.po_no} ({self.status_code})"


# =============================================================================
# Delivery
# =============================================================================

class DeliveryOrder(AuditedModel):
    """
    Internal fulfilment instruction for an FRB. ``source_pr`` is set when the
    goods come from a received purchase rather than existing stock.
    """
    do_id = models.AutoField(primary_key=True)
    do_no = models.CharField(max_length=30, unique=True)
    frb = models.ForeignKey(FormRequestBarang, on_delete=models.PROTECT, related_name='delivery_orders')
    purchasing = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='delivery_orders')
    source_pr = models.ForeignKey(
        PurchaseRequest,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='delivery_orders'
    )
    creation_date = models.DateTimeField()
    status_code = models.CharField(
        max_length=30, choices=rules.DO_STATUS_CHOICES, default=rules.DO_CREATED
    )
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'delivery_order'
        ordering = ['-creation_date']
        indexes = [
            models.Index(fields=['status_code']),
            models.Index(fields=['frb']),
        ]

    def __str__(self):
        return f"{self.do_no} ({self.status_code})"


class DOItem(AuditedModel):
    do_item_id = models.AutoField(primary_key=True)
    delivery_order = models.ForeignKey(DeliveryOrder, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='do_lines')
    delivered_qty = models.PositiveIntegerField(validators=[MinValueValidator(1)])

    class Meta:
        db_table = 'do_item'
        unique_together = [['delivery_order', 'item']]
        ordering = ['delivery_order', 'do_item_id']

    def __str__(self):
        return f"{self.delivery_order.do_no} - Item {self.item_id}"


# =============================================================================
# Goods Receipt
# =============================================================================

class GoodsReceipt(AuditedModel):
    grn_id = models.AutoField(primary_key=True)
    grn_no = models.CharField(max_length=30, unique=True)
    po = models.ForeignKey(PurchaseOrder, on_delete=models.PROTECT, related_name='goods_receipts')
    warehouse = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='goods_receipts')
    receipt_date = models.DateTimeField()
    overall_condition = models.CharField(max_length=20, choices=rules.GRN_CONDITION_CHOICES)
    notes_text = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'goods_receipt'
        ordering = ['-receipt_date']

    def __str__(self):
        return f"{self.grn_no} for {self.po.po_no}"


class GRNItem(AuditedModel):
    """
    Received line. Undamaged units always enter stock; damaged units enter
    only when accepted, or later through a repair release.
    """
    grn_item_id = models.AutoField(primary_key=True)
    grn = models.ForeignKey(GoodsReceipt, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='grn_lines')
    received_qty = models.PositiveIntegerField()
    condition_at_receipt = models.CharField(max_length=20, choices=rules.RECEIPT_CONDITION_CHOICES)
    damaged_qty = models.PositiveIntegerField(default=0)
    action_taken = models.CharField(
        max_length=25, choices=rules.ACTION_TAKEN_CHOICES, default=rules.ACTION_ACCEPTED
    )
    repaired_qty = models.PositiveIntegerField(default=0)
    photo_ref = models.CharField(max_length=500, null=True, blank=True)

    class Meta:
        db_table = 'grn_item'
        ordering = ['grn', 'grn_item_id']

    def __str__(self):
        return f"{self.grn.grn_no} - Item {self.item_id}"

    @property
    def stocked_qty(self) -> int:
        if self.action_taken == rules.ACTION_ACCEPTED:
            return self.received_qty
        if self.action_taken == rules.ACTION_TO_BE_REPAIRED:
            return self.received_qty - self.damaged_qty + self.repaired_qty
        return self.received_qty - self.damaged_qty

    @property
    def returned_qty(self) -> int:
        if self.action_taken == rules.ACTION_RETURNED_TO_SUPPLIER:
            return self.damaged_qty
        return 0


# =============================================================================
# Preparation Checklist
# =============================================================================

class GoodsPreparationChecklist(AuditedModel):
    checklist_id = models.AutoField(primary_key=True)
    checklist_no = models.CharField(max_length=30, unique=True)
    delivery_order = models.OneToOneField(
        DeliveryOrder, on_delete=models.PROTECT, related_name='checklist'
    )
    warehouse = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='checklists')
    check_date = models.DateTimeField()
    overall_status = models.CharField(max_length=20, choices=rules.CHECKLIST_STATUS_CHOICES)

    class Meta:
        db_table = 'goods_preparation_checklist'
        ordering = ['-check_date']

    def __str__(self):
        return f"{self.checklist_no} for {self.delivery_order.do_no}"


class ChecklistItem(AuditedModel):
    checklist_item_id = models.AutoField(primary_key=True)
    checklist = models.ForeignKey(
        GoodsPreparationChecklist, on_delete=models.CASCADE, related_name='items'
    )
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='checklist_lines')
    prepared_qty = models.PositiveIntegerField()
    condition_status = models.CharField(max_length=20, choices=rules.ITEM_CONDITION_CHOICES)
    functionality_status = models.CharField(max_length=20, choices=rules.ITEM_FUNCTIONALITY_CHOICES)
    notes_text = models.CharField(max_length=500, null=True, blank=True)
    photo_ref = models.CharField(max_length=500, null=True, blank=True)

    class Meta:
        db_table = 'checklist_item'
        ordering = ['checklist', 'checklist_item_id']

    def __str__(self):
        return f"{self.checklist.checklist_no} - Item {self.item_id}"


# =============================================================================
# Tanda Terima Barang & Reconciliation
# =============================================================================

class TandaTerimaBarang(AuditedModel):
    """Recipient's acceptance or rejection of a delivery order."""
    ttb_id = models.AutoField(primary_key=True)
    ttb_no = models.CharField(max_length=30, unique=True)
    delivery_order = models.OneToOneField(DeliveryOrder, on_delete=models.PROTECT, related_name='ttb')
    warehouse = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='ttbs')
    recipient_name = models.CharField(max_length=120)
    recipient_contact = models.CharField(max_length=60, null=True, blank=True)
    delivery_address = models.CharField(max_length=255, null=True, blank=True)
    recipient_signature_ref = models.CharField(max_length=500, null=True, blank=True)
    photo_refs = models.JSONField(default=list, blank=True)
    recipient_statement = models.TextField(null=True, blank=True)
    acceptance_date = models.DateTimeField()
    status_code = models.CharField(max_length=10, choices=rules.TTB_STATUS_CHOICES)

    class Meta:
        db_table = 'ttb'
        ordering = ['-acceptance_date']

    def __str__(self):
        return f"{self.ttb_no} ({self.status_code})"


class TTBItem(AuditedModel):
    ttb_item_id = models.AutoField(primary_key=True)
    ttb = models.ForeignKey(TandaTerimaBarang, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='ttb_lines')
    delivered_qty = models.PositiveIntegerField()
    condition_at_acceptance = models.CharField(
        max_length=20, choices=rules.ITEM_CONDITION_CHOICES, default='GOOD'
    )

    class Meta:
        db_table = 'ttb_item'
        ordering = ['ttb', 'ttb_item_id']

    def __str__(self):
        return f"{self.ttb.ttb_no} - Item {self.item_id}"


class RejectionReport(AuditedModel):
    report_id = models.AutoField(primary_key=True)
    report_no = models.CharField(max_length=30, unique=True)
    ttb = models.OneToOneField(TandaTerimaBarang, on_delete=models.PROTECT, related_name='rejection_report')
    warehouse = models.ForeignKey(AppUser, on_delete=models.PROTECT, related_name='rejection_reports')
    reporting_date = models.DateTimeField()
    reason_code = models.CharField(max_length=20, choices=rules.REJECTION_REASON_CHOICES)
    detailed_reason = models.TextField()
    photo_refs = models.JSONField(default=list, blank=True)
    reconciliation_status = models.CharField(
        max_length=20,
        choices=rules.RECONCILIATION_STATUS_CHOICES,
        default=rules.RECON_PENDING
    )
    resolution_notes = models.TextField(null=True, blank=True)
    resolution_date = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        AppUser,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_reports'
    )

    class Meta:
        db_table = 'rejection_report'
        ordering = ['-reporting_date']
        indexes = [
            models.Index(fields=['reconciliation_status']),
        ]

    def __str__(self):
        return f"{self.report_no} ({self.reconciliation_status})"


# =============================================================================
# Activity & Notifications
# =============================================================================

class ActivityLog(models.Model):
    """
    Immutable audit trail. User name and role are copied at write time so the
    entry survives later edits to the user.
    """
    log_id = models.AutoField(primary_key=True)
    user = models.ForeignKey(
        AppUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='activity'
    )
    user_name = models.CharField(max_length=120)
    user_role = models.CharField(max_length=20)
    action = models.CharField(max_length=255)
    related_document_no = models.CharField(max_length=30, null=True, blank=True)
    details = models.JSONField(null=True, blank=True)
    action_dtime = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'activity_log'
        ordering = ['-action_dtime', '-log_id']
        indexes = [
            models.Index(fields=['action_dtime']),
            models.Index(fields=['related_document_no']),
        ]

    def __str__(self):
        return f"{self.action} by {self.user_name} at {self.action_dtime}"


class Notification(models.Model):
    notification_id = models.AutoField(primary_key=True)
    user = models.ForeignKey(AppUser, on_delete=models.CASCADE, related_name='notifications')
    message = models.CharField(max_length=500)
    link = models.CharField(max_length=255, null=True, blank=True)
    is_read = models.BooleanField(default=False)
    create_dtime = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'notification'
        ordering = ['-create_dtime', '-notification_id']
        indexes = [
            models.Index(fields=['user', 'is_read']),
        ]

    def __str__(self):
        return f"To {self.user_id}: {self.message[:40]}"
