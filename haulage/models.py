import datetime
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from accounts.models import Organisation

User = settings.AUTH_USER_MODEL


class BaseModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Job(BaseModel):
    """
    Haulage order - the core business entity.
    Never physically deleted: cancellation is a status plus a soft-delete marker.
    """

    class Status(models.TextChoices):
        # Declaration order is the happy path of a job. CANCELLED stays last
        # and sits outside the ordered sequence (see services.status_flow).
        PLANNED = "planned", "Planned"
        ASSIGNED = "assigned", "Assigned"
        ACCEPTED = "accepted", "Accepted"
        ON_ROUTE_COLLECTION = "on_route_collection", "On Route to Collection"
        AT_COLLECTION = "at_collection", "At Collection"
        LOADED = "loaded", "Loaded"
        ON_ROUTE_DELIVERY = "on_route_delivery", "On Route to Delivery"
        AT_DELIVERY = "at_delivery", "At Delivery"
        DELIVERED = "delivered", "Delivered"
        POD_RECEIVED = "pod_received", "POD Received"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    org = models.ForeignKey(Organisation, on_delete=models.PROTECT, related_name="jobs")

    order_number = models.CharField(
        max_length=50,
        help_text="Human-facing reference, unique per organisation",
    )
    status = models.CharField(
        max_length=30, choices=Status.choices, default=Status.PLANNED
    )

    # Assignment
    assigned_driver = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="assigned_jobs",
        limit_choices_to={"role": "driver"},
    )

    # Financial (admin/office only)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )

    collection_date = models.DateField(null=True, blank=True)
    delivery_date = models.DateField(null=True, blank=True)

    notes = models.TextField(null=True, blank=True)

    # Audit
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_jobs",
    )

    # Milestones
    last_status_update_at = models.DateTimeField(null=True, blank=True)
    overdue_notification_sent = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    # Bumped on every committed mutation; callers may send it back to detect
    # concurrent writers.
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["org", "order_number"], name="unique_order_number_per_org"
            )
        ]

    def __str__(self):
        return f"{self.order_number} - {self.get_status_display()}"  # type: ignore

    @property
    def is_terminal(self):
        return self.status in (
            self.Status.DELIVERED,
            self.Status.POD_RECEIVED,
            self.Status.CANCELLED,
        )

    def _transition(self, new_status, **extra_fields):
        """
        Internal helper to change job status.

        All status changes go through the services, which call this once the
        matching progress log rows are written.
        """
        self.status = new_status
        for key, value in extra_fields.items():
            setattr(self, key, value)
        self.version += 1
        self.save()


class JobStop(BaseModel):
    """Collection or delivery point on a job route."""

    class StopType(models.TextChoices):
        COLLECTION = "collection", "Collection"
        DELIVERY = "delivery", "Delivery"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    org = models.ForeignKey(
        Organisation, on_delete=models.PROTECT, related_name="job_stops"
    )
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name="stops")

    type = models.CharField(max_length=20, choices=StopType.choices)
    seq = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Position within the job's stops of the same type: 1,2,3 ..",
    )

    # Address
    name = models.CharField(max_length=200, blank=True)
    address_line1 = models.CharField(max_length=200)
    address_line2 = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100)
    postcode = models.CharField(max_length=12)

    # Time window (HH:MM)
    window_from = models.TimeField(null=True, blank=True)
    window_to = models.TimeField(null=True, blank=True)

    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["type", "seq"]
        constraints = [
            models.UniqueConstraint(
                fields=["job", "type", "seq"], name="unique_stop_seq_per_type"
            )
        ]

    def __str__(self):
        return f"{self.get_type_display()} {self.seq}: {self.name or self.address_line1}"  # type: ignore

    def clean(self):
        super().clean()
        start, end = self.window_from, self.window_to
        both_set = isinstance(start, datetime.time) and isinstance(end, datetime.time)
        if both_set and start > end:
            raise ValidationError(
                {"window_to": "Window end must not be before window start."}
            )


class JobProgressLog(models.Model):
    """
    Append-only record of one status transition or auxiliary event.

    Only visible_in_timeline may change after creation.
    """

    class ActionType(models.TextChoices):
        NOTE_ADDED = "note_added", "Note Added"
        DOCUMENT_UPLOADED = "document_uploaded", "Document Uploaded"
        DRIVER_REASSIGNED = "driver_reassigned", "Driver Reassigned"
        STOP_ADDED = "stop_added", "Stop Added"
        STOP_UPDATED = "stop_updated", "Stop Updated"
        STOP_DELETED = "stop_deleted", "Stop Deleted"
        STOP_DETAILS_UPDATED = "stop_details_updated", "Stop Details Updated"
        USER_CREATED = "user_created", "User Created"

    MUTABLE_FIELDS = frozenset({"visible_in_timeline"})

    org = models.ForeignKey(
        Organisation, on_delete=models.PROTECT, related_name="progress_logs"
    )
    job = models.ForeignKey(Job, on_delete=models.PROTECT, related_name="progress_logs")
    # Deleted stops keep their id here.
    stop = models.ForeignKey(
        JobStop,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name="progress_logs",
    )

    actor = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="progress_logs",
    )
    actor_role = models.CharField(max_length=20)

    # A Job.Status value or an ActionType value
    action_type = models.CharField(max_length=40, db_index=True)
    timestamp = models.DateTimeField(help_text="When the event happened (may be backdated)")
    notes = models.TextField(null=True, blank=True)

    visible_in_timeline = models.BooleanField(default=True)
    is_backfill = models.BooleanField(
        default=False, help_text="Logged automatically for a skipped status"
    )

    lat = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    lon = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [models.Index(fields=["job", "timestamp"], name="progress_job_ts_idx")]

    def __str__(self):
        return f"{self.job_id} {self.action_type} @ {self.timestamp:%Y-%m-%d %H:%M}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if not update_fields or set(update_fields) - self.MUTABLE_FIELDS:
                raise ValueError(
                    "Progress log entries are immutable; only visible_in_timeline may change."
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Progress log entries cannot be deleted.")


class Document(BaseModel):
    """Stored file (POD, signature, photo, paperwork) attached to a job."""

    class DocumentType(models.TextChoices):
        POD = "pod", "Proof of Delivery"
        SIGNATURE = "signature", "Signature"
        PHOTO = "photo", "Photo"
        PAPERWORK = "paperwork", "Paperwork"
        OTHER = "other", "Other"

    # Types that count as proof of delivery for a delivery stop
    PROOF_OF_DELIVERY_TYPES = (DocumentType.POD.value, DocumentType.SIGNATURE.value)

    org = models.ForeignKey(Organisation, on_delete=models.PROTECT, related_name="documents")
    job = models.ForeignKey(Job, on_delete=models.PROTECT, related_name="documents")
    stop = models.ForeignKey(
        JobStop,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name="documents",
    )
    type = models.CharField(
        max_length=20, choices=DocumentType.choices, default=DocumentType.OTHER
    )

    file = models.FileField(upload_to="documents/%Y/%m/%d/")
    original_filename = models.CharField(max_length=255, blank=True)

    uploaded_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="uploaded_documents",
    )

    def save(self, *args, **kwargs):
        """Auto-populate original_filename from uploaded file if not set."""
        if self.file and not self.original_filename:
            self.original_filename = self.file.name
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.job.order_number} - {self.get_type_display()} ({self.original_filename})"  # type: ignore

    @property
    def storage_path(self):
        return self.file.url


class AuditLog(models.Model):
    """Before/after snapshot of an administrative mutation. Append-only."""

    org = models.ForeignKey(Organisation, on_delete=models.PROTECT, related_name="audit_logs")
    actor = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    entity = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=64)
    action = models.CharField(max_length=60)
    before = models.JSONField(default=dict, blank=True)
    after = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.entity}:{self.entity_id} {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit log entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit log entries cannot be deleted.")


class Notification(BaseModel):
    """In-app notification for office staff or drivers."""

    org = models.ForeignKey(
        Organisation, on_delete=models.CASCADE, related_name="notifications"
    )
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notifications")
    title = models.CharField(max_length=200)
    message = models.TextField()
    link_to = models.CharField(max_length=255, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user_id}: {self.title}"
