from django.contrib.auth.models import AbstractUser
from django.core.validators import RegexValidator
from django.db import models


class Organisation(models.Model):
    """Haulage company. Every job, stop, log and user belongs to exactly one."""

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=80, unique=True)
    order_prefix = models.CharField(
        max_length=10,
        blank=True,
        help_text="Prefix for system allocated order numbers (blank = site default)",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class User(AbstractUser):
    """Custom user model extending Django's AbstractUser."""

    # Django’s enum pattern for model fields.
    class Role(models.TextChoices):
        # actual value stored in the database, human-readable name
        ADMIN = "admin", "Admin"
        OFFICE = "office", "Office"
        DRIVER = "driver", "Driver"

    role = models.CharField(
        choices=Role.choices,
        default=Role.OFFICE,
        max_length=20,
        help_text="User role for permission management",
    )
    org = models.ForeignKey(
        Organisation,
        on_delete=models.PROTECT,
        related_name="members",
        null=True,
        blank=True,
    )
    email = models.EmailField(unique=True)
    phone_regex = RegexValidator(regex=r"^\+\d{10,15}$")
    phone = models.CharField(
        validators=[phone_regex], max_length=20, null=True, blank=True
    )

    # timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.full_name} ({self.username})"

    @property
    def full_name(self):
        return self.get_full_name() or self.username
