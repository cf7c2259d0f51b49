from django.contrib.auth.models import AbstractUser
from django.db import models

from apps.orders.statuses import ELEVATED_ROLES, UserRole


class User(AbstractUser):
    """Marketplace account. ``role`` decides which order transitions it may take."""

    role = models.CharField(max_length=32, choices=UserRole.choices, default=UserRole.CUSTOMER)

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES
