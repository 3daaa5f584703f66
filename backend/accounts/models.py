from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    HIKER = "hiker"
    GUIDE = "guide"
    ROLES = [
        (HIKER, "Hiker"),
        (GUIDE, "Guide"),
    ]

    display_name = models.CharField(max_length=120, blank=True)
    role = models.CharField(max_length=10, choices=ROLES, default=HIKER)

    @property
    def is_guide(self) -> bool:
        return self.role == self.GUIDE

    @property
    def name_for_messages(self) -> str:
        return self.display_name or self.get_full_name() or self.email
