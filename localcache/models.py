from django.conf import settings
from django.db import models


class CacheSlot(models.Model):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="cache_slots"
    )
    key = models.CharField(max_length=64)
    payload = models.JSONField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("owner", "key")]

    def __str__(self):
        return f"{self.owner_id}:{self.key}"
