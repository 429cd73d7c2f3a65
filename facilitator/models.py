from django.db import models
from django.utils import timezone


class KeyValueEntry(models.Model):
    """A JSON document with an optional expiry, addressed by string key."""

    # Nonce keys are ``nonce:<network>:<0x..>``; seller keys are capped at 512 + prefix.
    key = models.CharField(max_length=1024, primary_key=True)
    value = models.TextField()
    expires_at = models.DateTimeField(blank=True, null=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']
        verbose_name_plural = 'key value entries'

    def __str__(self) -> str:
        return self.key

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or timezone.now())
