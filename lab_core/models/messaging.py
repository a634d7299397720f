from django.conf import settings
from django.db import models

from .base import TimeStampedModel


class Message(TimeStampedModel):
    """Direct or broadcast staff message. Only the read flag ever changes."""

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="sent_messages"
    )
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="received_messages",
    )
    content = models.TextField()
    is_general = models.BooleanField(default=False, db_index=True)
    is_read = models.BooleanField(default=False, db_index=True)

    def __str__(self):
        target = "all" if self.is_general else self.receiver_id
        return f"{self.sender_id} -> {target}: {self.content[:40]}"

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["receiver", "is_read"], name="message_receiver_read_idx"),
        ]
