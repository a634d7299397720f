# lab_core/services/messaging.py
from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from rest_framework.exceptions import ValidationError

from lab_core.models import Message
from lab_core.services.events import NEW_MESSAGE, publish_event


def send_message(*, sender, content: str, receiver_id=None, is_general: bool = False) -> Message:
    content = (content or "").strip()
    if not content:
        raise ValidationError({"content": "Message content is required."})

    receiver = None
    if not is_general:
        if not receiver_id:
            raise ValidationError({"receiver_id": "A receiver is required unless the message is general."})
        User = get_user_model()
        receiver = User.objects.filter(pk=receiver_id, is_active=True).first()
        if receiver is None:
            raise ValidationError({"receiver_id": "Receiver not found."})

    with transaction.atomic():
        message = Message.objects.create(
            sender=sender,
            receiver=receiver,
            content=content,
            is_general=bool(is_general),
        )
        publish_event(
            NEW_MESSAGE,
            {
                "message_id": message.pk,
                "sender_id": sender.pk,
                "receiver_id": receiver.pk if receiver else None,
                "is_general": message.is_general,
            },
        )
    return message


def history_for(user, peer_id=None):
    """Own conversations plus broadcasts, oldest first."""
    qs = Message.objects.filter(Q(sender=user) | Q(receiver=user) | Q(is_general=True))
    if peer_id:
        qs = qs.filter(
            Q(sender=user, receiver_id=peer_id) | Q(sender_id=peer_id, receiver=user)
        )
    return qs.select_related("sender", "receiver").order_by("created_at", "id")


def unread_count(user) -> int:
    return Message.objects.filter(receiver=user, is_read=False).count()


def mark_thread_read(user, peer_id) -> int:
    if not peer_id:
        raise ValidationError({"peer_id": "peer_id is required."})
    return Message.objects.filter(sender_id=peer_id, receiver=user, is_read=False).update(is_read=True)
