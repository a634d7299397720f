# lab_core/views_messages.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from lab_core.serializers import MarkThreadReadSerializer, MessageSendSerializer, MessageSerializer
from lab_core.services import messaging
from lab_core.views_base import LabAPIView


class SendMessageView(LabAPIView):
    @extend_schema(tags=["Messages"], request=MessageSendSerializer, responses={201: MessageSerializer})
    def post(self, request):
        s = MessageSendSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        message = messaging.send_message(
            sender=request.user,
            content=s.validated_data["content"],
            receiver_id=s.validated_data.get("receiver_id"),
            is_general=s.validated_data["is_general"],
        )
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)


class MessageHistoryView(LabAPIView):
    @extend_schema(tags=["Messages"])
    def get(self, request):
        peer_id = request.query_params.get("peer_id")
        if peer_id and not peer_id.isdigit():
            raise ValidationError({"peer_id": "peer_id must be an integer."})
        rows = messaging.history_for(request.user, peer_id=int(peer_id) if peer_id else None)
        return Response(MessageSerializer(rows, many=True).data)


class UnreadCountView(LabAPIView):
    @extend_schema(tags=["Messages"])
    def get(self, request):
        return Response({"unread": messaging.unread_count(request.user)})


class MarkThreadReadView(LabAPIView):
    @extend_schema(tags=["Messages"], request=MarkThreadReadSerializer)
    def put(self, request):
        s = MarkThreadReadSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        updated = messaging.mark_thread_read(request.user, s.validated_data["peer_id"])
        return Response({"marked_read": updated})
