# lab_core/views_keys.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response

from lab_core.serializers import ApiKeyCreateSerializer, ApiKeySerializer
from lab_core.services import api_keys
from lab_core.views_base import LabAPIView


class ApiKeyListCreateView(LabAPIView):
    @extend_schema(tags=["API keys"], responses={200: ApiKeySerializer(many=True)})
    def get(self, request):
        return Response(ApiKeySerializer(api_keys.visible_keys(request.user), many=True).data)

    @extend_schema(tags=["API keys"], request=ApiKeyCreateSerializer)
    def post(self, request):
        s = ApiKeyCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        key, full_key = api_keys.create_key(user=request.user, name=s.validated_data["name"])

        payload = dict(ApiKeySerializer(key).data)
        payload["key"] = full_key
        return Response(
            {"data": payload, "meta": {"notice": "Store this key now; it cannot be shown again."}},
            status=status.HTTP_201_CREATED,
        )


class ApiKeyRevokeView(LabAPIView):
    @extend_schema(tags=["API keys"])
    def delete(self, request, key_id: int):
        key = api_keys.revoke_key(key_id=key_id, user=request.user)
        return Response(ApiKeySerializer(key).data)
