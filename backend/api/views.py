from django.conf import settings
from django.db import DatabaseError
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from api.authentication import SipbAuthentication
from api.rbac import permission_for, resolve_app_user, resolve_roles_and_permissions
from procurement.models import AppUser
from procurement.roles import ROLE_CAPABILITIES


@api_view(["GET"])
def health(request):
    return Response({"status": "ok"})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([IsAuthenticated])
def whoami(request):
    roles, permissions = resolve_roles_and_permissions(request, request.user)
    app_user = resolve_app_user(request, request.user)
    return Response(
        {
            "user_id": request.user.user_id,
            "username": request.user.username,
            "name": app_user.name if app_user else None,
            "sipb_user_id": app_user.user_id if app_user else None,
            "roles": roles,
            "permissions": sorted(permissions),
        }
    )


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([IsAuthenticated])
def dev_users(request):
    if not (settings.DEBUG and settings.DEV_AUTH_ENABLED):
        return Response({"detail": "Not found."}, status=404)

    try:
        rows = list(AppUser.objects.filter(is_active=True).order_by("username"))
    except DatabaseError:
        return Response({"users": []})

    users = []
    for user in rows:
        capabilities = ROLE_CAPABILITIES.get(user.role_enum, frozenset())
        users.append(
            {
                "user_id": str(user.user_id),
                "username": user.username,
                "email": user.email,
                "roles": [user.role],
                "permissions": sorted(permission_for(cap) for cap in capabilities),
            }
        )

    return Response({"users": users})
