from rest_framework.permissions import BasePermission

from api.rbac import resolve_roles_and_permissions


def required_permissions(request, view) -> tuple[str, ...]:
    """
    Permissions the routed view declares for the request method.

    Function views set ``required_permission`` on the function returned by
    ``@api_view`` (the one the URL resolves to) as a single permission, a
    collection (any one suffices) or a ``{"GET": ..., "POST": ...}`` mapping.
    """
    required = getattr(view, "required_permission", None)
    if required is None:
        match = getattr(request, "resolver_match", None)
        required = getattr(getattr(match, "func", None), "required_permission", None)
    if isinstance(required, dict):
        required = required.get(request.method, required.get("*"))
    if not required:
        return ()
    if isinstance(required, str):
        return (required,)
    return tuple(required)


class WorkflowPermission(BasePermission):
    """Grants access when the caller holds one of the view's permissions."""

    message = "You do not have permission for this action."

    def has_permission(self, request, view) -> bool:
        required = required_permissions(request, view)
        principal = request.user
        if not required or not getattr(principal, "is_authenticated", False):
            return False
        _, granted = resolve_roles_and_permissions(request, principal)
        return not set(required).isdisjoint(granted)
