from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIClient
from unittest.mock import patch

from api import rbac
from api.authentication import Principal, claim, principal_from_claims
from procurement.models import AppUser


class HealthEndpointTests(TestCase):
    def test_health(self) -> None:
        client = APIClient()
        response = client.get("/api/v1/health/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class AuthWhoAmITests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_ISSUER="https://issuer.example",
        AUTH_AUDIENCE="sipb-api",
        AUTH_JWKS_URL="https://issuer.example/.well-known/jwks.json",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_ROLES_CLAIM="roles",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_requires_auth(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 401)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["VIEWER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_unknown_role_has_no_permissions(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["user_id"], "dev-user")
        self.assertEqual(body["roles"], ["VIEWER"])
        self.assertEqual(body["permissions"], [])
        self.assertIsNone(body["sipb_user_id"])

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["WAREHOUSE"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_token_role_grants_permissions(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        permissions = response.json()["permissions"]
        self.assertIn(rbac.PERM_CHECKLIST_RECORD, permissions)
        self.assertNotIn(rbac.PERM_FRB_DECIDE, permissions)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="direktur",
        DEV_AUTH_ROLES=[],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=True,
    )
    def test_whoami_uses_role_of_app_user(self) -> None:
        user = AppUser.objects.create(
            username="direktur",
            name="Ibu Direktur",
            role="DIREKTUR",
            create_by_id="tester",
            update_by_id="tester",
        )

        response = self.client.get("/api/v1/auth/whoami/")

        body = response.json()
        self.assertEqual(body["roles"], ["DIREKTUR"])
        self.assertEqual(body["name"], "Ibu Direktur")
        self.assertEqual(body["sipb_user_id"], user.user_id)
        self.assertIn(rbac.PERM_FRB_DECIDE, body["permissions"])


class DevUsersTests(TestCase):
    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=[],
        DEBUG=True,
    )
    def test_lists_active_users_with_permissions(self) -> None:
        AppUser.objects.create(
            username="gudang", name="Gudang", role="WAREHOUSE",
            create_by_id="tester", update_by_id="tester",
        )
        AppUser.objects.create(
            username="old", name="Old", role="WAREHOUSE", is_active=False,
            create_by_id="tester", update_by_id="tester",
        )

        response = APIClient().get("/api/v1/auth/dev-users/")

        users = response.json()["users"]
        self.assertEqual([u["username"] for u in users], ["gudang"])
        self.assertIn(rbac.PERM_STOCK_ADJUST, users[0]["permissions"])

    @override_settings(AUTH_ENABLED=False, DEV_AUTH_ENABLED=False, DEBUG=False)
    def test_hidden_without_dev_auth(self) -> None:
        response = APIClient().get("/api/v1/auth/dev-users/")

        self.assertIn(response.status_code, (401, 403, 404))


class RbacResolutionTests(TestCase):
    def _request(self):
        return type("Request", (), {})()

    @override_settings(AUTH_USE_DB_RBAC=True)
    @patch("api.rbac.resolve_app_user")
    def test_db_role_is_merged_with_claim_roles(self, mock_resolve) -> None:
        mock_resolve.return_value = AppUser(user_id=7, username="buyer", role="PURCHASING")
        principal = Principal(user_id="7", username="buyer", roles=["PM"], permissions=[])

        roles, permissions = rbac.resolve_roles_and_permissions(self._request(), principal)

        self.assertEqual(roles, ["PM", "PURCHASING"])
        self.assertIn(rbac.PERM_FRB_CREATE, permissions)
        self.assertIn(rbac.PERM_PO_MANAGE, permissions)
        self.assertEqual(mock_resolve.call_count, 1)

    @override_settings(AUTH_USE_DB_RBAC=True)
    @patch("api.rbac.resolve_app_user", side_effect=DatabaseError("down"))
    def test_db_failure_falls_back_to_claim_roles(self, _mock_resolve) -> None:
        principal = Principal(user_id=None, username="x", roles=["DIRECTOR"], permissions=[])

        roles, permissions = rbac.resolve_roles_and_permissions(self._request(), principal)

        self.assertEqual(roles, ["DIRECTOR"])
        self.assertIn(rbac.PERM_PR_DECIDE, permissions)

    @override_settings(AUTH_USE_DB_RBAC=False)
    @patch("api.rbac.resolve_app_user")
    def test_result_is_cached_on_request(self, mock_resolve) -> None:
        request = self._request()
        principal = Principal(user_id=None, username="x", roles=["ADMIN"], permissions=["extra.perm"])

        first = rbac.resolve_roles_and_permissions(request, principal)
        second = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(first, second)
        self.assertEqual(first[1][0], "extra.perm")
        mock_resolve.assert_not_called()

    def test_app_user_lookup_by_id_or_username(self) -> None:
        user = AppUser.objects.create(
            username="pm1", name="PM One", role="PROJECT_MANAGER",
            create_by_id="tester", update_by_id="tester",
        )

        by_id = rbac.resolve_app_user(self._request(), Principal(user_id=str(user.user_id), username=None, roles=[]))
        by_name = rbac.resolve_app_user(self._request(), Principal(user_id="kc-123", username="pm1", roles=[]))

        self.assertEqual(by_id, user)
        self.assertEqual(by_name, user)


class DevUserSwitchTests(TestCase):
    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="admin",
        DEV_AUTH_ROLES=[],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=True,
    )
    def test_header_selects_dev_user(self) -> None:
        AppUser.objects.create(
            username="gudang", name="Gudang", role="WAREHOUSE",
            create_by_id="tester", update_by_id="tester",
        )

        response = APIClient().get("/api/v1/auth/whoami/", HTTP_X_SIPB_DEV_USER="gudang")

        body = response.json()
        self.assertEqual(body["username"], "gudang")
        self.assertEqual(body["roles"], ["WAREHOUSE"])


class TokenClaimTests(TestCase):
    def test_claim_reads_dotted_path(self) -> None:
        claims = {"sub": "abc", "realm_access": {"roles": ["PURCHASING"]}}

        self.assertEqual(claim(claims, "realm_access.roles"), ["PURCHASING"])
        self.assertIsNone(claim(claims, "realm_access.missing.deeper"))
        self.assertIsNone(claim(claims, "sub.nested"))

    @override_settings(
        AUTH_USER_ID_CLAIM="sub",
        AUTH_USERNAME_CLAIM="preferred_username",
        AUTH_ROLES_CLAIM="realm_access.roles",
    )
    def test_principal_from_claims(self) -> None:
        principal = principal_from_claims(
            {
                "sub": "kc-1",
                "preferred_username": "buyer",
                "email": "buyer@sipb.test",
                "realm_access": {"roles": "PURCHASING, ADMIN"},
            }
        )

        self.assertEqual(principal.user_id, "kc-1")
        self.assertEqual(principal.username, "buyer")
        self.assertEqual(principal.email, "buyer@sipb.test")
        self.assertEqual(principal.roles, ["PURCHASING", "ADMIN"])

    @override_settings(AUTH_USER_ID_CLAIM="sub", AUTH_USERNAME_CLAIM="", AUTH_ROLES_CLAIM="")
    def test_token_without_subject_is_rejected(self) -> None:
        with self.assertRaises(AuthenticationFailed):
            principal_from_claims({"email": "x@sipb.test"})

    def test_app_user_lookup_by_email(self) -> None:
        user = AppUser.objects.create(
            username="dir", name="Direktur", role="DIREKTUR", email="Direktur@SIPB.test",
            create_by_id="tester", update_by_id="tester",
        )
        principal = Principal(user_id="kc-9", username=None, roles=[], email="direktur@sipb.test")

        found = rbac.resolve_app_user(type("Request", (), {})(), principal)

        self.assertEqual(found, user)
