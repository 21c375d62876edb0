"""
tests/test_bootstrap.py -- Tests for rbac/bootstrap.py (initialize_rbac and its steps).

Coverage:
  - First run creates everything; second identical run is a no-op
  - Changed descriptions and role sets count as updates, with full set replacement
  - One failing item does not abort the rest (partial-failure isolation)
  - Unresolvable role keys are reported per role
  - Malformed catalog input is rejected before any write
  - Fallback admin: created once with a rotated-on-first-login password,
    never reset, survives a concurrent insert
  - An unreachable store aborts the run with PersistenceError
"""

from __future__ import annotations

import pydantic
import pytest

from auth.credentials import verify_password
from auth.errors import ConflictError, PersistenceError, ValidationError
from auth.store import UserStore
from rbac import bootstrap
from rbac.bootstrap import ensure_fallback_admin, initialize_rbac
from rbac.store import RBACStore

SCENARIO_A = {
    "permissions": [
        {"resource": "grades", "action": "edit", "description": "Edit grades"},
        {"resource": "grades", "action": "view", "description": "View grades"},
    ],
    "roles": [{"name": "registrar", "description": "Records office", "permission_keys": ["grades:edit", "grades:view"]}],
}


def _counts(section) -> tuple[int, int, list]:
    return section.created, section.updated, section.errors


class TestIdempotence:
    def test_first_run_creates_everything(self, rbac_store: RBACStore, user_store: UserStore, make_settings) -> None:
        report = initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        assert _counts(report.permissions) == (2, 0, [])
        assert _counts(report.roles) == (1, 0, [])
        assert report.ok

    def test_second_run_is_a_no_op(self, rbac_store: RBACStore, user_store: UserStore, make_settings) -> None:
        initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        report = initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        assert _counts(report.permissions) == (0, 0, [])
        assert _counts(report.roles) == (0, 0, [])
        assert report.admin.created is False

    def test_no_duplicate_rows_after_repeated_runs(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        for _ in range(3):
            initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        assert len(rbac_store.list_permissions()) == 2
        assert len(rbac_store.list_roles()) == 1
        assert user_store.count_by_email("system@university.edu") == 1

    def test_default_catalog_twice(self, seeded_stores, make_settings) -> None:
        rbac_store, user_store = seeded_stores
        assert len(rbac_store.list_permissions()) == 51
        assert len(rbac_store.list_roles()) == 10
        report = initialize_rbac(rbac_store, user_store, settings=make_settings())
        assert _counts(report.permissions) == (0, 0, [])
        assert _counts(report.roles) == (0, 0, [])

    def test_initiator_recorded_on_new_rows(self, rbac_store: RBACStore, user_store: UserStore, make_settings) -> None:
        initialize_rbac(rbac_store, user_store, initiator="deploy-bot", catalog=SCENARIO_A, settings=make_settings())
        assert rbac_store.get_permission("grades", "edit").created_by == "deploy-bot"
        assert rbac_store.get_role("registrar").created_by == "deploy-bot"


class TestUpdates:
    def test_changed_description_is_an_update(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        changed = {
            "permissions": [
                {"resource": "grades", "action": "edit", "description": "Edit and correct grades"},
                SCENARIO_A["permissions"][1],
            ],
            "roles": SCENARIO_A["roles"],
        }
        report = initialize_rbac(rbac_store, user_store, catalog=changed, settings=make_settings())
        assert _counts(report.permissions) == (0, 1, [])
        assert rbac_store.get_permission("grades", "edit").description == "Edit and correct grades"

    def test_role_set_is_replaced_not_merged(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        narrowed = dict(SCENARIO_A, roles=[{"name": "registrar", "description": "Records office", "permission_keys": ["grades:view"]}])
        report = initialize_rbac(rbac_store, user_store, catalog=narrowed, settings=make_settings())
        assert _counts(report.roles) == (0, 1, [])
        assert [p.key for p in rbac_store.get_role_permissions("registrar")] == ["grades:view"]

    def test_role_may_reference_permission_from_earlier_run(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        roles_only = {"roles": [{"name": "auditor", "permission_keys": ["grades:view"]}]}
        report = initialize_rbac(rbac_store, user_store, catalog=roles_only, settings=make_settings())
        assert _counts(report.roles) == (1, 0, [])


class TestPartialFailure:
    def test_one_failing_permission_does_not_abort_the_rest(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings, monkeypatch
    ) -> None:
        real_create = rbac_store.create_permission

        def flaky_create(permission):
            if permission.key == "grades:edit":
                raise ConflictError("UNIQUE constraint failed: permissions.resource, permissions.action")
            return real_create(permission)

        monkeypatch.setattr(rbac_store, "create_permission", flaky_create)
        report = initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())

        assert report.permissions.created == 1
        assert report.permissions.errors == [
            {"permission": "grades:edit", "error": "UNIQUE constraint failed: permissions.resource, permissions.action"}
        ]
        # The role needs the missing permission, so it fails on its own; the run still finishes.
        assert report.roles.created == 0
        assert report.roles.errors[0]["role"] == "registrar"
        assert "grades:edit" in report.roles.errors[0]["error"]
        assert report.admin is not None
        assert not report.ok

    def test_unresolvable_keys_only_skip_that_role(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        catalog = dict(
            SCENARIO_A,
            roles=[
                {"name": "broken", "permission_keys": ["grades:view", "ghosts:haunt"]},
                {"name": "registrar", "permission_keys": ["grades:edit"]},
            ],
        )
        report = initialize_rbac(rbac_store, user_store, catalog=catalog, settings=make_settings())
        assert report.roles.created == 1
        assert report.roles.errors == [{"role": "broken", "error": "unresolvable permission keys: ghosts:haunt"}]
        assert rbac_store.get_role("broken") is None

    def test_rerun_after_fix_completes_the_catalog(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        broken = dict(SCENARIO_A, roles=[{"name": "registrar", "permission_keys": ["grades:approve"]}])
        assert not initialize_rbac(rbac_store, user_store, catalog=broken, settings=make_settings()).ok
        fixed = {
            "permissions": SCENARIO_A["permissions"] + [{"resource": "grades", "action": "approve"}],
            "roles": broken["roles"],
        }
        report = initialize_rbac(rbac_store, user_store, catalog=fixed, settings=make_settings())
        assert report.ok
        assert (report.permissions.created, report.roles.created) == (1, 1)


class TestValidation:
    def test_malformed_catalog_rejected_before_any_write(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        bad = {"permissions": [{"resource": "Grades!", "action": "edit"}]}
        with pytest.raises(ValidationError):
            initialize_rbac(rbac_store, user_store, catalog=bad, settings=make_settings())
        assert rbac_store.list_permissions() == []
        assert not user_store.has_users()


class TestFallbackAdmin:
    def test_created_with_configured_role_and_rotation_flag(self, user_store: UserStore, make_settings) -> None:
        report = ensure_fallback_admin(user_store, make_settings())
        admin = user_store.get_by_email("system@university.edu")
        assert report.created is True
        assert report.temporary_password is None  # configured, not generated
        assert admin.role == "Super Admin"
        assert admin.must_change_password is True
        assert admin.user_code.startswith("SYSAD")
        assert verify_password("bootstrap-pass-123", admin.hashed_password)

    def test_generated_password_is_reported_once(self, user_store: UserStore, make_settings) -> None:
        report = ensure_fallback_admin(user_store, make_settings(fallback_admin_password=""))
        assert report.temporary_password
        admin = user_store.get_by_email("system@university.edu")
        assert verify_password(report.temporary_password, admin.hashed_password)
        assert "temporary_password" not in repr(report)

    def test_existing_admin_left_untouched(self, user_store: UserStore, make_settings) -> None:
        ensure_fallback_admin(user_store, make_settings())
        admin = user_store.get_by_email("system@university.edu")
        user_store.update_user(admin.id, role="Staff", must_change_password=False)

        report = ensure_fallback_admin(user_store, make_settings(fallback_admin_password="another-password"))

        assert report.created is False
        again = user_store.get_by_email("system@university.edu")
        assert again.role == "Staff"
        assert again.hashed_password == admin.hashed_password
        assert user_store.count_by_email("system@university.edu") == 1

    def test_multibyte_configured_password(self, user_store: UserStore, make_settings) -> None:
        password = "é" * 36  # 72 bytes, the most bcrypt accepts
        ensure_fallback_admin(user_store, make_settings(fallback_admin_password=password))
        admin = user_store.get_by_email("system@university.edu")
        assert verify_password(password, admin.hashed_password)

    def test_over_long_configured_password_rejected_by_settings(self, make_settings) -> None:
        with pytest.raises(pydantic.ValidationError, match="FALLBACK_ADMIN_PASSWORD"):
            make_settings(fallback_admin_password="é" * 40)

    def test_configured_email(self, user_store: UserStore, make_settings) -> None:
        report = ensure_fallback_admin(user_store, make_settings(fallback_admin_email="Root@Campus.EDU"))
        assert report.email == "root@campus.edu"
        assert user_store.get_by_email("root@campus.edu") is not None

    def test_concurrent_insert_is_not_an_error(self, user_store: UserStore, make_settings, monkeypatch) -> None:
        """A run that loses the insert race reports created=False and leaves one record."""
        ensure_fallback_admin(user_store, make_settings())
        lookups = iter([None])
        real_get = user_store.get_by_email

        def stale_then_real(email):
            # First lookup misses (the other run has not committed yet), later ones see the row.
            return next(lookups, real_get(email))

        monkeypatch.setattr(user_store, "get_by_email", stale_then_real)
        report = ensure_fallback_admin(user_store, make_settings())
        assert report.created is False
        assert user_store.count_by_email("system@university.edu") == 1

    def test_report_dict_never_contains_password(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings
    ) -> None:
        report = initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings(fallback_admin_password=""))
        assert report.admin.temporary_password
        assert report.to_dict()["admin"] == {"email": "system@university.edu", "created": True}


class TestFatalErrors:
    def test_unreachable_store_aborts(self, rbac_store: RBACStore, user_store: UserStore, make_settings, monkeypatch) -> None:
        def down() -> None:
            raise PersistenceError("catalog store unavailable: unable to open database file")

        monkeypatch.setattr(rbac_store, "ping", down)
        with pytest.raises(PersistenceError):
            initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())
        assert not user_store.has_users()

    def test_persistence_error_mid_run_is_not_captured(
        self, rbac_store: RBACStore, user_store: UserStore, make_settings, monkeypatch
    ) -> None:
        def lost_connection(permission):
            raise PersistenceError("catalog store unavailable: disk I/O error")

        monkeypatch.setattr(rbac_store, "create_permission", lost_connection)
        with pytest.raises(PersistenceError):
            initialize_rbac(rbac_store, user_store, catalog=SCENARIO_A, settings=make_settings())

    def test_item_errors_cover_driver_failures(self) -> None:
        assert ConflictError in bootstrap._ITEM_ERRORS
        assert PersistenceError not in bootstrap._ITEM_ERRORS
