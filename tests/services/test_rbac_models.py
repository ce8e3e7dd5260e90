"""Tests for RBAC record comparison."""

from azops.services.rbac_models import (
    ImportOutcome,
    ImportOutcomeStatus,
    RbacComparison,
    RbacReconciliationResult,
    ReconciliationMode,
    RoleAssignment,
)

SUB = "/subscriptions/11111111-1111-1111-1111-111111111111"
READER = "acdd72a7-3385-48ef-bd42-f606fba81ae7"
CONTRIBUTOR = "b24988ac-6180-42a0-ab88-20f7382dd24c"


def _assignment(name, object_id="aaaaaaaa-0000-0000-0000-000000000001", role=READER,
                role_name="Reader", scope=SUB):
    return RoleAssignment(name, object_id, role, role_name, scope)


class TestRoleAssignment:
    def test_round_trips_camel_case_keys(self):
        data = {
            "displayName": "ops-team",
            "objectId": "aaaaaaaa-0000-0000-0000-000000000001",
            "roleDefinitionId": READER,
            "roleDefinitionName": "Reader",
            "scope": SUB,
        }
        assert RoleAssignment.from_dict(data).to_dict() == data

    def test_equality_is_case_sensitive(self):
        assert _assignment("ops-team") != _assignment("Ops-Team")

    def test_str(self):
        assert str(_assignment("ops-team")) == (
            f"ops-team (aaaaaaaa-0000-0000-0000-000000000001) -> Reader @ {SUB}"
        )


class TestRbacComparison:
    def test_partition(self):
        shared = _assignment("shared")
        only_config = _assignment("config", role=CONTRIBUTOR, role_name="Contributor")
        only_live = _assignment("live", scope=f"{SUB}/resourceGroups/rg")

        comparison = RbacComparison.compute([only_config, shared], {shared, only_live})

        assert comparison.config_only == [only_config]
        assert comparison.in_both == [shared]
        assert comparison.live_only == [only_live]
        assert not comparison.in_sync

    def test_in_sync(self):
        a = _assignment("a")
        assert RbacComparison.compute([a], [a]).in_sync

    def test_config_order_is_kept_and_live_only_sorted(self):
        c1, c2 = _assignment("zeta"), _assignment("alpha")
        l1 = _assignment("b", scope=f"{SUB}/resourceGroups/rg-b")
        l2 = _assignment("a", scope=f"{SUB}/resourceGroups/rg-a")

        comparison = RbacComparison.compute([c1, c2], [l1, l2])

        assert comparison.config_only == [c1, c2]
        assert comparison.live_only == [l2, l1]

    def test_duplicate_config_records_count_once(self):
        a = _assignment("a")
        comparison = RbacComparison.compute([a, a], [])
        assert comparison.config_only == [a]

    def test_exported_is_in_both_then_live_only(self):
        shared = _assignment("shared")
        live = _assignment("live")
        comparison = RbacComparison.compute([shared, _assignment("gone")], [shared, live])

        assert comparison.exported() == [shared, live]


class TestRbacReconciliationResult:
    def test_conflicts_are_not_failures(self):
        a = _assignment("a")
        result = RbacReconciliationResult(
            mode=ReconciliationMode.IMPORT,
            subscription_id="sub",
            comparison=RbacComparison(),
            import_outcomes=[ImportOutcome(a, ImportOutcomeStatus.CONFLICT, "exists")],
        )
        assert not result.has_failures
        assert result.to_dict()["import"]["counts"]["conflict"] == 1

    def test_failed_import(self):
        result = RbacReconciliationResult(
            mode=ReconciliationMode.IMPORT,
            subscription_id="sub",
            comparison=RbacComparison(),
            import_outcomes=[ImportOutcome(_assignment("a"), ImportOutcomeStatus.FAILED)],
        )
        assert result.has_failures

    def test_compare_payload_has_no_import_section(self):
        result = RbacReconciliationResult(
            mode=ReconciliationMode.COMPARE, subscription_id="sub", comparison=RbacComparison()
        )
        payload = result.to_dict()
        assert "import" not in payload
        assert "exported_count" not in payload
        assert payload["mode"] == "compare"
