from __future__ import annotations

from lifecycle_provisioning.models import (
    EmployeeRecord,
    RoleTemplate,
    StepOutcome,
    StepStatus,
    WorkflowResult,
    WorkflowStatus,
    overall_status,
)


class TestEmployeeRecord:
    def test_names_are_normalised(self):
        record = EmployeeRecord(first_name="  mary-jane ", last_name="watson", department=" Sales ", manager=" ")

        assert record.display_name == "Mary-Jane Watson"
        assert record.department == "Sales"
        assert record.manager is None


class TestRoleTemplate:
    def test_groups_are_unique_and_ordered(self):
        template = RoleTemplate.from_dict({"department": "Sales", "groups": ["Sales", "CRM", "Sales", ""]})

        assert template.groups == ("Sales", "CRM")
        assert template.license_sku_id is None


class TestWorkflowResult:
    def test_overall_status(self):
        assert overall_status([StepOutcome("a", StepStatus.SUCCEEDED), StepOutcome("b", StepStatus.SKIPPED)]) is (
            WorkflowStatus.SUCCESS
        )
        assert overall_status([StepOutcome("a", StepStatus.PARTIAL)]) is WorkflowStatus.PARTIAL

    def test_partial_run_still_succeeded(self):
        result = WorkflowResult("onboarding", "jsmith", "John Smith", WorkflowStatus.PARTIAL)

        assert result.succeeded

    def test_to_dict_omits_secret(self):
        result = WorkflowResult(
            "onboarding", "jsmith", "John Smith", WorkflowStatus.SUCCESS, temporary_secret="hunter2!Aa"
        )

        payload = result.to_dict()

        assert payload["status"] == "success"
        assert "hunter2!Aa" not in str(payload)
