"""
Tests for Microsoft 365 license assignment.
"""
from __future__ import annotations

from unittest.mock import Mock, call

import pytest

from lifecycle_provisioning.errors import LicenseError
from lifecycle_provisioning.licensing import GraphLicenseProvisioner
from lifecycle_provisioning.m365_client import M365Client, M365GraphError
from lifecycle_provisioning.models import Identity


@pytest.fixture
def identity():
    return Identity(
        username="jsmith",
        distinguished_name="CN=John Smith,OU=Users,DC=corp,DC=example,DC=com",
        principal_name="jsmith@corp.example.com",
        email="jsmith@example.com",
    )


@pytest.fixture
def client():
    graph = Mock(spec=M365Client)
    graph.find_user.return_value = {"id": "user-1", "usageLocation": "US"}
    graph.get_user_license_details.return_value = []
    return graph


@pytest.fixture
def sleep():
    return Mock()


class TestGraphLicenseProvisioner:
    def test_waits_once_then_assigns(self, client, identity, sleep):
        provisioner = GraphLicenseProvisioner(client, wait_seconds=30, sleep=sleep)

        provisioner.assign(identity, "sku-e3", ["plan-yammer"])

        sleep.assert_called_once_with(30)
        client.find_user.assert_called_once()
        client.assign_license.assert_called_once_with("user-1", "sku-e3", disabled_plans=["plan-yammer"])

    def test_no_wait_when_zero(self, client, identity, sleep):
        GraphLicenseProvisioner(client, wait_seconds=0, sleep=sleep).assign(identity, "sku-e3")

        sleep.assert_not_called()

    def test_falls_back_to_mail_lookup(self, client, identity, sleep):
        client.find_user.side_effect = [None, {"id": "user-1", "usageLocation": "US"}]

        GraphLicenseProvisioner(client, sleep=sleep).assign(identity, "sku-e3")

        assert [c.args[0] for c in client.find_user.call_args_list] == [
            "jsmith@corp.example.com",
            "jsmith@example.com",
        ]
        client.assign_license.assert_called_once()

    def test_not_yet_synced_is_a_single_attempt(self, client, identity, sleep):
        client.find_user.return_value = None

        with pytest.raises(LicenseError, match="not yet available"):
            GraphLicenseProvisioner(client, sleep=sleep).assign(identity, "sku-e3")

        sleep.assert_called_once()
        client.assign_license.assert_not_called()

    def test_sets_missing_usage_location(self, client, identity, sleep):
        client.find_user.return_value = {"id": "user-1", "usageLocation": None}
        provisioner = GraphLicenseProvisioner(client, default_usage_location="GB", sleep=sleep)

        provisioner.assign(identity, "sku-e3")

        client.update_user.assert_called_once_with("user-1", usageLocation="GB")
        assert client.method_calls.index(call.update_user("user-1", usageLocation="GB")) < next(
            index for index, item in enumerate(client.method_calls) if item[0] == "assign_license"
        )

    def test_missing_usage_location_without_default(self, client, identity, sleep):
        client.find_user.return_value = {"id": "user-1"}

        with pytest.raises(LicenseError, match="usage location"):
            GraphLicenseProvisioner(client, sleep=sleep).assign(identity, "sku-e3")

    def test_already_assigned(self, client, identity, sleep):
        client.get_user_license_details.return_value = [{"skuId": "SKU-E3"}]

        GraphLicenseProvisioner(client, sleep=sleep).assign(identity, "sku-e3")

        client.assign_license.assert_not_called()

    def test_graph_error_becomes_license_error(self, client, identity, sleep):
        client.assign_license.side_effect = M365GraphError(400, "Request_BadRequest", "No available licenses")

        with pytest.raises(LicenseError, match="No available licenses") as excinfo:
            GraphLicenseProvisioner(client, sleep=sleep).assign(identity, "sku-e3")

        assert not excinfo.value.fatal
