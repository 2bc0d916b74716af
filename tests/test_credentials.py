"""Tests for credential providers."""

import pytest

from vcenter_migrator.core.credentials import (
    ChainedCredentialProvider,
    CredentialProvider,
    EnvironmentCredentialProvider,
    StaticCredentialProvider,
    password_env_var,
)
from vcenter_migrator.core.exceptions import CredentialError


def test_static_provider_ignores_case():
    provider = StaticCredentialProvider({("VC01.lab.local", "Administrator@vsphere.local"): "pw"})

    assert provider.get_password("vc01.LAB.local", "administrator@VSPHERE.local") == "pw"
    assert provider.get_password("vc02.lab.local", "administrator@vsphere.local") is None


def test_password_env_var_name():
    assert (
        password_env_var("vc01.lab.local", "administrator@vsphere.local")
        == "VCMIGRATOR_PASSWORD__VC01_LAB_LOCAL__ADMINISTRATOR_VSPHERE_LOCAL"
    )


def test_environment_provider():
    name = password_env_var("vc01.lab.local", "root")
    provider = EnvironmentCredentialProvider({name: "secret", "OTHER": "x"})

    assert provider.get_password("vc01.lab.local", "root") == "secret"
    assert provider.get_password("vc01.lab.local", "admin") is None


def test_environment_provider_treats_empty_as_missing():
    name = password_env_var("vc01.lab.local", "root")
    assert EnvironmentCredentialProvider({name: ""}).get_password("vc01.lab.local", "root") is None


def test_environment_provider_reads_process_environment(monkeypatch):
    monkeypatch.setenv(password_env_var("vc09.lab.local", "svc"), "from-env")
    assert EnvironmentCredentialProvider().get_password("vc09.lab.local", "svc") == "from-env"


def test_chained_provider_first_hit_wins():
    first = StaticCredentialProvider({("vc01", "root"): "one"})
    second = StaticCredentialProvider({("vc01", "root"): "two", ("vc02", "root"): "three"})
    chained = ChainedCredentialProvider(first, second)

    assert chained.get_password("vc01", "root") == "one"
    assert chained.get_password("vc02", "root") == "three"
    assert chained.get_password("vc03", "root") is None


def test_providers_satisfy_protocol():
    assert isinstance(StaticCredentialProvider(), CredentialProvider)
    assert isinstance(EnvironmentCredentialProvider({}), CredentialProvider)
    assert isinstance(ChainedCredentialProvider(), CredentialProvider)


def test_static_provider_rejects_blank_password():
    provider = StaticCredentialProvider()

    with pytest.raises(CredentialError, match="blank password"):
        provider.set_password("vc01.lab.local", "root", "")
    assert provider.get_password("vc01.lab.local", "root") is None
