"""
Shared pytest fixtures for testing.

This module provides reusable fixtures for kubeconfig files, login
configurations, an in-memory management cluster and a mock OIDC
identity provider.
"""

from collections.abc import Generator
from pathlib import Path

import pytest

from kube_login.config import LoginConfig
from kube_login.installation import Installation

from .fake_management_cluster import FakeManagementCluster

KUBECONFIG_CONTENT = """
apiVersion: v1
kind: Config
preferences:
  colors: true
clusters:
- cluster:
    certificate-authority: /home/me/.kube/certs/gs-demo-ca.crt
    server: https://g8s.demo.example.io:443
  name: gs-demo
- cluster:
    certificate-authority-data: LS0tLS1CRUdJTiBDRVJUSUZJQ0FURS0tLS0t
    server: https://127.0.0.1:6443
  name: kind-local
contexts:
- context:
    cluster: gs-demo
    user: gs-jane-demo
  name: gs-demo
- context:
    cluster: kind-local
    namespace: playground
    user: kind-local
  name: kind-local
current-context: kind-local
users:
- name: gs-jane-demo
  user:
    auth-provider:
      name: oidc
      config:
        client-id: test-client
        id-token: old-id-token
        idp-issuer-url: https://dex.demo.example.io
        refresh-token: old-refresh-token
- name: kind-local
  user:
    token: test-token-12345
"""


@pytest.fixture
def mock_kubeconfig(tmp_path: Path) -> Path:
    """Create a mock kubeconfig file.

    It holds an OIDC context for installation "demo" and an unrelated
    token context, which is the current one.

    Args:
        tmp_path: pytest temporary directory

    Returns:
        Path to the temporary kubeconfig file

    Example:
        >>> def test_kubeconfig(mock_kubeconfig):
        ...     assert mock_kubeconfig.exists()
    """
    kubeconfig_path = tmp_path / "config"
    kubeconfig_path.write_text(KUBECONFIG_CONTENT)
    return kubeconfig_path


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear all login-related environment variables.

    This ensures tests start with a clean slate and don't inherit
    environment variables from the test runner's environment.

    Args:
        monkeypatch: pytest monkeypatch fixture

    Example:
        >>> def test_no_env(mock_env_vars):
        ...     assert os.getenv("KUBECONFIG") is None
    """
    for var in ["KUBECONFIG", "KUBE_LOGIN_CONTEXT", "KUBE_LOGIN_TOKEN"]:
        monkeypatch.delenv(var, raising=False)

    yield


@pytest.fixture
def make_config(tmp_path: Path, mock_kubeconfig: Path, mock_env_vars):
    """Build LoginConfigs pointing at the mock kubeconfig.

    Polling is fast so issuer tests finish quickly.

    Example:
        >>> def test_keep(make_config):
        ...     config = make_config(keep_context=True)
    """
    def _make(**kwargs) -> LoginConfig:
        defaults = {
            "kubeconfig_path": str(mock_kubeconfig),
            "certs_dir": str(tmp_path / "certs"),
            "credential_poll_interval": 0.01,
            "credential_poll_timeout": 2.0,
        }
        defaults.update(kwargs)
        return LoginConfig(**defaults)

    return _make


@pytest.fixture
def demo_installation() -> Installation:
    return Installation(
        codename="demo",
        k8s_api_url="https://g8s.demo.example.io:443",
        k8s_internal_api_url="https://internal-g8s.demo.example.io",
        auth_url="https://dex.demo.example.io",
        provider="aws",
        ca_cert="-----BEGIN CERTIFICATE-----\ndemo\n-----END CERTIFICATE-----\n",
    )


@pytest.fixture
def management_cluster() -> Generator[FakeManagementCluster, None, None]:
    """In-memory management cluster with organization "acme"."""
    mc = FakeManagementCluster()
    mc.add_organization("acme", "org-acme")
    mc.add_release("20.0.0")

    yield mc

    mc.stop_signer()


# Integration testing fixtures

@pytest.fixture(scope="session")
def mock_oidc_server():
    """Create and start a mock OIDC identity provider for integration tests.

    The server implements OIDC discovery and the refresh token grant with
    single-use refresh tokens.

    Example:
        >>> @pytest.mark.integration
        >>> def test_with_mock_server(mock_oidc_server):
        ...     token = mock_oidc_server.issue_refresh_token()
    """
    from .mock_oidc_server import MockOIDCServer

    server = MockOIDCServer(host="localhost")
    server.start()

    yield server

    server.stop()


# Pytest markers for different test levels
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that use mock servers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take longer to run"
    )
