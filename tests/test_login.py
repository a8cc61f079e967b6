"""
Tests for login orchestration.

Tests cover:
- Deriving the switch / keep / self-contained policy
- Argument handling and context lookup
- Context switching and session renewal
- Installation logins by URL
- Workload cluster client certificate logins
"""

import io
import time
from unittest.mock import Mock

import jwt
import pytest

from kube_login.exceptions import (
    ConfigurationError,
    ContextDoesNotExistError,
    CorruptedAuthConfigError,
    DestinationExistsError,
    NewLoginRequiredError,
    OIDCError,
    TokenRefreshError,
    UnsupportedProviderError,
)
from kube_login.kubeconfig import AuthProvider, StoreEntry, load_store, save_store
from kube_login.login import (
    ClientCertLogin,
    LoginOrchestrator,
    NetworkLogin,
    ReuseSession,
    derive_login_options,
    validate_oidc_provider,
)
from kube_login.oidc import AuthSession


@pytest.fixture
def refresher():
    refresher = Mock()
    refresher.refresh.return_value = ("new-id-token", "new-refresh-token")
    return refresher


@pytest.fixture
def make_orchestrator(refresher, demo_installation, management_cluster):
    """Build orchestrators wired to fakes; the output stream is ``.out``."""
    def _make(config, **kwargs):
        defaults = {
            "installation_fetcher": Mock(return_value=demo_installation),
            "client_factory": Mock(return_value=management_cluster),
            "refresher_factory": Mock(return_value=refresher),
            "out": io.StringIO(),
        }
        defaults.update(kwargs)
        return LoginOrchestrator(config, **defaults)

    return _make


class TestDeriveLoginOptions:
    """Test the login policy derived from the configuration."""

    def test_plain_login(self, make_config):
        options = derive_login_options(make_config(), "kind-local", "")

        assert options.is_wc_client_cert is False
        assert options.self_contained is False
        assert options.switch_to_context is True
        assert options.switch_to_client_cert_context is False
        assert options.mode == NetworkLogin(self_contained=False, switch_context=True)

    def test_keep_context(self, make_config):
        options = derive_login_options(make_config(keep_context=True), "kind-local", "")
        assert options.switch_to_context is False

    def test_self_contained(self, make_config, tmp_path):
        options = derive_login_options(make_config(self_contained=str(tmp_path / "out")), "", "")

        assert options.self_contained is True
        assert options.self_contained_client_cert is False
        assert options.switch_to_context is False

    def test_context_override(self, make_config):
        options = derive_login_options(make_config(), "kind-local", "gs-demo")

        assert options.switch_to_context is False
        assert options.context_override == "gs-demo"

    def test_workload_cluster(self, make_config):
        options = derive_login_options(make_config(wc_name="w1cluster"), "kind-local", "")

        assert options.is_wc_client_cert is True
        assert options.switch_to_context is True
        assert options.switch_to_client_cert_context is True
        assert options.mode == ClientCertLogin(self_contained=False, switch_context=True)

    def test_workload_cluster_keep_context(self, make_config):
        """Test that the installation context is still selected on the way."""
        options = derive_login_options(make_config(wc_name="w1cluster", keep_context=True), "kind-local", "")

        assert options.switch_to_context is True
        assert options.switch_to_client_cert_context is False

    def test_workload_cluster_self_contained(self, make_config, tmp_path):
        config = make_config(wc_name="w1cluster", self_contained=str(tmp_path / "out"))
        options = derive_login_options(config, "kind-local", "")

        assert options.self_contained is False
        assert options.self_contained_client_cert is True
        assert options.switch_to_context is True
        assert options.switch_to_client_cert_context is False
        assert options.mode == ClientCertLogin(self_contained=True, switch_context=False)


class TestValidateOIDCProvider:
    """Test checks on stored auth-provider blocks."""

    def test_valid(self):
        validate_oidc_provider("gs-demo", AuthProvider("oidc", {
            "client-id": "c", "idp-issuer-url": "https://dex", "refresh-token": "r",
        }))

    def test_missing(self):
        with pytest.raises(CorruptedAuthConfigError) as exc_info:
            validate_oidc_provider("gs-demo", None)

        assert "There is no authentication configuration" in str(exc_info.value)

    @pytest.mark.parametrize("provider", [
        AuthProvider("azure", {"client-id": "c", "idp-issuer-url": "https://dex", "refresh-token": "r"}),
        AuthProvider("oidc", {"idp-issuer-url": "https://dex", "refresh-token": "r"}),
        AuthProvider("oidc", {"client-id": "c", "refresh-token": "r"}),
    ])
    def test_corrupted(self, provider):
        with pytest.raises(CorruptedAuthConfigError) as exc_info:
            validate_oidc_provider("gs-demo", provider)

        assert "please log in again using a URL" in str(exc_info.value)

    def test_missing_refresh_token(self):
        with pytest.raises(NewLoginRequiredError):
            validate_oidc_provider("gs-demo", AuthProvider("oidc", {
                "client-id": "c", "idp-issuer-url": "https://dex",
            }))


class TestSwitchContext:
    """Test switching to existing contexts."""

    def test_switch_renews_oidc_tokens(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        orchestrator = make_orchestrator(make_config())

        result = orchestrator.run(["gs-demo"])

        orchestrator.refresher_factory.assert_called_once_with(
            "https://dex.demo.example.io", "test-client", None, True
        )
        refresher.refresh.assert_called_once_with("old-refresh-token")

        store = load_store(str(mock_kubeconfig))
        assert store.current_context == "gs-demo"
        config = store.get_auth_provider("gs-demo").config
        assert (config["id-token"], config["refresh-token"]) == ("new-id-token", "new-refresh-token")

        assert result.context_name == "gs-demo"
        assert result.mode == ReuseSession(switch_context=True)
        assert "Switched to context 'gs-demo'." in orchestrator.out.getvalue()

    def test_codename_maps_to_context(self, make_orchestrator, make_config, mock_kubeconfig):
        make_orchestrator(make_config()).run(["DEMO"])
        assert load_store(str(mock_kubeconfig)).current_context == "gs-demo"

    def test_already_selected(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        """Test that a selected OIDC context is left as is."""
        store = load_store(str(mock_kubeconfig))
        save_store(store.with_current_context("gs-demo"), str(mock_kubeconfig))
        before = mock_kubeconfig.read_bytes()
        orchestrator = make_orchestrator(make_config())

        orchestrator.run(["demo"])

        refresher.refresh.assert_not_called()
        assert mock_kubeconfig.read_bytes() == before
        assert "Context 'gs-demo' is already selected." in orchestrator.out.getvalue()

    def test_reuse_current_token_context(self, make_orchestrator, make_config, mock_kubeconfig):
        result = make_orchestrator(make_config()).run([])

        assert result.context_name == "kind-local"
        assert result.mode == ReuseSession(switch_context=True)
        assert load_store(str(mock_kubeconfig)).current_context == "kind-local"

    def test_context_override_is_not_selected(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        orchestrator = make_orchestrator(make_config(context_override="gs-demo"))

        result = orchestrator.run([])

        refresher.refresh.assert_called_once()
        assert result.mode == ReuseSession(switch_context=False)
        assert load_store(str(mock_kubeconfig)).current_context == "kind-local"
        assert "Switched" not in orchestrator.out.getvalue()

    def test_keep_context(self, make_orchestrator, make_config, mock_kubeconfig):
        make_orchestrator(make_config(keep_context=True)).run(["gs-demo"])

        store = load_store(str(mock_kubeconfig))
        assert store.current_context == "kind-local"
        assert store.get_auth_provider("gs-demo").config["id-token"] == "new-id-token"

    def test_no_current_context(self, make_orchestrator, make_config, mock_kubeconfig):
        mock_kubeconfig.write_text(mock_kubeconfig.read_text().replace("current-context: kind-local", ""))

        with pytest.raises(ContextDoesNotExistError):
            make_orchestrator(make_config()).run([])

    def test_missing_context_falls_back_to_client_cert(self, make_orchestrator, make_config, mock_kubeconfig):
        """Test that a missing context is retried with the -clientcert name."""
        store, _ = load_store(str(mock_kubeconfig)).upsert_entry(StoreEntry(
            context_name="gs-demo-w1cluster-clientcert",
            cluster_name="gs-demo-w1cluster-clientcert",
            user_name="gs-demo-w1cluster-clientcert-user",
            cluster_fields={"server": "https://api.w1cluster.k8s.demo.example.io"},
            user_fields={"client_certificate_data": b"crt", "client_key_data": b"key"},
        ))
        save_store(store, str(mock_kubeconfig))
        orchestrator = make_orchestrator(make_config())

        result = orchestrator.run(["demo", "w1cluster"])

        assert result.context_name == "gs-demo-w1cluster-clientcert"
        assert load_store(str(mock_kubeconfig)).current_context == "gs-demo-w1cluster-clientcert"
        assert "Looking for context gs-demo-w1cluster-clientcert." in orchestrator.out.getvalue()

    def test_missing_context(self, make_orchestrator, make_config):
        orchestrator = make_orchestrator(make_config())

        with pytest.raises(ContextDoesNotExistError) as exc_info:
            orchestrator.run(["nope"])

        assert "There is no context named 'gs-nope-clientcert'" in str(exc_info.value)
        assert "No context named nope was found" in orchestrator.out.getvalue()

    def test_unknown_auth_type(self, make_orchestrator, make_config, mock_kubeconfig):
        store = load_store(str(mock_kubeconfig)).upsert_user("gs-empty").upsert_context(
            "gs-empty", cluster="kind-local", user="gs-empty"
        )
        save_store(store, str(mock_kubeconfig))

        with pytest.raises(CorruptedAuthConfigError):
            make_orchestrator(make_config()).run(["gs-empty"])

    def test_discovery_failure_is_corruption(self, make_orchestrator, make_config, refresher):
        refresher.refresh.side_effect = OIDCError("Failed to discover OIDC configuration")

        with pytest.raises(CorruptedAuthConfigError):
            make_orchestrator(make_config()).run(["gs-demo"])

    def test_refresh_failure_without_authenticator(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        refresher.refresh.side_effect = TokenRefreshError("Failed to renew the authentication token")
        before = mock_kubeconfig.read_bytes()

        with pytest.raises(TokenRefreshError):
            make_orchestrator(make_config()).run(["gs-demo"])

        assert mock_kubeconfig.read_bytes() == before

    def test_refresh_failure_logs_in_again(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        """Test that a rejected refresh token leads to a new URL login."""
        refresher.refresh.side_effect = TokenRefreshError("Failed to renew the authentication token")
        authenticator = Mock(return_value=AuthSession(
            username="jane", token="fresh-id", client_id="test-client", refresh_token="fresh-refresh",
        ))
        orchestrator = make_orchestrator(make_config(), authenticator=authenticator)

        result = orchestrator.run(["gs-demo"])

        orchestrator.installation_fetcher.assert_called_once_with("https://g8s.demo.example.io:443", True)
        authenticator.assert_called_once()
        assert result.mode == NetworkLogin(self_contained=False, switch_context=True)
        config = load_store(str(mock_kubeconfig)).get_auth_provider("gs-demo").config
        assert config["refresh-token"] == "fresh-refresh"


class TestLoginWithURL:
    """Test installation logins by URL."""

    def test_oidc_login(self, make_orchestrator, make_config, mock_kubeconfig, demo_installation):
        authenticator = Mock(return_value=AuthSession(
            username="jane", token="fresh-id", client_id="test-client", refresh_token="fresh-refresh",
        ))
        orchestrator = make_orchestrator(make_config(), authenticator=authenticator)

        result = orchestrator.run(["https://happa.g8s.demo.example.io"])

        orchestrator.installation_fetcher.assert_called_once_with("https://happa.g8s.demo.example.io", True)
        authenticator.assert_called_once_with(demo_installation)
        assert result.context_name == "gs-demo"
        assert result.already_existed is True
        assert load_store(str(mock_kubeconfig)).current_context == "gs-demo"
        assert "Updated and selected kubectl context 'gs-demo'." in orchestrator.out.getvalue()

    def test_token_login(self, make_orchestrator, make_config, mock_kubeconfig):
        orchestrator = make_orchestrator(make_config(token_override="sa-token", keep_context=True))

        result = orchestrator.run(["g8s.demo.example.io"])

        store = load_store(str(mock_kubeconfig))
        assert store.users["gs-automation-demo"].token == "sa-token"
        assert store.current_context == "kind-local"
        assert result.mode == NetworkLogin(self_contained=False, switch_context=False)
        assert "kubectl config use-context gs-demo" in orchestrator.out.getvalue()

    def test_self_contained_login(self, make_orchestrator, make_config, mock_kubeconfig, tmp_path):
        destination = tmp_path / "demo.yaml"
        before = mock_kubeconfig.read_bytes()
        orchestrator = make_orchestrator(make_config(token_override="sa-token", self_contained=str(destination)))

        result = orchestrator.run(["g8s.demo.example.io"])

        assert result.path == str(destination)
        assert load_store(str(destination)).current_context == "gs-demo"
        assert mock_kubeconfig.read_bytes() == before
        assert f"stored in '{destination}'" in orchestrator.out.getvalue()

    def test_no_authenticator(self, make_orchestrator, make_config):
        with pytest.raises(ConfigurationError):
            make_orchestrator(make_config()).run(["g8s.demo.example.io"])

    def test_too_many_arguments(self, make_orchestrator, make_config):
        with pytest.raises(ConfigurationError) as exc_info:
            make_orchestrator(make_config()).run(["a", "b", "c"])

        assert "Invalid number of arguments." in str(exc_info.value)


class TestWorkloadClusterLogin:
    """Test client certificate logins with an in-memory management cluster."""

    @pytest.fixture(autouse=True)
    def cluster(self, management_cluster):
        management_cluster.add_cluster("w1cluster", "org-acme", organization="acme")
        management_cluster.start_signer()

    def test_create_and_select(self, make_orchestrator, make_config, mock_kubeconfig, management_cluster):
        config = make_config(wc_name="w1cluster", wc_organization="acme", provider="aws")
        orchestrator = make_orchestrator(config)

        result = orchestrator.run(["demo"])

        orchestrator.client_factory.assert_called_once_with(config, "gs-demo")
        orchestrator.installation_fetcher.assert_not_called()
        assert result.context_name == "gs-demo-w1cluster"
        assert result.already_existed is False
        assert result.mode == ClientCertLogin(self_contained=False, switch_context=True)

        store = load_store(str(mock_kubeconfig))
        assert store.current_context == "gs-demo-w1cluster"
        assert store.clusters["gs-demo-w1cluster"].server == "https://api.w1cluster.k8s.demo.example.io"
        assert store.clusters["gs-demo-w1cluster"].certificate_authority_data == b"workload-cluster-ca"

        (namespace, name), = management_cluster.cert_configs
        assert namespace == "org-acme"
        assert store.users["gs-demo-w1cluster-user"].client_certificate_data == f"cert-for-{name}".encode()
        assert "Created client certificate for workload cluster 'w1cluster'." in orchestrator.out.getvalue()

    def test_provider_from_installation(self, make_orchestrator, make_config):
        orchestrator = make_orchestrator(make_config(wc_name="w1cluster"))

        orchestrator.run(["demo"])

        orchestrator.installation_fetcher.assert_called_once_with("https://g8s.demo.example.io:443", True)

    def test_keep_context_restores_origin(self, make_orchestrator, make_config, mock_kubeconfig):
        config = make_config(wc_name="w1cluster", provider="aws", keep_context=True)

        result = make_orchestrator(config).run(["demo"])

        store = load_store(str(mock_kubeconfig))
        assert store.current_context == "kind-local"
        assert "gs-demo-w1cluster" in store.contexts
        assert result.mode == ClientCertLogin(self_contained=False, switch_context=False)

    def test_self_contained(self, make_orchestrator, make_config, mock_kubeconfig, tmp_path):
        destination = tmp_path / "w1cluster.yaml"
        config = make_config(wc_name="w1cluster", provider="aws", self_contained=str(destination))
        orchestrator = make_orchestrator(config)

        result = orchestrator.run(["demo"])

        exported = load_store(str(destination))
        assert list(exported.contexts) == ["gs-demo-w1cluster"]
        assert exported.current_context == "gs-demo-w1cluster"

        shared = load_store(str(mock_kubeconfig))
        assert "gs-demo-w1cluster" not in shared.contexts
        assert shared.current_context == "kind-local"
        assert result.path == str(destination)
        assert f"kubectl cluster-info --kubeconfig {destination}" in orchestrator.out.getvalue()

    def test_self_contained_conflict_cleans_up(self, make_orchestrator, make_config, tmp_path, management_cluster):
        destination = tmp_path / "w1cluster.yaml"
        destination.write_text("existing")
        config = make_config(wc_name="w1cluster", provider="aws", self_contained=str(destination))

        with pytest.raises(DestinationExistsError) as exc_info:
            make_orchestrator(config).run(["demo"])

        assert "already exists" in str(exc_info.value)
        assert destination.read_text() == "existing"
        assert management_cluster.cert_configs == {}
        assert len(management_cluster.deleted_cert_configs) == 1

    def test_unsupported_provider(self, make_orchestrator, make_config):
        orchestrator = make_orchestrator(make_config(wc_name="w1cluster", provider="kvm"))

        with pytest.raises(UnsupportedProviderError):
            orchestrator.run(["demo"])

        orchestrator.client_factory.assert_not_called()

    def test_refresh_existing_credential(self, make_orchestrator, make_config):
        config = make_config(wc_name="w1cluster", provider="aws")
        make_orchestrator(config).run(["demo"])
        orchestrator = make_orchestrator(config)

        result = orchestrator.run(["demo"])

        assert result.already_existed is True
        assert "Switched to context 'gs-demo-w1cluster'." in orchestrator.out.getvalue()

    def test_renews_expiring_selected_session(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        """Test that an already selected installation session is renewed when expiring."""
        store = load_store(str(mock_kubeconfig))
        save_store(store.with_current_context("gs-demo"), str(mock_kubeconfig))
        orchestrator = make_orchestrator(make_config(wc_name="w1cluster", provider="aws"))

        orchestrator.run(["demo"])

        refresher.refresh.assert_called_once_with("old-refresh-token")
        provider_config = load_store(str(mock_kubeconfig)).get_auth_provider("gs-demo").config
        assert provider_config["id-token"] == "new-id-token"
        assert provider_config["refresh-token"] == "new-refresh-token"

    def test_keeps_valid_selected_session(self, make_orchestrator, make_config, refresher, mock_kubeconfig):
        valid = jwt.encode(
            {"exp": int(time.time()) + 3600}, "unit-test-signing-key-of-32-bytes!", algorithm="HS256"
        )
        mock_kubeconfig.write_text(mock_kubeconfig.read_text().replace("old-id-token", valid))
        store = load_store(str(mock_kubeconfig))
        save_store(store.with_current_context("gs-demo"), str(mock_kubeconfig))

        make_orchestrator(make_config(wc_name="w1cluster", provider="aws")).run(["demo"])

        refresher.refresh.assert_not_called()

    def test_renewal_failure_issues_nothing(self, make_orchestrator, make_config, refresher, mock_kubeconfig,
                                            management_cluster):
        refresher.refresh.side_effect = TokenRefreshError("Failed to renew the authentication token")
        store = load_store(str(mock_kubeconfig))
        save_store(store.with_current_context("gs-demo"), str(mock_kubeconfig))
        orchestrator = make_orchestrator(make_config(wc_name="w1cluster", provider="aws"))

        with pytest.raises(TokenRefreshError):
            orchestrator.run(["demo"])

        orchestrator.client_factory.assert_not_called()
        assert management_cluster.cert_configs == {}
