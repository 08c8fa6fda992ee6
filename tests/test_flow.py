"""Tests for the interactive authorization flow (browser and manual variants)."""

import threading
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from gdcli.auth.callback_server import LoopbackListener
from gdcli.auth.errors import (
    AuthorizationTimeout,
    InvalidRedirect,
    StateMismatch,
    TokenExchangeFailed,
    UserDenied,
)
from gdcli.auth.flow import AuthorizationFlow, parse_redirect_url, validate_redirect
from gdcli.auth.google_oauth import OAuthProviderError, code_challenge
from gdcli.auth.models import ClientCredentials, SessionPhase, TokenGrant

CLIENT = ClientCredentials(client_id="abc", client_secret="xyz")


def _url_params(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class BrowserStub:
    """Stands in for the user's browser: follows the consent URL back to the listener."""

    def __init__(self, redirect_params=None, opened=True):
        self.redirect_params = redirect_params
        self.opened = opened
        self.urls = []
        self.thread = None

    def __call__(self, url):
        self.urls.append(url)
        params = _url_params(url)
        if self.redirect_params is not None:
            query = {
                key: (params["state"] if value == "<state>" else value)
                for key, value in self.redirect_params.items()
            }
            self.thread = threading.Thread(
                target=requests.get,
                args=(params["redirect_uri"],),
                kwargs={"params": query, "timeout": 5},
                daemon=True,
            )
            self.thread.start()
        return self.opened


class RecordingListenerFactory:
    def __init__(self):
        self.created = []

    def __call__(self):
        listener = LoopbackListener(host="127.0.0.1")
        self.created.append(listener)
        return listener


class InterruptedListener(LoopbackListener):
    """A real listener whose wait is cut short as if the user pressed Ctrl-C."""

    def wait_for_redirect(self, timeout=None):
        raise KeyboardInterrupt


def make_flow(provider, **kwargs):
    kwargs.setdefault("output", lambda message: None)
    kwargs.setdefault("timeout", 5)
    return AuthorizationFlow(CLIENT, provider, **kwargs)


class TestParseRedirectUrl:
    def test_full_url(self):
        params = parse_redirect_url("http://localhost/?state=S&code=CODE123&scope=x")
        assert params["code"] == "CODE123"
        assert params["state"] == "S"

    def test_bare_query(self):
        assert parse_redirect_url("?code=C&state=S") == {"code": "C", "state": "S"}

    def test_surrounding_whitespace(self):
        assert parse_redirect_url("  http://localhost/?code=C&state=S \n")["code"] == "C"

    @pytest.mark.parametrize("pasted", ["", "   ", "http://localhost/"])
    def test_unusable_input(self, pasted):
        with pytest.raises(InvalidRedirect):
            parse_redirect_url(pasted)


class TestValidateRedirect:
    def test_returns_code(self):
        assert validate_redirect({"code": "C", "state": "S"}, "S") == "C"

    def test_forged_state(self):
        with pytest.raises(StateMismatch):
            validate_redirect({"code": "C", "state": "forged"}, "S")

    def test_missing_state(self):
        with pytest.raises(StateMismatch):
            validate_redirect({"code": "C"}, "S")

    def test_error_param(self):
        with pytest.raises(UserDenied, match="access_denied"):
            validate_redirect({"error": "access_denied", "state": "S"}, "S")

    def test_error_with_forged_state_is_state_mismatch(self):
        with pytest.raises(StateMismatch):
            validate_redirect({"error": "access_denied", "state": "other"}, "S")

    def test_neither_code_nor_error(self):
        with pytest.raises(InvalidRedirect):
            validate_redirect({"state": "S"}, "S")


class TestManualFlow:
    def test_success(self, provider):
        flow = make_flow(
            provider,
            state_factory=lambda: "STATE-1",
            prompt=lambda message: "http://localhost/?code=CODE123&state=STATE-1",
        )
        grant = flow.authorize(manual=True)

        assert grant.refresh_token == "refresh-initial"
        assert flow.session.phase is SessionPhase.COMPLETE
        client, code, redirect_uri, verifier = provider.exchange_calls[0]
        assert client == CLIENT
        assert code == "CODE123"
        assert redirect_uri == "http://localhost"
        assert verifier == flow.session.code_verifier

    def test_consent_url_carries_state_and_pkce(self, provider):
        lines = []
        flow = make_flow(
            provider,
            state_factory=lambda: "STATE-1",
            prompt=lambda message: "http://localhost/?code=C&state=STATE-1",
            output=lines.append,
        )
        flow.authorize(manual=True)

        url = next(line.strip() for line in lines if "accounts.example.test" in line)
        params = _url_params(url)
        assert params["state"] == "STATE-1"
        assert params["redirect_uri"] == "http://localhost"
        assert params["client_id"] == "abc"
        assert params["access_type"] == "offline"
        assert params["code_challenge"] == code_challenge(flow.session.code_verifier)
        assert params["code_challenge_method"] == "S256"

    def test_forged_state_never_exchanges(self, provider):
        flow = make_flow(
            provider,
            state_factory=lambda: "STATE-1",
            prompt=lambda message: "http://localhost/?code=CODE123&state=FORGED",
        )
        with pytest.raises(StateMismatch):
            flow.authorize(manual=True)
        assert provider.exchange_calls == []
        assert flow.session.phase is SessionPhase.FAILED

    def test_user_denied(self, provider):
        flow = make_flow(
            provider,
            state_factory=lambda: "S",
            prompt=lambda message: "http://localhost/?error=access_denied&state=S",
        )
        with pytest.raises(UserDenied):
            flow.authorize(manual=True)
        assert provider.exchange_calls == []

    def test_empty_paste(self, provider):
        flow = make_flow(provider, prompt=lambda message: "")
        with pytest.raises(InvalidRedirect):
            flow.authorize(manual=True)
        assert provider.exchange_calls == []

    def test_eof_at_prompt_is_cancellation(self, provider):
        def _eof(message):
            raise EOFError

        flow = make_flow(provider, prompt=_eof)
        with pytest.raises(KeyboardInterrupt):
            flow.authorize(manual=True)
        assert flow.session.phase is SessionPhase.FAILED

    def test_exchange_failure(self, provider):
        provider.exchange_error = OAuthProviderError("rejected", error="invalid_grant", status_code=400)
        flow = make_flow(
            provider,
            state_factory=lambda: "S",
            prompt=lambda message: "http://localhost/?code=C&state=S",
        )
        with pytest.raises(TokenExchangeFailed, match="rejected"):
            flow.authorize(manual=True)
        assert len(provider.exchange_calls) == 1
        assert flow.session.phase is SessionPhase.FAILED

    def test_missing_refresh_token_is_exchange_failure(self, provider):
        provider.exchange_result = TokenGrant(access_token="a", refresh_token=None, expires_at=None)
        flow = make_flow(
            provider,
            state_factory=lambda: "S",
            prompt=lambda message: "http://localhost/?code=C&state=S",
        )
        with pytest.raises(TokenExchangeFailed, match="refresh token"):
            flow.authorize(manual=True)

    def test_manual_mode_binds_no_listener(self, provider):
        factory = RecordingListenerFactory()
        flow = make_flow(
            provider,
            state_factory=lambda: "S",
            prompt=lambda message: "http://localhost/?code=C&state=S",
            listener_factory=factory,
        )
        flow.authorize(manual=True)
        assert factory.created == []


class TestBrowserFlow:
    def test_success_closes_listener(self, provider):
        factory = RecordingListenerFactory()
        browser = BrowserStub({"code": "CODE123", "state": "<state>"})
        flow = make_flow(provider, open_browser=browser, listener_factory=factory)

        grant = flow.authorize()
        browser.thread.join(timeout=5)

        assert grant.refresh_token == "refresh-initial"
        assert flow.session.phase is SessionPhase.COMPLETE
        listener = factory.created[0]
        assert listener.is_open is False
        _, code, redirect_uri, _ = provider.exchange_calls[0]
        assert code == "CODE123"
        assert redirect_uri == flow.session.redirect_uri
        assert redirect_uri.startswith("http://127.0.0.1:")

    def test_forged_state_never_exchanges(self, provider):
        factory = RecordingListenerFactory()
        browser = BrowserStub({"code": "CODE123", "state": "forged"})
        flow = make_flow(provider, open_browser=browser, listener_factory=factory)

        with pytest.raises(StateMismatch):
            flow.authorize()
        browser.thread.join(timeout=5)

        assert provider.exchange_calls == []
        assert factory.created[0].is_open is False
        assert flow.session.phase is SessionPhase.FAILED

    def test_user_denied(self, provider):
        factory = RecordingListenerFactory()
        browser = BrowserStub({"error": "access_denied", "state": "<state>"})
        flow = make_flow(provider, open_browser=browser, listener_factory=factory)

        with pytest.raises(UserDenied):
            flow.authorize()
        browser.thread.join(timeout=5)

        assert provider.exchange_calls == []
        assert factory.created[0].is_open is False

    def test_timeout_closes_listener(self, provider):
        factory = RecordingListenerFactory()
        browser = BrowserStub(redirect_params=None, opened=False)
        flow = make_flow(provider, open_browser=browser, listener_factory=factory, timeout=0.3)

        with pytest.raises(AuthorizationTimeout):
            flow.authorize()

        assert provider.exchange_calls == []
        assert factory.created[0].is_open is False
        assert flow.session.phase is SessionPhase.FAILED

    def test_cancel_during_wait_releases_listener(self, provider):
        created = []

        def factory():
            listener = InterruptedListener(host="127.0.0.1")
            created.append(listener)
            return listener

        browser = BrowserStub(redirect_params=None)
        flow = make_flow(provider, open_browser=browser, listener_factory=factory)

        with pytest.raises(KeyboardInterrupt):
            flow.authorize()

        assert created[0].is_open is False
        assert flow.session.phase is SessionPhase.FAILED
        assert provider.exchange_calls == []
        port = urlparse(_url_params(browser.urls[0])["redirect_uri"]).port
        with pytest.raises(requests.ConnectionError):
            requests.get(f"http://127.0.0.1:{port}/oauth2callback", timeout=2)

    def test_exchange_failure_closes_listener(self, provider):
        provider.exchange_error = OAuthProviderError("boom")
        factory = RecordingListenerFactory()
        browser = BrowserStub({"code": "C", "state": "<state>"})
        flow = make_flow(provider, open_browser=browser, listener_factory=factory)

        with pytest.raises(TokenExchangeFailed):
            flow.authorize()
        browser.thread.join(timeout=5)

        assert factory.created[0].is_open is False

    def test_prints_url_when_browser_unavailable(self, provider):
        lines = []
        browser = BrowserStub({"code": "C", "state": "<state>"}, opened=False)
        flow = make_flow(provider, open_browser=browser, output=lines.append)

        flow.authorize()
        browser.thread.join(timeout=5)

        assert any(browser.urls[0] in line for line in lines)

    def test_each_session_gets_fresh_state(self, provider):
        states = []
        for _ in range(2):
            browser = BrowserStub({"code": "C", "state": "<state>"})
            flow = make_flow(provider, open_browser=browser)
            flow.authorize()
            browser.thread.join(timeout=5)
            states.append(flow.session.state)
        assert states[0] != states[1]


class TestSessionTransitions:
    def test_illegal_transition_raises(self, provider):
        flow = make_flow(
            provider,
            state_factory=lambda: "S",
            prompt=lambda message: "http://localhost/?code=C&state=S",
        )
        flow.authorize(manual=True)
        with pytest.raises(RuntimeError):
            flow.session.transition(SessionPhase.EXCHANGING)
