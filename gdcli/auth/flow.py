"""
flow.py

Interactive OAuth2 authorization-code flow. Turns the shared client
identity plus one user consent into a refresh token, either through the
loopback redirect ("browser" mode) or by having the user paste the
redirect URL back ("manual" mode, for remote shells and containers).
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import logging
import secrets
import webbrowser
from collections.abc import Callable
from urllib.parse import urlparse

from gdcli import config
from gdcli.auth.callback_server import LoopbackListener, query_params
from gdcli.auth.errors import (
    InvalidRedirect,
    StateMismatch,
    TokenExchangeFailed,
    UserDenied,
)
from gdcli.auth.google_oauth import (
    GoogleOAuthProvider,
    OAuthProviderError,
    code_challenge,
    generate_code_verifier,
    generate_state,
)
from gdcli.auth.models import (
    AuthorizationSession,
    ClientCredentials,
    FlowMode,
    SessionPhase,
    TokenGrant,
)

_log = logging.getLogger("gdcli.auth.flow")


def _default_prompt(message: str) -> str:
    return input(message)


def _default_open_browser(url: str) -> bool:
    try:
        return webbrowser.open(url)
    except webbrowser.Error as exc:
        _log.info("Could not open browser: %s", exc)
        return False


def parse_redirect_url(pasted: str) -> dict[str, str]:
    """
    Extract the query parameters from a pasted redirect URL.

    A bare query string ("code=...&state=...") is accepted too.

    Raises:
        InvalidRedirect: If nothing usable was pasted.
    """
    text = (pasted or "").strip()
    if not text:
        raise InvalidRedirect("No redirect URL was entered")

    parsed = urlparse(text)
    query = parsed.query if parsed.scheme or parsed.netloc else text.lstrip("?")
    params = query_params(query)
    if not params:
        raise InvalidRedirect("The pasted URL has no query parameters")
    return params


def validate_redirect(params: dict[str, str], expected_state: str) -> str:
    """
    Check a redirect's parameters against the session and return the code.

    The state is checked before anything else, so a forged or stale
    redirect never reaches the token endpoint.

    Raises:
        StateMismatch: If `state` is missing or differs from `expected_state`.
        UserDenied: If the provider reported an `error`.
        InvalidRedirect: If there is no `code`.
    """
    received_state = params.get("state", "")
    if not received_state or not secrets.compare_digest(
        received_state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        raise StateMismatch()

    error = params.get("error")
    if error:
        raise UserDenied(error, params.get("error_description", ""))

    code = (params.get("code") or "").strip()
    if not code:
        raise InvalidRedirect("The redirect carries neither an authorization code nor an error")
    return code


class AuthorizationFlow:
    """
    Runs one authorization session per `authorize()` call.

    Every collaborator with a side effect (provider endpoints, browser,
    terminal prompt, printing) is injected so tests can drive the flow
    without a network or a TTY.

    Example:
        flow = AuthorizationFlow(creds, GoogleOAuthProvider())
        grant = flow.authorize(manual=False)
    """

    def __init__(
        self,
        client: ClientCredentials,
        provider: GoogleOAuthProvider,
        timeout: float = config.AUTH_TIMEOUT_SECONDS,
        open_browser: Callable[[str], bool] = _default_open_browser,
        prompt: Callable[[str], str] = _default_prompt,
        output: Callable[[str], None] = print,
        state_factory: Callable[[], str] | None = None,
        listener_factory: Callable[[], LoopbackListener] = LoopbackListener,
        manual_redirect_uri: str = config.MANUAL_REDIRECT_URI,
    ) -> None:
        self._client = client
        self._provider = provider
        self._timeout = timeout
        self._open_browser = open_browser
        self._prompt = prompt
        self._output = output
        self._state_factory = state_factory or generate_state
        self._listener_factory = listener_factory
        self._manual_redirect_uri = manual_redirect_uri
        self.session: AuthorizationSession | None = None

    def authorize(self, manual: bool = False) -> TokenGrant:
        """
        Run the consent flow to completion.

        Args:
            manual: Use the copy-paste variant instead of the loopback listener.

        Returns:
            The token grant; its refresh_token is always set.

        Raises:
            AuthorizationError: Any terminal failure of the session.
            KeyboardInterrupt: If the user cancels; the session is marked FAILED.
        """
        self.session = AuthorizationSession(
            state=self._state_factory(),
            code_verifier=generate_code_verifier(),
            mode=FlowMode.MANUAL if manual else FlowMode.BROWSER,
        )
        _log.info("Starting %s authorization", self.session.mode.value)

        try:
            if manual:
                code = self._await_manual_code(self.session)
            else:
                code = self._await_browser_code(self.session)
            grant = self._exchange(self.session, code)
        except BaseException:
            if not self.session.finished:
                self.session.transition(SessionPhase.FAILED)
            _log.warning("Authorization session failed in phase %s", self.session.phase.value)
            raise

        self.session.transition(SessionPhase.COMPLETE)
        _log.info("Authorization complete")
        return grant

    # --- Internal ---

    def _consent_url(self, session: AuthorizationSession) -> str:
        return self._provider.authorization_url(
            self._client,
            session.redirect_uri,
            session.state,
            code_challenge(session.code_verifier),
        )

    def _await_browser_code(self, session: AuthorizationSession) -> str:
        with self._listener_factory() as listener:
            session.redirect_uri = listener.redirect_uri
            url = self._consent_url(session)
            session.transition(SessionPhase.AWAITING_REDIRECT)

            if self._open_browser(url):
                self._output("Opened your browser to authorize gdcli.")
                self._output(f"If nothing happened, open this URL:\n\n  {url}\n")
            else:
                self._output(f"Open this URL in your browser to authorize gdcli:\n\n  {url}\n")
            self._output(f"Waiting up to {self._timeout:.0f}s for the authorization redirect...")

            params = listener.wait_for_redirect(self._timeout)
            return validate_redirect(params, session.state)

    def _await_manual_code(self, session: AuthorizationSession) -> str:
        session.redirect_uri = self._manual_redirect_uri
        url = self._consent_url(session)
        session.transition(SessionPhase.AWAITING_REDIRECT)

        self._output("Open this URL in any browser and approve access:\n")
        self._output(f"  {url}\n")
        self._output(
            f"The browser will then fail to load a page on {self._manual_redirect_uri}. "
            "Copy the full URL from its address bar and paste it here."
        )
        try:
            pasted = self._prompt("Redirect URL: ")
        except EOFError:
            raise KeyboardInterrupt from None

        params = parse_redirect_url(pasted)
        return validate_redirect(params, session.state)

    def _exchange(self, session: AuthorizationSession, code: str) -> TokenGrant:
        session.transition(SessionPhase.EXCHANGING)
        try:
            grant = self._provider.exchange_code(
                self._client, code, session.redirect_uri, session.code_verifier
            )
        except OAuthProviderError as exc:
            raise TokenExchangeFailed(f"Token exchange failed: {exc}") from exc

        if not grant.refresh_token:
            raise TokenExchangeFailed(
                "Google did not return a refresh token. Revoke gdcli's access at "
                "https://myaccount.google.com/permissions and try again."
            )
        return grant
