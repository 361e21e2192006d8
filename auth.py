import logging
from abc import ABC, abstractmethod
from urllib.parse import parse_qs, urlencode, urlparse

import requests
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from models import Identity, Session

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
REQUEST_TIMEOUT = 10


class AuthError(Exception):
    """The identity provider rejected a request (e.g. INVALID_OOB_CODE)."""


class AuthUnavailableError(AuthError):
    """The identity provider could not be reached or failed on its side."""


# --- Auth provider contract ---

class AuthProvider(ABC):
    @abstractmethod
    def send_sign_in_link(self, email, redirect_url):
        """Emails a one-time sign-in link that returns the user to redirect_url."""
        pass

    @abstractmethod
    def sign_in_with_link(self, email, oob_code):
        """Exchanges the code from the emailed link for a Session."""
        pass

    @abstractmethod
    def validate(self, session):
        """
        Returns the session (possibly with refreshed tokens), or None if it is no longer valid.
        A session that cannot be checked because the provider is unreachable is kept.
        """
        pass

    @abstractmethod
    def sign_out(self, session):
        pass


def build_continue_url(app_url, email):
    """The app's own URL, carrying the email so the link can be completed in a new tab."""
    separator = "&" if "?" in app_url else "?"
    return f"{app_url}{separator}{urlencode({'email': email})}"


def parse_sign_in_link(params):
    """
    Extracts (oob_code, email) from the query parameters the app was opened with.
    The email is read from the parameters directly, or from the continue URL / full link
    that Firebase passes along. Returns None when the parameters are not a sign-in link.
    """
    oob_code = params.get("oobCode")
    if not oob_code or params.get("mode", "signIn") != "signIn":
        return None

    email = params.get("email")
    for nested in ("continueUrl", "link"):
        if email or not params.get(nested):
            continue
        nested_query = parse_qs(urlparse(params.get(nested)).query)
        email = (nested_query.get("email") or [None])[0]
    return oob_code, email


# --- Firebase implementation ---

class FirebaseEmailLinkAuth(AuthProvider):
    """Firebase Auth email-link sign-in over the Identity Toolkit REST API."""

    def __init__(self, api_key, http=requests):
        self.api_key = api_key
        self.http = http

    def _post(self, url, **kwargs):
        try:
            response = self.http.post(url, params={"key": self.api_key}, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning("Auth request to %s failed: %s", url, e)
            raise AuthUnavailableError(f"Could not reach the sign-in service: {e}") from e

        if response.status_code != 200:
            try:
                message = response.json().get("error", {}).get("message", "")
            except ValueError:
                message = ""
            logger.warning("Auth request to %s rejected (%s): %s", url, response.status_code, message)
            error_class = AuthUnavailableError if response.status_code >= 500 else AuthError
            raise error_class(message or f"Sign-in service returned HTTP {response.status_code}")
        return response.json()

    def send_sign_in_link(self, email, redirect_url):
        payload = {
            "requestType": "EMAIL_SIGNIN",
            "email": email,
            "continueUrl": build_continue_url(redirect_url, email),
            "canHandleCodeInApp": True,
        }
        self._post(f"{IDENTITY_TOOLKIT_URL}/accounts:sendOobCode", json=payload)
        logger.info("Sign-in link sent to %s", email)

    def sign_in_with_link(self, email, oob_code):
        result = self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithEmailLink",
            json={"email": email, "oobCode": oob_code},
        )
        return Session(
            user=Identity(id=result["localId"], email=result.get("email", email)),
            id_token=result.get("idToken", ""),
            refresh_token=result.get("refreshToken", ""),
        )

    def refresh(self, session):
        result = self._post(
            SECURE_TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
        )
        return Session(
            user=session.user,
            id_token=result["id_token"],
            refresh_token=result.get("refresh_token", session.refresh_token),
        )

    def validate(self, session):
        try:
            firebase_auth.verify_id_token(session.id_token, check_revoked=True)
            return session
        except firebase_auth.ExpiredIdTokenError:
            pass
        except (firebase_auth.InvalidIdTokenError, firebase_auth.UserDisabledError,
                firebase_auth.UserNotFoundError) as e:
            logger.info("Session for %s is no longer valid: %s", session.user.id, e)
            return None
        except firebase_exceptions.FirebaseError as e:
            # Verification could not be carried out (e.g. certificates unreachable).
            logger.warning("Could not verify session for %s: %s", session.user.id, e)
            return session

        try:
            return self.refresh(session)
        except AuthUnavailableError as e:
            logger.warning("Could not refresh session for %s: %s", session.user.id, e)
            return session
        except AuthError as e:
            logger.info("Refreshing session for %s failed: %s", session.user.id, e)
            return None

    def sign_out(self, session):
        try:
            firebase_auth.revoke_refresh_tokens(session.user.id)
        except firebase_exceptions.FirebaseError as e:
            # The local session is cleared regardless.
            logger.warning("Revoking tokens for %s failed: %s", session.user.id, e)


# --- Session Store ---

class SessionStore:
    """Current session of one browser session, with change notifications."""

    def __init__(self, provider, redirect_url):
        self.provider = provider
        self.redirect_url = redirect_url
        self.session = None
        self._listeners = []

    @property
    def identity(self):
        return self.session.user if self.session else None

    def get_current_session(self):
        if self.session is None:
            return None
        validated = self.provider.validate(self.session)
        if validated is None:
            self._set_session(None)
        else:
            # A token refresh is not a transition; listeners are not notified.
            self.session = validated
        return self.session

    def on_change(self, callback):
        """Subscribes to session transitions. Returns a function that unsubscribes."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def sign_in_with_email(self, address):
        address = (address or "").strip()
        if not address:
            return False
        self.provider.send_sign_in_link(address, self.redirect_url)
        return True

    def complete_sign_in(self, params):
        """Finishes sign-in from the emailed link's query parameters. Returns None if there is no link."""
        link = parse_sign_in_link(params)
        if link is None:
            return None
        oob_code, email = link
        if not email:
            raise AuthError("MISSING_EMAIL")
        session = self.provider.sign_in_with_link(email, oob_code)
        self._set_session(session)
        return session

    def sign_out(self):
        if self.session is not None:
            self.provider.sign_out(self.session)
        self._set_session(None)

    def _set_session(self, session):
        previous = self.session
        self.session = session
        if previous == session:
            return
        logger.info("Session changed: %s -> %s",
                    previous.user.id if previous else None,
                    session.user.id if session else None)
        for callback in list(self._listeners):
            callback(session)
