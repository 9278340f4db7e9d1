"""
GmailProvider — Google OAuth2 web flow for Gmail.

``access_type=offline`` plus ``prompt=consent`` makes Google return a refresh
token on every consent, including reconnections.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from config.settings import config
from connectors.base import AuthResult, BaseProvider, SupportsRefresh, operation
from connectors.schemas import (
    AuthenticateParams,
    AuthTokenDetails,
    AuthUrl,
    CredentialRecord,
    RefreshResult,
)

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
_GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"


class GmailProvider(BaseProvider, SupportsRefresh):
    """OAuth2 provider for Gmail."""

    @property
    def identifier(self) -> str:
        return "gmail"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.send",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
        ]

    def is_configured(self) -> bool:
        return bool(config.google_client_id and config.google_client_secret)

    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        state = self.make_state()
        verifier = self.make_code_verifier()
        params = {
            "client_id": config.google_client_id,
            "redirect_uri": config.redirect_uri(self.identifier),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
            "state": state,
            "code_challenge": self.code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthUrl(url=f"{_GOOGLE_AUTH_URL}?{urlencode(params)}", state=state, code_verifier=verifier)

    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        async with self._client() as client:
            token_resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "code": params.code,
                    "code_verifier": params.code_verifier,
                    "client_id": config.google_client_id,
                    "client_secret": config.google_client_secret,
                    "redirect_uri": config.redirect_uri(self.identifier),
                    "grant_type": "authorization_code",
                },
            )
            if token_resp.status_code == 400:
                return token_resp.json().get("error_description", "Invalid authorization code")
            token_resp.raise_for_status()
            token_data = token_resp.json()

            granted = set(token_data.get("scope", "").split())
            if not all(s in granted for s in self.scopes):
                return "Please grant every requested Gmail permission"

            headers = {"Authorization": f"Bearer {token_data['access_token']}"}
            user_resp = await client.get(_GOOGLE_USERINFO_URL, headers=headers)
            user_resp.raise_for_status()
            user_info = user_resp.json()

        return AuthTokenDetails(
            id=str(user_info.get("id", "")),
            name=user_info.get("name") or "",
            username=user_info.get("email") or "",
            picture=user_info.get("picture") or "",
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or "",
            expires_in=token_data.get("expires_in", 3600),
        )

    async def refresh_token(
        self, refresh_token: str, credential: Optional[CredentialRecord] = None
    ) -> RefreshResult:
        async with self._client() as client:
            resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "client_id": config.google_client_id,
                    "client_secret": config.google_client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            if resp.status_code in (400, 401):
                # invalid_grant: revoked or expired refresh token
                logger.warning("Google refused refresh: %s", resp.text)
                return RefreshResult()
            resp.raise_for_status()
            data = resp.json()

        return RefreshResult(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in", 3600),
        )

    # ── Operations ──────────────────────────────────────────────────────

    @operation
    async def labels(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> List[Dict[str, Any]]:
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{_GMAIL_API}/labels",
                    headers={"Authorization": f"Bearer {token}"},
                )
            )
        return [
            {"id": label["id"], "name": label["name"]}
            for label in resp.json().get("labels", [])
        ]

    @operation
    async def mention(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> Dict[str, bool]:
        # Gmail has no handle directory to search
        return {"none": True}
