"""
LinkedInPageProvider — posts as a LinkedIn organization page.

The handshake authenticates a *member*; the member then picks which page the
channel represents in a follow-up UI step (``is_between_steps``).  When an
existing page channel is reconnected the page is already known, so
``reconnect`` resolves it directly from the fresh member token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from config.settings import config
from connectors.base import (
    AuthResult,
    BaseProvider,
    SupportsReconnect,
    SupportsRefresh,
    operation,
)
from connectors.schemas import (
    AuthenticateParams,
    AuthTokenDetails,
    AuthUrl,
    CredentialRecord,
    RefreshResult,
)

logger = logging.getLogger(__name__)

_LI_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
_LI_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
_LI_API = "https://api.linkedin.com"
_LI_VERSION = "202409"


class LinkedInPageProvider(BaseProvider, SupportsRefresh, SupportsReconnect):
    is_between_steps = True
    # LinkedIn takes a few seconds before a refreshed token is accepted
    refresh_wait = True

    @property
    def identifier(self) -> str:
        return "linkedin-page"

    @property
    def display_name(self) -> str:
        return "LinkedIn Page"

    @property
    def scopes(self) -> List[str]:
        return [
            "openid",
            "profile",
            "w_member_social",
            "r_organization_social",
            "w_organization_social",
            "rw_organization_admin",
        ]

    def is_configured(self) -> bool:
        return bool(config.linkedin_client_id and config.linkedin_client_secret)

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "LinkedIn-Version": _LI_VERSION,
            "X-Restli-Protocol-Version": "2.0.0",
        }

    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        state = self.make_state()
        params = {
            "response_type": "code",
            "client_id": config.linkedin_client_id,
            "redirect_uri": config.redirect_uri(self.identifier),
            "state": state,
            "scope": " ".join(self.scopes),
        }
        return AuthUrl(url=f"{_LI_AUTH_URL}?{urlencode(params)}", state=state)

    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        async with self._client() as client:
            token_resp = await client.post(
                _LI_TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "code": params.code,
                    "redirect_uri": config.redirect_uri(self.identifier),
                    "client_id": config.linkedin_client_id,
                    "client_secret": config.linkedin_client_secret,
                },
            )
            if token_resp.status_code == 400:
                return token_resp.json().get("error_description", "Invalid authorization code")
            token_resp.raise_for_status()
            token_data = token_resp.json()

            granted = set(token_data.get("scope", "").replace(",", " ").split())
            missing = [s for s in self.scopes if s not in granted]
            if missing:
                return f"Missing scopes: {', '.join(missing)}"

            me_resp = await client.get(
                f"{_LI_API}/v2/userinfo",
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            me_resp.raise_for_status()
            me = me_resp.json()

        return AuthTokenDetails(
            id=me["sub"],
            name=me.get("name") or "",
            picture=me.get("picture") or "",
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or "",
            expires_in=token_data.get("expires_in"),
        )

    async def reconnect(
        self, external_account_id: str, reconnect_target: str, access_token: str
    ) -> AuthResult:
        async with self._client() as client:
            resp = await client.get(
                f"{_LI_API}/rest/organizations/{reconnect_target}",
                headers=self._headers(access_token),
            )
            if resp.status_code in (403, 404):
                return "You are no longer an administrator of this page"
            resp.raise_for_status()
            page = resp.json()

        return AuthTokenDetails(
            id=str(page["id"]),
            name=page.get("localizedName") or "",
            username=page.get("vanityName") or "",
            access_token=access_token,
        )

    async def refresh_token(
        self, refresh_token: str, credential: Optional[CredentialRecord] = None
    ) -> RefreshResult:
        async with self._client() as client:
            resp = await client.post(
                _LI_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": config.linkedin_client_id,
                    "client_secret": config.linkedin_client_secret,
                },
            )
            if resp.status_code in (400, 401):
                logger.warning("LinkedIn refused refresh: %s", resp.text)
                return RefreshResult()
            resp.raise_for_status()
            data = resp.json()

        return RefreshResult(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in"),
        )

    # ── Operations ──────────────────────────────────────────────────────

    @operation
    async def pages(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> List[Dict[str, Any]]:
        """Organization pages the member administers, for the page picker."""
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{_LI_API}/rest/organizationAcls",
                    params={"q": "roleAssignee", "role": "ADMINISTRATOR", "state": "APPROVED"},
                    headers=self._headers(token),
                )
            )
        return [
            {"id": acl["organization"].rsplit(":", 1)[-1]}
            for acl in resp.json().get("elements", [])
        ]
