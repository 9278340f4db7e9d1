"""
GitHubProvider — OAuth2 (GitHub App, PKCE) for GitHub accounts.

GitHub Apps with "Expire user authorization tokens" enabled hand out
refresh tokens; classic OAuth tokens never expire and come back without one.
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

# GitHub OAuth2 endpoints
_GH_AUTH_URL = "https://github.com/login/oauth/authorize"
_GH_TOKEN_URL = "https://github.com/login/oauth/access_token"
_GH_API = "https://api.github.com"


class GitHubProvider(BaseProvider, SupportsRefresh):
    """OAuth2 provider for GitHub."""

    @property
    def identifier(self) -> str:
        return "github"

    @property
    def display_name(self) -> str:
        return "GitHub"

    @property
    def scopes(self) -> List[str]:
        return ["read:user", "user:email", "repo"]

    def is_configured(self) -> bool:
        return bool(config.github_client_id and config.github_client_secret)

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }

    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        state = self.make_state()
        verifier = self.make_code_verifier()
        params = {
            "client_id": config.github_client_id,
            "redirect_uri": config.redirect_uri(self.identifier),
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": self.code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthUrl(url=f"{_GH_AUTH_URL}?{urlencode(params)}", state=state, code_verifier=verifier)

    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        """Exchange auth code for tokens and fetch user profile."""
        async with self._client() as client:
            token_resp = await client.post(
                _GH_TOKEN_URL,
                data={
                    "client_id": config.github_client_id,
                    "client_secret": config.github_client_secret,
                    "code": params.code,
                    "code_verifier": params.code_verifier,
                    "redirect_uri": config.redirect_uri(self.identifier),
                },
                headers={"Accept": "application/json"},
            )
            token_resp.raise_for_status()
            token_data = token_resp.json()

            if "error" in token_data:
                return token_data.get("error_description", token_data["error"])

            granted = set(filter(None, token_data.get("scope", "").split(",")))
            missing = [s for s in self.scopes if s not in granted]
            if granted and missing:
                return f"Missing scopes: {', '.join(missing)}"

            user_resp = await client.get(
                f"{_GH_API}/user", headers=self._headers(token_data["access_token"])
            )
            user_resp.raise_for_status()
            user = user_resp.json()

        return AuthTokenDetails(
            id=str(user.get("id", "")),
            name=user.get("name") or "",
            username=user.get("login") or "",
            picture=user.get("avatar_url") or "",
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or "",
            expires_in=token_data.get("expires_in", 28800),  # 8h for GitHub Apps
        )

    async def refresh_token(
        self, refresh_token: str, credential: Optional[CredentialRecord] = None
    ) -> RefreshResult:
        async with self._client() as client:
            resp = await client.post(
                _GH_TOKEN_URL,
                data={
                    "client_id": config.github_client_id,
                    "client_secret": config.github_client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()

        if "error" in data:
            logger.warning(
                "GitHub token refresh refused: %s",
                data.get("error_description", data["error"]),
            )
            return RefreshResult()

        return RefreshResult(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in", 28800),
        )

    # ── Operations ──────────────────────────────────────────────────────

    @operation
    async def mention(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> List[Dict[str, Any]]:
        """Search users for @-mention completion."""
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{_GH_API}/search/users",
                    params={"q": data.get("query", ""), "per_page": 10},
                    headers=self._headers(token),
                )
            )
        return [
            {"id": u["login"], "label": u["login"], "image": u.get("avatar_url", "")}
            for u in resp.json().get("items", [])
        ]

    @operation
    async def repositories(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> List[Dict[str, Any]]:
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{_GH_API}/user/repos",
                    params={"per_page": data.get("per_page", 30), "sort": "updated"},
                    headers=self._headers(token),
                )
            )
        return [
            {"id": r["full_name"], "name": r["name"], "private": r.get("private", False)}
            for r in resp.json()
        ]
