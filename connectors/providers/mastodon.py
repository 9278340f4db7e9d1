"""
MastodonProvider — OAuth2 against a user-chosen Mastodon instance.

The instance URL is supplied when the authorization URL is requested; an
OAuth application is registered on that instance on the fly and its
client credentials travel with the authorization state.  Mastodon access
tokens do not expire, so there is nothing to refresh.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from config.settings import config
from connectors.base import (
    AuthResult,
    BaseProvider,
    SupportsChangeNickname,
    SupportsChangeProfilePicture,
    SupportsExternalContext,
    operation,
)
from connectors.schemas import (
    AuthenticateParams,
    AuthTokenDetails,
    AuthUrl,
    CredentialRecord,
)

logger = logging.getLogger(__name__)


class MastodonProvider(
    BaseProvider,
    SupportsExternalContext,
    SupportsChangeNickname,
    SupportsChangeProfilePicture,
):
    one_time_token = True

    @property
    def identifier(self) -> str:
        return "mastodon"

    @property
    def display_name(self) -> str:
        return "Mastodon"

    @property
    def scopes(self) -> List[str]:
        return ["read", "write", "profile"]

    @staticmethod
    def _instance(context: Optional[Dict[str, Any]]) -> str:
        if not context or not context.get("instance_url"):
            raise ValueError("Mastodon instance URL missing from external context")
        return context["instance_url"].rstrip("/")

    async def resolve_external_context(self, external_url: str) -> Dict[str, Any]:
        """Register an OAuth application on the instance."""
        async with self._client() as client:
            resp = await client.post(
                f"{external_url.rstrip('/')}/api/v1/apps",
                data={
                    "client_name": config.mastodon_app_name,
                    "redirect_uris": config.redirect_uri(self.identifier),
                    "scopes": " ".join(self.scopes),
                },
            )
            resp.raise_for_status()
            app = resp.json()
        return {"client_id": app["client_id"], "client_secret": app["client_secret"]}

    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        instance = self._instance(external_context)
        state = self.make_state()
        verifier = self.make_code_verifier()
        params = {
            "client_id": external_context["client_id"],
            "redirect_uri": config.redirect_uri(self.identifier),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": self.code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthUrl(url=f"{instance}/oauth/authorize?{urlencode(params)}", state=state, code_verifier=verifier)

    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        instance = self._instance(external_context)
        async with self._client() as client:
            token_resp = await client.post(
                f"{instance}/oauth/token",
                data={
                    "grant_type": "authorization_code",
                    "code": params.code,
                    "code_verifier": params.code_verifier,
                    "client_id": external_context["client_id"],
                    "client_secret": external_context["client_secret"],
                    "redirect_uri": config.redirect_uri(self.identifier),
                    "scope": " ".join(self.scopes),
                },
            )
            if token_resp.status_code in (400, 401):
                return token_resp.json().get("error_description", "Authorization refused")
            token_resp.raise_for_status()
            token = token_resp.json()["access_token"]

            me_resp = await client.get(
                f"{instance}/api/v1/accounts/verify_credentials",
                headers={"Authorization": f"Bearer {token}"},
            )
            me_resp.raise_for_status()
            me = me_resp.json()

        return AuthTokenDetails(
            id=str(me["id"]),
            name=me.get("display_name") or "",
            username=me.get("username") or "",
            picture=me.get("avatar") or "",
            access_token=token,
        )

    async def _update_credentials(
        self, credential: CredentialRecord, fields: Dict[str, str]
    ) -> Dict[str, Any]:
        instance = self._instance(self.instance_details(credential))
        async with self._client() as client:
            resp = self._check(
                await client.patch(
                    f"{instance}/api/v1/accounts/update_credentials",
                    data=fields,
                    headers={"Authorization": f"Bearer {credential.access_token}"},
                )
            )
        return resp.json()

    async def change_nickname(self, credential: CredentialRecord, name: str) -> str:
        account = await self._update_credentials(credential, {"display_name": name})
        return account.get("display_name") or name

    async def change_profile_picture(
        self, credential: CredentialRecord, picture_url: str
    ) -> str:
        async with self._client() as client:
            image = await client.get(picture_url)
            image.raise_for_status()
            instance = self._instance(self.instance_details(credential))
            resp = self._check(
                await client.patch(
                    f"{instance}/api/v1/accounts/update_credentials",
                    files={"avatar": ("avatar", image.content, image.headers.get("content-type", "image/png"))},
                    headers={"Authorization": f"Bearer {credential.access_token}"},
                )
            )
        return resp.json().get("avatar") or picture_url

    # ── Operations ──────────────────────────────────────────────────────

    @operation
    async def mention(
        self,
        token: str,
        data: Dict[str, Any],
        external_account_id: str,
        credential: CredentialRecord,
    ) -> List[Dict[str, Any]]:
        instance = self._instance(self.instance_details(credential))
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{instance}/api/v2/search",
                    params={"q": data.get("query", ""), "type": "accounts", "limit": 10},
                    headers={"Authorization": f"Bearer {token}"},
                )
            )
        return [
            {
                "id": account["acct"],
                "label": account.get("display_name") or account["acct"],
                "image": account.get("avatar", ""),
            }
            for account in resp.json().get("accounts", [])
        ]
