"""
BlueskyProvider — AT Protocol app-password login.

There is no OAuth page: the user fills in the custom fields (PDS service,
handle, app password) and the frontend submits them base64-encoded as the
"code".  The raw fields are persisted encrypted so later calls know which
PDS the channel lives on.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import (
    AuthResult,
    BaseProvider,
    SupportsCustomFields,
    SupportsRefresh,
    operation,
)
from connectors.errors import RefreshTokenRequired
from connectors.schemas import (
    AuthenticateParams,
    AuthTokenDetails,
    AuthUrl,
    CredentialRecord,
    CustomField,
    RefreshResult,
)

logger = logging.getLogger(__name__)


def decode_custom_fields(code: str) -> Dict[str, Any]:
    return json.loads(base64.b64decode(code).decode())


class BlueskyProvider(BaseProvider, SupportsCustomFields, SupportsRefresh):

    @property
    def identifier(self) -> str:
        return "bluesky"

    @property
    def display_name(self) -> str:
        return "Bluesky"

    def custom_fields(self) -> List[CustomField]:
        return [
            CustomField(
                key="service",
                label="Service",
                default_value=config.bluesky_default_service,
                validation=r"^(https?:\/\/)[^\s]+$",
            ),
            CustomField(key="identifier", label="Identifier"),
            CustomField(key="password", label="App Password", type="password"),
        ]

    @staticmethod
    def _check(resp):
        # An expired access JWT comes back as 400 ExpiredToken, not 401
        if resp.status_code == 400 and resp.json().get("error") == "ExpiredToken":
            raise RefreshTokenRequired()
        return BaseProvider._check(resp)

    def _service(self, credential: Optional[CredentialRecord]) -> str:
        details = self.instance_details(credential) if credential else {}
        return (details.get("service") or config.bluesky_default_service).rstrip("/")

    async def generate_auth_url(
        self, external_context: Optional[Dict[str, Any]] = None
    ) -> AuthUrl:
        # The form is rendered client-side; nothing to redirect to.
        return AuthUrl(url="", state=self.make_state())

    async def authenticate(
        self,
        params: AuthenticateParams,
        external_context: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        try:
            fields = decode_custom_fields(params.code)
        except ValueError:
            return "Invalid credentials payload"

        service = (fields.get("service") or config.bluesky_default_service).rstrip("/")
        async with self._client() as client:
            session_resp = await client.post(
                f"{service}/xrpc/com.atproto.server.createSession",
                json={"identifier": fields.get("identifier", ""), "password": fields.get("password", "")},
            )
            if session_resp.status_code in (400, 401):
                return "Invalid username or app password"
            session_resp.raise_for_status()
            session = session_resp.json()

            profile_resp = await client.get(
                f"{service}/xrpc/app.bsky.actor.getProfile",
                params={"actor": session["did"]},
                headers={"Authorization": f"Bearer {session['accessJwt']}"},
            )
            profile_resp.raise_for_status()
            profile = profile_resp.json()

        return AuthTokenDetails(
            id=session["did"],
            name=profile.get("displayName") or "",
            username=session.get("handle") or "",
            picture=profile.get("avatar") or "",
            access_token=session["accessJwt"],
            refresh_token=session["refreshJwt"],
            expires_in=3600,
        )

    async def refresh_token(
        self, refresh_token: str, credential: Optional[CredentialRecord] = None
    ) -> RefreshResult:
        async with self._client() as client:
            resp = await client.post(
                f"{self._service(credential)}/xrpc/com.atproto.server.refreshSession",
                headers={"Authorization": f"Bearer {refresh_token}"},
            )
            if resp.status_code in (400, 401):
                logger.warning("Bluesky refused session refresh: %s", resp.text)
                return RefreshResult()
            resp.raise_for_status()
            session = resp.json()

        return RefreshResult(
            access_token=session["accessJwt"],
            refresh_token=session["refreshJwt"],
            expires_in=3600,
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
        async with self._client() as client:
            resp = self._check(
                await client.get(
                    f"{self._service(credential)}/xrpc/app.bsky.actor.searchActorsTypeahead",
                    params={"q": data.get("query", ""), "limit": 10},
                    headers={"Authorization": f"Bearer {token}"},
                )
            )
        return [
            {
                "id": actor["handle"],
                "label": actor.get("displayName") or actor["handle"],
                "image": actor.get("avatar", ""),
            }
            for actor in resp.json().get("actors", [])
        ]
