"""
Pydantic schemas shared by the connector subsystem.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

NO_CODE_VERIFIER = "none"


# ═══════════════════════════════════════════════════════════════════════════════
# Authorization flow
# ═══════════════════════════════════════════════════════════════════════════════


class AuthorizationState(BaseModel):
    """Everything needed to finish a handshake, stored under the state token."""

    code_verifier: str = NO_CODE_VERIFIER
    external_context: Optional[Dict[str, Any]] = None
    reconnect_target: Optional[str] = None


class AuthUrl(BaseModel):
    """What a provider hands back when asked for an authorization URL."""

    url: str
    state: str
    code_verifier: str = NO_CODE_VERIFIER


class AuthorizationUrlResult(BaseModel):
    url: Optional[str] = None
    failed: bool = False
    message: Optional[str] = None


class AuthenticateParams(BaseModel):
    code: str
    code_verifier: str = NO_CODE_VERIFIER
    refresh: Optional[str] = None


class AuthTokenDetails(BaseModel):
    """Normalized result of a successful provider handshake."""

    id: str = ""
    name: str = ""
    username: str = ""
    picture: str = ""
    access_token: str = ""
    refresh_token: str = ""
    expires_in: Optional[int] = None
    additional_settings: List[Dict[str, Any]] = Field(default_factory=list)


class RefreshResult(BaseModel):
    access_token: str = ""
    refresh_token: str = ""
    expires_in: Optional[int] = None
    additional_settings: Optional[List[Dict[str, Any]]] = None


class CustomField(BaseModel):
    key: str
    label: str
    type: str = "text"  # "text" | "password"
    default_value: str = ""
    validation: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Credential records
# ═══════════════════════════════════════════════════════════════════════════════


class CredentialRecord(BaseModel):
    """A persisted channel with its tokens already decrypted."""

    id: str
    organization_id: str
    provider_identifier: str
    external_account_id: str
    display_name: str = ""
    username: str = ""
    picture_url: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expiration: Optional[datetime] = None
    additional_settings: List[Dict[str, Any]] = Field(default_factory=list)
    custom_instance_details: Optional[str] = None
    disabled: bool = False
    in_between_steps: bool = False
    refresh_needed: bool = False
    one_time_token: bool = False
    timezone: Optional[int] = None


class CredentialUpsert(BaseModel):
    """Fields written on every create-or-update of a channel."""

    organization_id: str
    provider_identifier: str
    external_account_id: str
    display_name: str
    picture_url: str = ""
    username: str = ""
    access_token: str
    refresh_token: str = ""
    expires_in: Optional[int] = None
    additional_settings: Optional[List[Dict[str, Any]]] = None
    one_time_token: bool = False
    in_between_steps: Optional[bool] = None   # None keeps the stored value
    timezone: Optional[int] = None
    custom_instance_details: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Mentions
# ═══════════════════════════════════════════════════════════════════════════════


class CachedMention(BaseModel):
    name: str
    username: str
    image: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Request bodies
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectRequest(BaseModel):
    state: str
    code: str
    refresh: Optional[str] = None
    timezone: Optional[int] = None


class FunctionRequest(BaseModel):
    id: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ProfileChangeRequest(BaseModel):
    name: str = ""
    picture: str = ""
