# src/CMS/services/oauth_providers.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from CMS.app_logger import get_logger
from CMS.core.errors import UpstreamError, ValidationError
from CMS.db.models.enums import IdentityProvider

log = get_logger("auth.oauth")

CODE_REJECTED_MESSAGE = "Authorization code expired or already used. Please try signing in again."


@dataclass(frozen=True)
class OAuthProfile:
    provider: IdentityProvider
    subject: str
    email: str
    name: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    picture: Optional[str] = None
    affiliation: Optional[str] = None


def orcid_email(orcid_id: str) -> str:
    """ORCID does not release email addresses; derive a stable placeholder."""
    return f"{orcid_id.replace('-', '')}@orcid.user"


def _provider_error(r: httpx.Response) -> Optional[str]:
    try:
        body = r.json()
    except ValueError:
        return None
    return body.get("error") if isinstance(body, dict) else None


class _OAuthClient:
    provider: IdentityProvider
    label: str

    def __init__(self, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.5, max=3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _exchange(self, url: str, form: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = await self._request("POST", url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise UpstreamError(self.provider.value, detail=e,
                                message=f"Failed to exchange authorization code with {self.label}", cause=e) from e

        if r.status_code >= 400:
            error = _provider_error(r)
            log.warning("%s token exchange failed: %s %s", self.label, r.status_code, error or r.text[:200])
            if error == "invalid_grant":
                raise ValidationError(CODE_REJECTED_MESSAGE, error_code="invalid_grant")
            if r.status_code < 500:
                raise ValidationError(f"Failed to exchange authorization code with {self.label}",
                                      error_code="oauth_exchange_failed")
            raise UpstreamError(self.provider.value, detail=f"{r.status_code}: {r.text[:500]}",
                                message=f"Failed to exchange authorization code with {self.label}")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(self.provider.value, detail="token response is not JSON",
                                message=f"Failed to exchange authorization code with {self.label}") from e


class GoogleOAuthClient(_OAuthClient):
    provider = IdentityProvider.GOOGLE
    label = "Google"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: Optional[str],
                 token_url: str, userinfo_url: str, **kwargs):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.userinfo_url = userinfo_url

    async def authenticate(self, code: str) -> OAuthProfile:
        tokens = await self._exchange(self.token_url, {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri or "",
            "grant_type": "authorization_code",
        })
        access_token = tokens.get("access_token")
        if not access_token:
            raise UpstreamError("google", detail="no access_token", message="Failed to get access token from Google")

        try:
            r = await self._request("GET", self.userinfo_url, headers={"Authorization": f"Bearer {access_token}"})
            r.raise_for_status()
            info = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError("google", detail=e, message="Failed to fetch Google profile", cause=e) from e

        subject = info.get("id") or info.get("sub")
        email = (info.get("email") or "").strip().lower()
        if not subject:
            raise UpstreamError("google", detail=info, message="Failed to get user information from Google")
        if not email:
            raise ValidationError("Google account has no email address", error_code="oauth_no_email")

        return OAuthProfile(
            provider=self.provider,
            subject=str(subject),
            email=email,
            name=info.get("name") or f"Google User {subject}",
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            picture=info.get("picture"),
        )


class OrcidOAuthClient(_OAuthClient):
    provider = IdentityProvider.ORCID
    label = "ORCID"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: Optional[str],
                 base_url: str, api_url: str, **kwargs):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.base_url = base_url.rstrip("/")
        self.api_url = api_url.rstrip("/")

    async def fetch_person(self, orcid_id: str, access_token: str) -> Dict[str, Optional[str]]:
        """Best effort: name and latest employment. Failures return an empty dict."""
        try:
            r = await self._request(
                "GET",
                f"{self.api_url}/{orcid_id}/person",
                headers={"Accept": "application/json", "Authorization": f"Bearer {access_token}"},
            )
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("could not fetch ORCID profile for %s: %s", orcid_id, e)
            return {}
        return parse_orcid_person(data)

    async def authenticate(self, code: str) -> OAuthProfile:
        tokens = await self._exchange(f"{self.base_url}/oauth/token", {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri or "",
        })
        orcid_id = tokens.get("orcid")
        access_token = tokens.get("access_token")
        if not orcid_id:
            raise UpstreamError("orcid", detail="no orcid in token response", message="Failed to retrieve ORCID iD")

        person = await self.fetch_person(orcid_id, access_token) if access_token else {}
        return OAuthProfile(
            provider=self.provider,
            subject=orcid_id,
            email=orcid_email(orcid_id),
            name=person.get("name") or tokens.get("name") or f"ORCID User {orcid_id}",
            access_token=access_token,
            affiliation=person.get("affiliation"),
        )


def parse_orcid_person(data: Dict[str, Any]) -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {"name": None, "affiliation": None}
    name = data.get("name") or {}
    given = (name.get("given-names") or {}).get("value")
    family = (name.get("family-name") or {}).get("value") or ""
    if given:
        out["name"] = f"{given} {family}".strip()

    groups = (data.get("employments") or {}).get("affiliation-group") or []
    if groups:
        summaries = groups[0].get("summaries") or []
        if summaries:
            org = ((summaries[0].get("employment-summary") or {}).get("organization") or {}).get("name")
            if org:
                out["affiliation"] = org
    return out


def build_oauth_client(provider: IdentityProvider, settings, client: Optional[httpx.AsyncClient] = None):
    if provider is IdentityProvider.GOOGLE:
        if not settings.google_configured:
            raise UpstreamError("google", detail="GOOGLE_CLIENT_ID/SECRET not set",
                                message="Google sign-in is not configured", status_code=503)
        return GoogleOAuthClient(
            settings.GOOGLE_CLIENT_ID,
            settings.GOOGLE_CLIENT_SECRET,
            settings.GOOGLE_REDIRECT_URI,
            settings.GOOGLE_TOKEN_URL,
            settings.GOOGLE_USERINFO_URL,
            timeout=settings.OAUTH_TIMEOUT_SECONDS,
            client=client,
        )
    if not settings.orcid_configured:
        raise UpstreamError("orcid", detail="ORCID_CLIENT_ID/SECRET not set",
                            message="ORCID sign-in is not configured", status_code=503)
    return OrcidOAuthClient(
        settings.ORCID_CLIENT_ID,
        settings.ORCID_CLIENT_SECRET,
        settings.ORCID_REDIRECT_URI,
        settings.ORCID_BASE_URL,
        settings.ORCID_API_URL,
        timeout=settings.OAUTH_TIMEOUT_SECONDS,
        client=client,
    )


__all__ = [
    "OAuthProfile",
    "GoogleOAuthClient",
    "OrcidOAuthClient",
    "build_oauth_client",
    "orcid_email",
    "parse_orcid_person",
    "CODE_REJECTED_MESSAGE",
]
