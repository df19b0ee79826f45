"""TON Connect session manager.

Handshake:
1. Fetch the dApp manifest named in the request (time-boxed)
2. Build the ``ton_addr`` response for the approved wallet
3. Resolve where to send it: explicit return URL, else the manifest origin
4. Dispatch it through the host's link opener as a ``result`` query parameter
5. Persist the session under the request id

Delivery is fire-and-forget: the host can only open a link, so success
means "navigation dispatched", never "the dApp received it".
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tonpocket.config import Settings, get_settings
from tonpocket.connect.codec import ConnectionRequest, DecodedConnectionRequest
from tonpocket.errors import CallbackResolutionError, ManifestFetchError, ResponseDeliveryError
from tonpocket.storage.database import get_db
from tonpocket.storage.repository import StorageRepository
from tonpocket.utils.security import SecurityEventLog

logger = logging.getLogger(__name__)

SESSIONS_KEY = "tonconnect_sessions"
CALLBACK_PATH = "/tonconnect/callback"
PROTOCOL_VERSION = "2"


class DAppManifest(BaseModel):
    """Descriptor a dApp publishes about itself."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(min_length=1)
    name: str = Field(min_length=1)
    icon_url: Optional[str] = Field(default=None, alias="iconUrl")
    terms_of_use_url: Optional[str] = Field(default=None, alias="termsOfUseUrl")
    privacy_policy_url: Optional[str] = Field(default=None, alias="privacyPolicyUrl")


class ConnectionSession(BaseModel):
    """An approved wallet-to-dApp handshake."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    request_id: str = Field(alias="requestId")
    manifest: DAppManifest
    connected_at: int = Field(alias="connectedAt", description="Milliseconds since epoch")
    wallet_address: str = Field(alias="walletAddress")
    wallet_public_key: str = Field(alias="walletPublicKey")


@dataclass
class DeliveryResult:
    """Outcome of handing a response URL to the host."""

    dispatched: bool
    url: str
    error: Optional[str] = None


class LinkOpener(ABC):
    """Host capability to open an external link."""

    @abstractmethod
    async def open_link(self, url: str) -> None:
        """Open ``url``; raise if the host refused."""
        pass


class SessionStore:
    """The session map, persisted as one JSON document."""

    def __init__(self, session_scope: Callable[[], AsyncContextManager] = get_db):
        """Initialize the store.

        Args:
            session_scope: Factory of database session context managers
        """
        self._session_scope = session_scope

    async def load(self) -> dict[str, ConnectionSession]:
        async with self._session_scope() as db:
            stored = await StorageRepository(db).get_value(SESSIONS_KEY)
        if not stored:
            return {}

        try:
            raw = json.loads(stored)
        except ValueError as e:
            logger.error(f"Stored connect sessions are corrupt, ignoring them: {e}")
            return {}
        if not isinstance(raw, dict):
            logger.error("Stored connect sessions are not a map, ignoring them")
            return {}

        sessions = {}
        for request_id, data in raw.items():
            try:
                sessions[request_id] = ConnectionSession.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable connect session {request_id}: {e}")
        return sessions

    async def save(self, sessions: dict[str, ConnectionSession]) -> None:
        document = {
            request_id: session.model_dump(by_alias=True)
            for request_id, session in sessions.items()
        }
        async with self._session_scope() as db:
            await StorageRepository(db).set_value(SESSIONS_KEY, json.dumps(document))


def _origin(url: str) -> Optional[str]:
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def _with_query_param(url: str, name: str, value: str) -> str:
    parts = urlsplit(url)
    extra = urlencode({name: value})
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class ConnectSessionManager:
    """Runs the connect handshake and keeps the list of connected dApps.

    Usage:
        manager = ConnectSessionManager(link_opener=opener)
        decoded = decode_connection_request(scanned_text)
        manifest = await manager.fetch_manifest(decoded.manifest_url)
        session = await manager.connect(decoded, manifest, address, public_key)
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        link_opener: Optional[LinkOpener] = None,
        session_store: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
        security_log: Optional[SecurityEventLog] = None,
    ):
        self.settings = settings or get_settings()
        self._http = http_client
        self.link_opener = link_opener
        self.store = session_store or SessionStore()
        self.security_log = security_log or SecurityEventLog()

    async def _get(self, url: str) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http is not None:
            return await self._http.get(url, headers=headers, follow_redirects=True)
        async with httpx.AsyncClient(timeout=self.settings.manifest_timeout) as client:
            return await client.get(url, headers=headers, follow_redirects=True)

    async def fetch_manifest(self, url: str) -> DAppManifest:
        """Load and validate a dApp manifest.

        Raises:
            ManifestFetchError: on timeout, HTTP failure or missing url/name
        """
        if not url or not _origin(url):
            raise ManifestFetchError(f"Invalid manifest URL: {url!r}")

        try:
            response = await asyncio.wait_for(self._get(url), timeout=self.settings.manifest_timeout)
        except asyncio.TimeoutError as e:
            raise ManifestFetchError(f"Manifest fetch timed out: {url}") from e
        except httpx.HTTPError as e:
            raise ManifestFetchError(f"Manifest fetch failed: {e}") from e

        if response.status_code != 200:
            raise ManifestFetchError(f"Failed to fetch manifest: {response.status_code}")

        try:
            manifest = DAppManifest.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ManifestFetchError(f"Invalid manifest structure: {e}") from e

        logger.info(f"Loaded manifest for {manifest.name} ({manifest.url})")
        return manifest

    def build_response(self, request_id: str, wallet_address: str, public_key: str) -> str:
        """Serialized ``ton_addr`` response for the request."""
        response = {
            "version": PROTOCOL_VERSION,
            "request_id": request_id,
            "payload": {
                "items": [
                    {
                        "name": "ton_addr",
                        "address": wallet_address,
                        "network": "testnet" if self.settings.is_testnet else "mainnet",
                        "publicKey": public_key,
                        "walletStateInit": "",
                    }
                ]
            },
        }
        return json.dumps(response, separators=(",", ":"))

    def resolve_callback_url(self, request: Any, manifest: DAppManifest) -> str:
        """Explicit return URL first, then ``<manifest origin>/tonconnect/callback``.

        Raises:
            CallbackResolutionError: if neither yields an HTTP(S) URL
        """
        return_url = getattr(request, "return_url", None)
        if return_url and _origin(return_url):
            return return_url.strip()

        origin = _origin(manifest.url)
        if origin is None:
            raise CallbackResolutionError(f"Failed to determine callback URL from {manifest.url!r}")
        return origin + CALLBACK_PATH

    async def deliver_response(self, url: str, response: str) -> DeliveryResult:
        """Open ``url`` with the response attached as ``result``."""
        target = _with_query_param(url, "result", response)
        if self.link_opener is None:
            return DeliveryResult(dispatched=False, url=target, error="No link opener configured")

        try:
            await self.link_opener.open_link(target)
        except Exception as e:
            logger.error(f"Failed to dispatch connect response to {url}: {e}")
            return DeliveryResult(dispatched=False, url=target, error=str(e))
        return DeliveryResult(dispatched=True, url=target)

    async def connect(
        self,
        request: Any,
        manifest: DAppManifest,
        wallet_address: str,
        public_key: str,
    ) -> ConnectionSession:
        """Approve a request: respond to the dApp and persist the session.

        Args:
            request: DecodedConnectionRequest (or ConnectionRequest)
            manifest: Manifest fetched for the request
            wallet_address: Address to share
            public_key: Wallet public key (hex)

        Raises:
            CallbackResolutionError: no destination for the response
            ResponseDeliveryError: the host could not dispatch the response
        """
        if not isinstance(request, (ConnectionRequest, DecodedConnectionRequest)):
            raise TypeError(f"Unsupported request type: {type(request).__name__}")

        response = self.build_response(request.request_id, wallet_address, public_key)
        callback_url = self.resolve_callback_url(request, manifest)

        result = await self.deliver_response(callback_url, response)
        if not result.dispatched:
            self.security_log.log(
                "dapp_connect_failed", dapp=manifest.name, url=callback_url, error=result.error
            )
            raise ResponseDeliveryError(f"Failed to send connection response: {result.error}")

        session = ConnectionSession(
            request_id=request.request_id,
            manifest=manifest,
            connected_at=int(time.time() * 1000),
            wallet_address=wallet_address,
            wallet_public_key=public_key,
        )
        sessions = await self.store.load()
        sessions[session.request_id] = session
        await self.store.save(sessions)

        self.security_log.log("dapp_connected", dapp=manifest.name, url=manifest.url)
        logger.info(f"Connected to {manifest.name} (request {session.request_id})")
        return session

    async def list_sessions(self) -> list[ConnectionSession]:
        """Connected dApps, oldest first."""
        sessions = await self.store.load()
        return sorted(sessions.values(), key=lambda s: s.connected_at)

    async def get_session(self, request_id: str) -> Optional[ConnectionSession]:
        sessions = await self.store.load()
        return sessions.get(request_id)

    async def remove_session(self, request_id: str) -> bool:
        """Forget one session. Returns True if it existed."""
        sessions = await self.store.load()
        if sessions.pop(request_id, None) is None:
            return False
        await self.store.save(sessions)
        self.security_log.log("dapp_disconnected", request_id=request_id)
        return True
