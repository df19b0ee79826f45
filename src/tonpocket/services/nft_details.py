"""NFT detail enrichment.

Three independent, fail-soft steps:

1. ``get_nft_data`` on the item contract (collection, owner, index, content)
2. a content URI pulled out of the content cell bytes
3. off-chain JSON metadata, IPFS tried across gateways in order

Whatever succeeds is merged into the item; a good value is never replaced
by a placeholder.
"""

import copy
import logging
import re
from typing import Any, Optional

import httpx

from tonpocket.address import try_normalize
from tonpocket.config import Settings, get_settings
from tonpocket.scanner.cells import Cell, CellError, cell_from_b64, cell_from_object
from tonpocket.scanner.fields import as_int, as_text
from tonpocket.scanner.toncenter import TonCenterClient
from tonpocket.services.nft_scanner import NFTItem
from tonpocket.utils.ipfs import DEFAULT_GATEWAY, gateway_candidates, ipfs_to_http
from tonpocket.utils.retry import RateLimitedFetcher

logger = logging.getLogger(__name__)

URI_PATTERN = re.compile(r"(?:ipfs://|https?://)[^\s\x00-\x1f\"'<>\\]+")

PLACEHOLDER_NAMES = ("NFT Item",)
PLACEHOLDER_DESCRIPTIONS = ("NFT item", "NFT details")
HTTP_PREFIXES = ("http://", "https://")


def is_placeholder_name(name: Optional[str], address: str = "") -> bool:
    if not name or not name.strip():
        return True
    name = name.strip()
    if name in PLACEHOLDER_NAMES or re.match(r"^NFT #\d+$", name):
        return True
    return bool(address) and name == f"NFT {address[-8:]}"


def is_placeholder_description(description: Optional[str]) -> bool:
    return not description or not description.strip() or description.strip() in PLACEHOLDER_DESCRIPTIONS


def is_complete(item: NFTItem) -> bool:
    """A real name plus either a real description or an image."""
    if is_placeholder_name(item.name, item.address):
        return False
    return not is_placeholder_description(item.description) or bool(item.image)


# ---------------------------------------------------------------------------
# get_nft_data stack parsing
# ---------------------------------------------------------------------------


def _cell_from_value(value: Any) -> Optional[Cell]:
    if isinstance(value, str):
        return cell_from_b64(value)
    if not isinstance(value, dict):
        return None
    if isinstance(value.get("bytes"), str):
        cell = cell_from_b64(value["bytes"])
        if cell is not None:
            return cell
    if isinstance(value.get("object"), dict):
        return cell_from_object(value["object"])
    if isinstance(value.get("data"), dict):
        return cell_from_object(value)
    return None


def parse_stack_entry(entry: Any) -> Any:
    """Decode one stack entry into an int, a Cell, or None.

    Accepts ``["num", "0x1"]``, ``{"type": "num", "value": ...}``,
    ``["cell", {"bytes": ...}]`` and ``{"type": "cell", "cell": ...}``.
    """
    if isinstance(entry, (list, tuple)) and len(entry) == 2:
        kind, value = entry
    elif isinstance(entry, dict):
        kind = entry.get("type")
        value = entry.get("value")
        for key in ("cell", "slice", "num"):
            if value is None and key in entry:
                value = entry[key]
    else:
        return None

    kind = str(kind or "").lower()
    if kind in ("num", "int", "number"):
        return as_int(value)
    if kind in ("cell", "slice", "tvm.cell", "tvm.slice"):
        return _cell_from_value(value)
    return None


def _read_stack_address(value: Any) -> Optional[str]:
    if not isinstance(value, Cell):
        return None
    try:
        address = value.reader().read_address()
    except CellError:
        return None
    return address.to_user_friendly() if address is not None else None


def extract_content_uri(cell: Optional[Cell]) -> Optional[str]:
    """First ``ipfs://`` or ``http(s)://`` URI in a cell tree's bytes."""
    if cell is None:
        return None
    text = cell.flatten().decode("utf-8", errors="ignore")
    match = URI_PATTERN.search(text)
    return match.group(0) if match else None


def parse_nft_data(result: Any) -> dict:
    """Fields from a ``get_nft_data`` result; missing ones are left out."""
    stack = result.get("stack") if isinstance(result, dict) else None
    if not isinstance(stack, list):
        return {}

    values = [parse_stack_entry(entry) for entry in stack]
    data: dict[str, Any] = {}

    if len(values) > 1 and isinstance(values[1], int):
        data["index"] = values[1]
    if len(values) > 2:
        collection = _read_stack_address(values[2])
        if collection:
            data["collection_address"] = collection
    if len(values) > 3:
        owner = _read_stack_address(values[3])
        if owner:
            data["owner_address"] = owner
    if len(values) > 4 and isinstance(values[4], Cell):
        uri = extract_content_uri(values[4])
        if uri:
            data["content_uri"] = uri
    return data


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def _pick(current: Optional[str], fetched: Optional[str], placeholder) -> Optional[str]:
    if not fetched or not str(fetched).strip():
        return current
    if placeholder(fetched) and current:
        return current
    return fetched


def _unusable_uri(value: str) -> bool:
    return not value.strip().lower().startswith(HTTP_PREFIXES)


def merge_metadata(item: NFTItem, metadata: dict, gateway: str = DEFAULT_GATEWAY) -> NFTItem:
    """Merge off-chain metadata into ``item`` in place."""
    name = metadata.get("name")
    description = metadata.get("description")
    image = metadata.get("image") or metadata.get("image_url")
    preview = metadata.get("preview_image") or metadata.get("preview")

    item.name = _pick(
        item.name,
        as_text(name) if name else None,
        lambda value: is_placeholder_name(value, item.address),
    )
    item.description = _pick(
        item.description, as_text(description) if description else None, is_placeholder_description
    )
    item.image = _pick(
        item.image, ipfs_to_http(as_text(image), gateway) if image else None, _unusable_uri
    )
    item.preview_image = _pick(
        item.preview_image,
        ipfs_to_http(as_text(preview), gateway) if preview else None,
        _unusable_uri,
    )

    attributes = metadata.get("attributes")
    if isinstance(attributes, list) and attributes:
        item.attributes = [attr for attr in attributes if isinstance(attr, dict)]
    return item


class NFTDetailsFetcher:
    """Enriches NFT candidates with on-chain data and metadata.

    Usage:
        details = NFTDetailsFetcher(toncenter, fetcher)
        item = await details.get_details("EQ...", existing=item)
    """

    def __init__(
        self,
        toncenter: TonCenterClient,
        fetcher: RateLimitedFetcher,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.toncenter = toncenter
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self._http = http_client

    @property
    def gateways(self) -> list[str]:
        return self.settings.gateway_list or [DEFAULT_GATEWAY]

    async def get_details(
        self, item_address: str, existing: Optional[NFTItem] = None
    ) -> Optional[NFTItem]:
        """Best-effort details; None only for an empty address."""
        address = (item_address or "").strip() if isinstance(item_address, str) else ""
        if not address:
            return None

        if existing is not None:
            item = copy.deepcopy(existing)
        else:
            item = NFTItem(address=address, name=f"NFT {address[-8:]}")

        if is_complete(item):
            return item

        onchain = await self._fetch_onchain(address)
        for key, value in onchain.items():
            if getattr(item, key) in (None, ""):
                setattr(item, key, value)

        if item.content_uri:
            metadata = await self._fetch_metadata(item.content_uri)
            if metadata:
                merge_metadata(item, metadata, self.gateways[0])

        return item

    async def _fetch_onchain(self, address: str) -> dict:
        parsed = try_normalize(address)
        target = parsed.to_raw() if parsed is not None else address
        try:
            result = await self.fetcher.call(
                lambda: self.toncenter.run_get_method(target, "get_nft_data"),
                label="get_nft_data",
            )
        except Exception as e:
            logger.debug(f"get_nft_data failed for {address}: {e}")
            return {}

        try:
            return parse_nft_data(result)
        except Exception as e:
            logger.debug(f"Unreadable get_nft_data stack for {address}: {e}")
            return {}

    async def _get_json(self, url: str) -> Optional[dict]:
        timeout = self.settings.http_timeout
        if self._http is not None:
            response = await self._http.get(url, timeout=timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await client.get(url)

        if response.status_code != 200:
            logger.debug(f"Metadata fetch {url} returned {response.status_code}")
            return None
        data = response.json()
        return data if isinstance(data, dict) else None

    async def _fetch_metadata(self, uri: str) -> Optional[dict]:
        for url in gateway_candidates(uri, self.gateways):
            try:
                data = await self._get_json(url)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"Metadata fetch failed for {url}: {e}")
                continue
            if data is not None:
                return data
        logger.info(f"No metadata reachable for {uri}")
        return None
