"""Vercel Blob client: downloads, server-side puts, deletes, and the client-upload handshake.

Client uploads go browser -> blob store directly. The store calls back into
/blob-upload twice: once to get a signed client token (``blob.generate-client-token``)
and once when the upload has landed (``blob.upload-completed``).
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass

import httpx

from underwriteiq.core.constants import CLIENT_TOKEN_VALIDITY, DEFAULT_HTTP_TIMEOUT
from underwriteiq.core.errors import UpstreamError
from underwriteiq.core.logger import logger

BLOB_API_VERSION = "7"
CLIENT_TOKEN_PREFIX = "vercel_blob_client_"


@dataclass
class BlobRef:
    url: str
    pathname: str


def _store_id(read_write_token: str) -> str:
    # vercel_blob_rw_<storeId>_<secret>
    parts = read_write_token.split("_")
    return parts[3] if len(parts) > 4 else ""


def _sign(payload: bytes | str, secret: str) -> str:
    if isinstance(payload, str):
        payload = payload.encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def generate_client_token(
    read_write_token: str,
    pathname: str,
    *,
    allowed_content_types: list[str],
    maximum_size_in_bytes: int,
    token_payload: dict,
    callback_url: str | None = None,
    add_random_suffix: bool = True,
    valid_until: int | None = None,
) -> str:
    """Mint a signed client token scoped to one pathname and upload policy."""
    if valid_until is None:
        valid_until = int((time.time() + CLIENT_TOKEN_VALIDITY) * 1000)

    encoded_payload = json.dumps(token_payload, separators=(",", ":"))
    claims = {
        "pathname": pathname,
        "allowedContentTypes": allowed_content_types,
        "maximumSizeInBytes": maximum_size_in_bytes,
        "addRandomSuffix": add_random_suffix,
        "tokenPayload": encoded_payload,
        "validUntil": valid_until,
    }
    if callback_url:
        claims["onUploadCompleted"] = {"callbackUrl": callback_url, "tokenPayload": encoded_payload}

    payload_b64 = base64.b64encode(json.dumps(claims).encode()).decode()
    signature = _sign(payload_b64, read_write_token)
    secured = base64.b64encode(f"{signature}.{payload_b64}".encode()).decode()
    return f"{CLIENT_TOKEN_PREFIX}{_store_id(read_write_token)}_{secured}"


def decode_client_token(client_token: str, read_write_token: str) -> dict:
    """Verify and decode a client token minted by ``generate_client_token``.

    Raises ValueError on a malformed or tampered token.
    """
    if not client_token.startswith(CLIENT_TOKEN_PREFIX):
        raise ValueError("not a client token")
    _, _, secured = client_token[len(CLIENT_TOKEN_PREFIX):].partition("_")
    try:
        signature, _, payload_b64 = base64.b64decode(secured).decode().partition(".")
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"undecodable client token: {e}") from e
    if not hmac.compare_digest(signature, _sign(payload_b64, read_write_token)):
        raise ValueError("client token signature mismatch")
    return json.loads(base64.b64decode(payload_b64))


def verify_callback_signature(body: bytes, signature: str | None, read_write_token: str) -> bool:
    """Check the x-vercel-signature header of an upload-completed callback."""
    if not signature or not read_write_token:
        return False
    return hmac.compare_digest(_sign(body, read_write_token), signature)


class BlobClient:
    def __init__(
        self,
        read_write_token: str,
        api_url: str = "https://blob.vercel-storage.com",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.read_write_token = read_write_token
        self.api_url = api_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)

    def _auth_headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self.read_write_token}",
            "x-api-version": BLOB_API_VERSION,
        }

    async def get(self, url: str) -> bytes:
        try:
            resp = await self._http.get(url, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"blob download failed: {e}", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"blob download failed: {e}") from e
        return resp.content

    async def put(
        self,
        pathname: str,
        body: bytes,
        content_type: str = "application/pdf",
        add_random_suffix: bool = True,
    ) -> BlobRef:
        headers = self._auth_headers() | {
            "x-content-type": content_type,
            "x-add-random-suffix": "1" if add_random_suffix else "0",
        }
        try:
            resp = await self._http.put(f"{self.api_url}/{pathname.lstrip('/')}", content=body, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"blob put failed: {e}", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"blob put failed: {e}") from e
        data = resp.json()
        return BlobRef(url=data["url"], pathname=data.get("pathname", pathname))

    async def delete(self, urls: str | list[str]) -> None:
        if isinstance(urls, str):
            urls = [urls]
        if not urls:
            return
        try:
            resp = await self._http.post(
                f"{self.api_url}/delete",
                json={"urls": urls},
                headers=self._auth_headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"blob delete failed: {e}", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"blob delete failed: {e}") from e
        logger.debug(f"Blob: deleted {len(urls)} object(s)")

    def generate_client_token(self, pathname: str, **kwargs) -> str:
        return generate_client_token(self.read_write_token, pathname, **kwargs)

    def verify_callback_signature(self, body: bytes, signature: str | None) -> bool:
        return verify_callback_signature(body, signature, self.read_write_token)

    async def aclose(self) -> None:
        await self._http.aclose()
