"""Archive input sources.

Every extraction starts from a readable binary stream plus a size hint used
to scale progress. This module opens those streams for the three kinds of
source zipflow understands:

- `open_local`: a ZIP file on the local filesystem.
- `open_asset`: a ZIP shipped as a resource inside an installed Python
  package, addressed as ``"package:path/inside/package.zip"``.
- `RemoteStream`: the body of an HTTP(S) response, read forward-only while
  it downloads.

Each opener raises `OpenError` when the source cannot be opened.
"""

import io
import logging
import time
from importlib import resources
from pathlib import Path
from typing import BinaryIO

import httpx

from .Errors import OpenError

logger = logging.getLogger(__name__)

HTTP_HEADERS = {
    "User-Agent": "zipflow/0.1",
    "Accept": "*/*",
    "Connection": "keep-alive",
}
HTTP_TIMEOUT = httpx.Timeout(10.0, read=300.0)
MAX_RATE_LIMIT_RETRIES = 5


def open_local(path: str | Path) -> tuple[BinaryIO, int]:
    """Open a local archive for reading.

    Args:
        path (str | Path): Archive location.

    Returns:
        tuple[BinaryIO, int]: The open file and its length in bytes.

    Raises:
        OpenError: If the file cannot be opened.
    """
    path = Path(path)
    try:
        stream = open(path, "rb")
    except OSError as e:
        raise OpenError(f"Couldn't open file {path}: {e.strerror or e}", path) from e
    try:
        size = path.stat().st_size
    except OSError:
        size = 0
    return stream, size


def parse_asset_id(asset: str) -> tuple[str, str]:
    """Split ``"package:resource/path"`` into its package and resource parts."""
    package, sep, resource = asset.partition(":")
    if not sep or not package or not resource:
        raise OpenError(f"Asset identifier `{asset}` must look like 'package:path/to/archive.zip'", asset)
    return package, resource.strip("/")


def open_asset(asset: str) -> tuple[BinaryIO, int]:
    """Open a ZIP packaged inside an installed Python package.

    The resource is read through `importlib.resources`, so it also works
    for packages imported from a zip or wheel.

    Args:
        asset (str): ``"package:path/inside/package.zip"``.

    Returns:
        tuple[BinaryIO, int]: The open resource and its length in bytes
        (0 when the loader cannot tell).

    Raises:
        OpenError: If the package or the resource does not exist.
    """
    package, resource = parse_asset_id(asset)
    try:
        traversable = resources.files(package).joinpath(*resource.split("/"))
        stream = traversable.open("rb")
    except (ImportError, OSError, TypeError, ValueError) as e:
        raise OpenError(f"Asset file `{asset}` could not be opened", asset) from e

    size = 0
    try:
        # Regular files can report their size without reading them
        size = Path(str(traversable)).stat().st_size
    except OSError:
        pass
    return stream, size


class RemoteStream(io.RawIOBase):
    """Read-only, forward-only stream over an HTTP response body.

    The response is requested once and consumed chunk by chunk as the
    caller reads, so an archive can be extracted while it downloads and is
    never held in memory as a whole.

    Attributes:
        url (str): Remote resource URL.
        size (int): Content-Length reported by the server, or 0 if unknown.
        client (httpx.Client): HTTP client used for the request.
    """

    def __init__(self, url: str, client: httpx.Client | None = None) -> None:
        """Open `url` and start streaming its body.

        Args:
            url (str): HTTP(S) URL of the archive.
            client (httpx.Client | None): Client to use. When omitted a client
                is created and closed together with the stream.

        Raises:
            OpenError: On malformed URLs, connection failures or a non-2xx status code.
        """
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.Client(headers=HTTP_HEADERS, follow_redirects=True, timeout=HTTP_TIMEOUT)
        self._response: httpx.Response | None = None
        self._chunks = None
        self._pending = b""
        self.size = 0

        try:
            self._response = self._send()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._close_client()
            raise OpenError(f"Couldn't open URL {url}: {e}", url) from e

        if not self._response.is_success:
            status = self._response.status_code
            self._response.close()
            self._close_client()
            raise OpenError(f"Couldn't open URL {url}: server returned {status}", url)

        self.size = int(self._response.headers.get("Content-Length", 0) or 0)
        self._chunks = self._response.iter_bytes()

    def _send(self) -> httpx.Response:
        """Send the GET request, waiting out 429 responses."""
        request = self.client.build_request("GET", self.url)
        for attempt in range(MAX_RATE_LIMIT_RETRIES):
            response = self.client.send(request, stream=True)
            if response.status_code != 429 or attempt == MAX_RATE_LIMIT_RETRIES - 1:
                return response
            wait_time = max(int(response.headers.get("Retry-After", 3)), 1)
            response.close()
            logger.warning("Received 429 Too Many Requests for %s, retrying after %d seconds", self.url, wait_time)
            time.sleep(wait_time)
        return response

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        """Fill `buffer` with the next bytes of the response body.

        Returns:
            int: Number of bytes written to `buffer`, 0 at the end of the body.
        """
        while not self._pending:
            try:
                chunk = next(self._chunks, None)
            except httpx.HTTPError as e:
                raise OSError(f"Download of {self.url} failed: {e}") from e
            if chunk is None:
                return 0
            self._pending = chunk
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count

    def _close_client(self) -> None:
        if self._owns_client:
            self.client.close()

    def close(self) -> None:
        """Close the response and, if owned, the HTTP client."""
        if self.closed:
            return
        if self._response is not None:
            self._response.close()
        self._close_client()
        super().close()
