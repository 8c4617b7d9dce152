"""Streaming script download with ordered credential fallback."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import httpx

from run_command_handler import __version__
from run_command_handler.errors import DownloadError, FilesystemError
from run_command_handler.http.credentials import AuthStrategy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = f"RunCommandHandler/{__version__}"
_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True)
class DownloadAttemptResult:
    """Outcome of one download attempt."""

    strategy: str
    status_code: int
    is_success: bool
    error: str | None = None


class ScriptDownloader:
    """HTTP client wrapper that downloads a URI to a file, trying strategies in order."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )

    @property
    def client(self) -> httpx.Client:
        return self._client

    def download(self, uri: str, destination: Path, strategies: Sequence[AuthStrategy]) -> Path:
        """Download ``uri`` to ``destination``; the first successful strategy wins.

        Raises ``DownloadError`` with the last attempt's diagnostic when every
        strategy fails.
        """

        if not strategies:
            raise ValueError("At least one authentication strategy is required.")

        for strategy in strategies:
            last = self._attempt(uri, destination, strategy)
            if last.is_success:
                logger.info(
                    "Downloaded %s to %s using %s",
                    redact_uri(uri),
                    destination,
                    last.strategy,
                )
                return destination
            logger.warning(
                "Download of %s using %s failed: %s",
                redact_uri(uri),
                last.strategy,
                last.error,
            )

        raise DownloadError(
            f"Failed to download script from {redact_uri(uri)} "
            f"using {last.strategy}: {last.error}",
            status_code=last.status_code or None,
        )

    def _attempt(
        self,
        uri: str,
        destination: Path,
        strategy: AuthStrategy,
    ) -> DownloadAttemptResult:
        try:
            request_uri, headers = strategy.prepare(uri)
        except DownloadError as exc:
            return DownloadAttemptResult(
                strategy=strategy.name,
                status_code=exc.status_code or 0,
                is_success=False,
                error=str(exc),
            )

        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{destination.name}.",
                suffix=".part",
                dir=destination.parent,
            )
        except OSError as error:
            raise FilesystemError(
                f"Failed to create download file in {destination.parent}: {error}",
            ) from error

        tmp_path = Path(tmp_name)
        try:
            with (
                os.fdopen(fd, "wb") as handle,
                self._client.stream("GET", request_uri, headers=headers) as response,
            ):
                if not response.is_success:
                    return DownloadAttemptResult(
                        strategy=strategy.name,
                        status_code=response.status_code,
                        is_success=False,
                        error=f"HTTP {response.status_code}",
                    )
                for chunk in response.iter_bytes(_CHUNK_SIZE):
                    handle.write(chunk)
                status_code = response.status_code
            os.replace(tmp_path, destination)
        except httpx.TimeoutException:
            return DownloadAttemptResult(
                strategy=strategy.name,
                status_code=0,
                is_success=False,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            return DownloadAttemptResult(
                strategy=strategy.name,
                status_code=0,
                is_success=False,
                error=str(exc),
            )
        except OSError as error:
            raise FilesystemError(
                f"Failed to write downloaded file {destination}: {error}",
            ) from error
        finally:
            tmp_path.unlink(missing_ok=True)

        return DownloadAttemptResult(
            strategy=strategy.name,
            status_code=status_code,
            is_success=True,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ScriptDownloader:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def redact_uri(uri: str) -> str:
    """Strip query and fragment so SAS tokens never reach the logs."""

    parts = urlsplit(uri)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
