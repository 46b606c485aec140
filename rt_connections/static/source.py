"""
Static GTFS source accessor.

Resolves a path/URL to readable GTFS tables. Supported locations:

  - local .zip archive
  - local directory of extracted .txt files
  - http(s):// URL to a zip archive (streamed to a temp dir)
  - gs://bucket/prefix (extracted files, or a single .zip blob)

Usage:
    with GtfsSource("https://example.org/gtfs.zip") as source:
        routes = source.read_table("routes.txt")
"""

import logging
import os
import tempfile
import zipfile
from typing import Dict, Optional

import pandas as pd
import requests
from google.cloud import storage
from tqdm import tqdm

from rt_connections.errors import StaticSourceError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB chunks for streaming


class GtfsSource:
    """Gives access to the tables of one static GTFS snapshot.

    Args:
        path: Local path, http(s) URL or gs:// URI of the feed.
        headers: Extra HTTP headers (e.g. API keys) for URL sources.
        timeout: HTTP timeout in seconds.
        progress: Show a download progress bar on stderr.
    """

    def __init__(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 120,
        progress: bool = True,
    ):
        if not path:
            raise StaticSourceError("Please provide a valid url or a path to a GTFS feed")
        self.path = path
        self.headers = headers or {}
        self.timeout = timeout
        self.progress = progress
        self._tmp_dir: Optional[tempfile.TemporaryDirectory] = None
        self._zip: Optional[zipfile.ZipFile] = None
        self._members: Dict[str, str] = {}
        self._dir: Optional[str] = None

    # ---------- lifecycle ----------

    def __enter__(self) -> "GtfsSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.path.startswith(("http://", "https://")):
            self._open_zip(self._download(self.path))
        elif self.path.startswith("gs://"):
            self._open_gcs(self.path)
        elif os.path.isdir(self.path):
            self._dir = self.path
        elif os.path.isfile(self.path):
            self._open_zip(self.path)
        else:
            raise StaticSourceError(f"GTFS source not found: {self.path}")

    def close(self):
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._tmp_dir is not None:
            self._tmp_dir.cleanup()
            self._tmp_dir = None

    # ---------- table access ----------

    def has_table(self, name: str) -> bool:
        if self._zip is not None:
            return name in self._members
        if self._dir is not None:
            return os.path.isfile(os.path.join(self._dir, name))
        raise StaticSourceError("GtfsSource used before open()")

    def read_table(self, name: str) -> Optional[pd.DataFrame]:
        """Read a GTFS table as an all-string DataFrame, or None if absent.

        Empty cells become "" (never NaN) so rows map cleanly to dicts.
        """
        if not self.has_table(name):
            return None
        logger.debug(f"Reading {name} from {self.path}")
        try:
            if self._zip is not None:
                with self._zip.open(self._members[name]) as fh:
                    df = pd.read_csv(fh, dtype=str, keep_default_na=False, encoding="utf-8-sig")
            else:
                df = pd.read_csv(
                    os.path.join(self._dir, name),
                    dtype=str,
                    keep_default_na=False,
                    encoding="utf-8-sig",
                )
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except (pd.errors.ParserError, zipfile.BadZipFile, UnicodeDecodeError) as e:
            raise StaticSourceError(f"Unreadable GTFS table {name}: {e}") from e
        df.columns = [c.strip() for c in df.columns]
        return df

    # ---------- internals ----------

    def _scratch_dir(self) -> str:
        if self._tmp_dir is None:
            self._tmp_dir = tempfile.TemporaryDirectory(prefix="gtfs_")
        return self._tmp_dir.name

    def _open_zip(self, zip_path: str):
        try:
            self._zip = zipfile.ZipFile(zip_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise StaticSourceError(f"Unreadable GTFS archive {self.path}: {e}") from e

        # Some producers nest the tables in a sub-folder of the archive
        for member in self._zip.namelist():
            base = os.path.basename(member)
            if base.endswith(".txt") and base not in self._members:
                self._members[base] = member

    def _download(self, url: str) -> str:
        """Stream a remote archive to the scratch dir and return its path."""
        zip_path = os.path.join(self._scratch_dir(), "gtfs.zip")
        logger.info(f"Downloading static GTFS from {url}")
        try:
            with requests.get(url, headers=self.headers, timeout=self.timeout, stream=True) as response:
                if response.status_code >= 400:
                    raise StaticSourceError(
                        f"Request {url} failed with HTTP response code {response.status_code}"
                    )

                total_size = int(response.headers.get("content-length", 0))
                with open(zip_path, "wb") as f:
                    with tqdm(
                        total=total_size,
                        unit="B",
                        unit_scale=True,
                        desc="Downloading GTFS",
                        disable=not self.progress,
                    ) as pbar:
                        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                pbar.update(len(chunk))
        except requests.exceptions.RequestException as e:
            raise StaticSourceError(f"Failed to download GTFS feed {url}: {e}") from e

        logger.info(f"Downloaded ({os.path.getsize(zip_path):,} bytes)")
        return zip_path

    def _open_gcs(self, uri: str):
        """Fetch a zip blob or every .txt blob under a prefix from GCS."""
        path = uri.replace("gs://", "", 1)
        bucket_name, _, prefix = path.partition("/")
        client = storage.Client()
        bucket = client.bucket(bucket_name)

        if prefix.endswith(".zip"):
            local_path = os.path.join(self._scratch_dir(), "gtfs.zip")
            logger.info(f"Downloading gs://{bucket_name}/{prefix}")
            bucket.blob(prefix).download_to_filename(local_path)
            self._open_zip(local_path)
            return

        target = self._scratch_dir()
        count = 0
        for blob in client.list_blobs(bucket_name, prefix=prefix):
            name = os.path.basename(blob.name)
            if not name.endswith(".txt"):
                continue
            blob.download_to_filename(os.path.join(target, name))
            count += 1
        if count == 0:
            raise StaticSourceError(f"No GTFS files found under {uri}")
        logger.info(f"Downloaded {count} GTFS files from {uri}")
        self._dir = target
