"""Append-only bibliography file used as a cache of resolved records.

The file holds CSL items, either as a JSON array (``.json``) or as YAML
(``.yaml``/``.yml``, under a ``references`` key). Records found during a run
are buffered and written out in one atomic replace: the file on disk is
always either the previous complete version or the new complete version.
Existing entries are never changed or dropped.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from typing import Any

import yaml

from citekey_resolver.connectors.base import ResolvedRecord
from citekey_resolver.errors import CacheCorrupt, CacheWriteFailed, UnsupportedFormatError

logger = logging.getLogger(__name__)


# ------------- Codecs -------------


class JsonCodec:
    """CSL JSON: a top-level array of items."""

    def new_container(self) -> dict[str, Any] | None:
        return None

    def decode(self, text: str) -> tuple[list[Any], dict[str, Any] | None]:
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError("expected a JSON array of CSL items")
        return data, None

    def encode(self, items: list[dict[str, Any]], container: dict[str, Any] | None) -> str:
        return json.dumps(items, indent=2, ensure_ascii=False) + "\n"


class YamlCodec:
    """CSL YAML: a ``references`` list, or a bare list of items.

    Other top-level keys of a mapping are kept as they are.
    """

    def new_container(self) -> dict[str, Any] | None:
        return {}

    def decode(self, text: str) -> tuple[list[Any], dict[str, Any] | None]:
        data = yaml.safe_load(text)
        if data is None:
            return [], {}
        if isinstance(data, list):
            return data, None
        if isinstance(data, dict):
            refs = data.get("references")
            if refs is None:
                refs = []
            if not isinstance(refs, list):
                raise ValueError('"references" is not a list')
            return refs, data
        raise ValueError("expected a list of CSL items or a references mapping")

    def encode(self, items: list[dict[str, Any]], container: dict[str, Any] | None) -> str:
        if container is None:
            data: Any = items
        else:
            data = dict(container)
            data["references"] = items
        return yaml.safe_dump(data, allow_unicode=True, default_flow_style=False, sort_keys=False)


BIBLIO_TYPES: dict[str, JsonCodec | YamlCodec] = {
    "json": JsonCodec(),
    "yaml": YamlCodec(),
    "yml": YamlCodec(),
}


def codec_for(path: str) -> JsonCodec | YamlCodec:
    """Pick the codec for a bibliography file by its suffix.

    Raises:
        UnsupportedFormatError: If the suffix is missing or unsupported
    """
    suffix = os.path.splitext(path)[1].lstrip(".").lower()
    if not suffix:
        raise UnsupportedFormatError(f"{path}: no filename suffix")
    codec = BIBLIO_TYPES.get(suffix)
    if codec is None:
        raise UnsupportedFormatError(
            f"{path}: unsupported bibliography format .{suffix} (use {', '.join('.' + s for s in BIBLIO_TYPES)})"
        )
    return codec


def atomic_write(path: str, text: str) -> None:
    """Write text to a temporary file next to ``path``, then replace ``path``.

    The temporary file is removed if anything fails before the replace.
    """
    directory = os.path.dirname(os.path.abspath(path))
    suffix = os.path.splitext(path)[1]
    tmp = tempfile.NamedTemporaryFile(
        "w", delete=False, encoding="utf-8", dir=directory, suffix=suffix, prefix=".tmp_bib_"
    )
    try:
        try:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        finally:
            tmp.close()
        if os.path.exists(path):
            shutil.copymode(path, tmp.name)
        os.replace(tmp.name, path)
    except BaseException:
        try:
            os.unlink(tmp.name)
        except OSError:
            pass
        raise


# ------------- Cache -------------


class BibliographyCache:
    """Thread-safe, append-only mapping of citation keys to records.

    ``contains``/``get``/``append`` only touch memory. ``flush`` writes
    everything appended since the last flush. With ``path=None`` the cache
    lives in memory only and ``flush`` does nothing.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        """Initialize the cache and load the file, if any.

        Args:
            path: Bibliography file; a missing file counts as empty.

        Raises:
            UnsupportedFormatError: If the suffix is not supported
            CacheCorrupt: If the existing file cannot be parsed
        """
        self.path = os.fspath(path) if path is not None else None
        self.codec = codec_for(self.path) if self.path else None
        self.lock = threading.Lock()
        self._items: list[dict[str, Any]] = []
        self._container: dict[str, Any] | None = self.codec.new_container() if self.codec else None
        self._records: dict[str, ResolvedRecord] = {}
        self._pending: dict[str, ResolvedRecord] = {}
        if self.path:
            self._load()

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None) -> BibliographyCache:
        return cls(path)

    def _load(self) -> None:
        assert self.path is not None and self.codec is not None
        try:
            with open(self.path, encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            logger.debug("%s does not exist yet", self.path)
            return
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorrupt(self.path, f"cannot read file ({e})") from e
        if not text.strip():
            return

        try:
            items, container = self.codec.decode(text)
        except (ValueError, yaml.YAMLError) as e:
            raise CacheCorrupt(self.path, f"parse error ({e})") from e

        for i, item in enumerate(items):
            if not isinstance(item, dict):
                raise CacheCorrupt(self.path, f"item {i} is not a mapping")
            item_id = item.get("id")
            if item_id is None:
                continue
            if isinstance(item_id, (dict, list)):
                raise CacheCorrupt(self.path, f"cannot parse ID of item {i}")
            key = str(item_id)
            if key not in self._records:
                self._records[key] = ResolvedRecord(key=key, payload=item, record_id=key, source="bibliography")
        self._items = items
        self._container = container
        logger.debug("Loaded %d record(s) from %s", len(self._records), self.path)

    # ------------- Lookup -------------

    def contains(self, key: str) -> bool:
        with self.lock:
            return key in self._records or key in self._pending

    __contains__ = contains

    def get(self, key: str) -> ResolvedRecord | None:
        with self.lock:
            return self._records.get(key) or self._pending.get(key)

    def keys(self) -> list[str]:
        with self.lock:
            return [*self._records, *self._pending]

    @property
    def pending(self) -> list[str]:
        """Keys appended since the last flush, in the order they will be written."""
        with self.lock:
            return sorted(self._pending)

    def __len__(self) -> int:
        with self.lock:
            return len(self._records) + len(self._pending)

    # ------------- Updates -------------

    def append(self, record: ResolvedRecord) -> bool:
        """Buffer a new record.

        Returns:
            False if the key is already present; the existing record is kept.
        """
        with self.lock:
            if record.key in self._records or record.key in self._pending:
                logger.debug("%s is already in the bibliography, keeping the existing record", record.key)
                return False
            self._pending[record.key] = record
            return True

    def flush(self) -> bool:
        """Write pending records to the bibliography file.

        Returns:
            True if the file was written, False if there was nothing to write.

        Raises:
            CacheWriteFailed: If serialising, writing or replacing fails. The
                file on disk is left as it was and the records stay pending.
        """
        if not self.path or not self.codec:
            return False
        with self.lock:
            if not self._pending:
                return False
            new = [self._pending[k] for k in sorted(self._pending)]
            items = [*self._items, *(r.to_item() for r in new)]
            try:
                text = self.codec.encode(items, self._container)
            except (TypeError, ValueError, yaml.YAMLError) as e:
                raise CacheWriteFailed(self.path, f"serialisation error ({e})") from e
            if os.path.exists(self.path):
                logger.info("Updating %s", self.path)
            try:
                atomic_write(self.path, text)
            except OSError as e:
                raise CacheWriteFailed(self.path, str(e)) from e

            self._items = items
            for r in new:
                self._records[r.key] = r
            self._pending.clear()
        logger.info("Added %d record(s) to %s", len(new), self.path)
        return True
