from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from auditor.models import Audit

log = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_.]")


def safe_name(value: str) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", value.strip())
    return cleaned.strip(".") or "_"


def _is_uuid(value: str) -> bool:
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class AuditStore:
    """File-backed audit records.

    ``audits/<id>.json`` holds one record per audit. ``sites/<site>.json``
    is a secondary copy of the most recent save for a site. Both are written
    through a uniquely named temp file and renamed into place.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.audits_dir = self.root / "audits"
        self.sites_dir = self.root / "sites"

    def save(self, audit: Audit) -> str:
        audit_id = str(uuid.uuid4())
        record = audit.model_copy(update={"id": audit_id})
        payload = record.model_dump_json(indent=2)
        _write_atomic(self.audits_dir / f"{audit_id}.json", payload)
        _write_atomic(self.sites_dir / f"{safe_name(record.meta.site_id)}.json", payload)
        log.info("Saved audit %s for %s", audit_id, record.meta.site_id)
        return audit_id

    def get(self, audit_id: str) -> Optional[Audit]:
        if not audit_id or not _is_uuid(audit_id):
            return None
        return self._read(self.audits_dir / f"{audit_id.lower()}.json")

    def find_by_id_or_site(self, identifier: str) -> Optional[Audit]:
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        found = self.get(identifier)
        if found is not None:
            return found

        records = list(self._iter_records())
        for matches in (_matches_site_or_url, _matches_hostname, _matches_url_substring):
            for record in records:
                if matches(record, identifier):
                    return record

        return self._read(self.sites_dir / f"{safe_name(identifier)}.json")

    def history(self, site_id: str) -> list[Audit]:
        records = [record for record in self._iter_records() if record.meta.site_id == site_id]
        return sorted(records, key=lambda record: record.meta.generated_at)

    def _iter_records(self) -> Iterator[Audit]:
        if not self.audits_dir.exists():
            return
        paths = []
        for path in self.audits_dir.glob("*.json"):
            try:
                paths.append((path.stat().st_mtime, path))
            except FileNotFoundError:
                continue
        # Newest first is best effort only; concurrent saves may reorder.
        for _, path in sorted(paths, key=lambda item: item[0], reverse=True):
            record = self._read(path)
            if record is not None:
                yield record

    def _read(self, path: Path) -> Optional[Audit]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return Audit.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            log.warning("Skipping unreadable audit record %s: %s", path.name, exc)
            return None


def _matches_site_or_url(record: Audit, identifier: str) -> bool:
    return record.meta.site_id == identifier or record.meta.url == identifier


def _matches_hostname(record: Audit, identifier: str) -> bool:
    try:
        return (urlparse(record.meta.url).hostname or "") == identifier.lower()
    except ValueError:
        return False


def _matches_url_substring(record: Audit, identifier: str) -> bool:
    return identifier in record.meta.url
