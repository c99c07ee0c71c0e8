"""Load Markdown knowledge packs with YAML frontmatter into a document store."""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence
from uuid import NAMESPACE_URL, uuid5

import yaml

from knowpack.errors import DocumentNotFound, InvalidPath, PackNotFound
from knowpack.metrics.observability import get_logger
from knowpack.models import Document, PartialDataWarning, as_utc
from knowpack.store.service import InMemoryDocumentStore
from knowpack.text import normalize_slug

INDEX_FILES = frozenset({"index.md"})

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_HEADING_RE = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_TRUE_VALUES = frozenset({"true", "yes", "on", "1"})
_FALSE_VALUES = frozenset({"false", "no", "off", "0", ""})

_logger = get_logger("store.markdown")


def split_frontmatter(text: str) -> tuple[Mapping[str, Any] | None, str]:
    """Return ``(frontmatter, body)``; frontmatter is ``None`` when absent or unparseable."""

    stripped = text.lstrip("\ufeff \t\r\n")
    match = _FRONTMATTER_RE.match(stripped)
    if not match:
        return None, text.strip()
    body = stripped[match.end():].strip()
    try:
        loaded = yaml.safe_load(match.group(1))
    except (yaml.YAMLError, ValueError):
        return None, body
    if not isinstance(loaded, dict):
        return None, body
    return loaded, body


def has_frontmatter(text: str) -> bool:
    return _FRONTMATTER_RE.match(text.lstrip("\ufeff \t\r\n")) is not None


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_flag(value: Any) -> bool | None:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    return None


def _parse_tags(value: Any) -> frozenset[str] | None:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple, set)):
        return frozenset(str(part).strip() for part in value if str(part).strip())
    return None


def _document_id(pack: str, slug: str, last_updated: datetime | None, body: str) -> str:
    digest = hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]
    stamp = last_updated.isoformat() if last_updated else "-"
    return uuid5(NAMESPACE_URL, f"knowpack://{pack}/{slug}@{stamp}#{digest}").hex


def parse_articles(
    text: str,
    *,
    separator: str,
    pack: str | None = None,
    source_path: str | None = None,
) -> tuple[List[Document], List[PartialDataWarning]]:
    """Split a file into articles and parse each one's frontmatter.

    Malformed values are dropped to ``None`` and reported; they never abort the
    file. Articles with no resolvable pack are skipped with a warning.
    """

    documents: List[Document] = []
    warnings: List[PartialDataWarning] = []
    fallback_name = Path(source_path).stem if source_path else "article"
    parts = [part for part in text.split(separator.strip() or separator) if part.strip()]
    for index, part in enumerate(parts):
        meta, body = split_frontmatter(part)
        invalid: list[str] = []
        if meta is None and has_frontmatter(part):
            invalid.append("frontmatter")
        meta = meta or {}

        article_pack = str(meta.get("pack") or pack or "").strip()
        heading = _HEADING_RE.search(body)
        topic = str(meta.get("topic") or (heading.group(1) if heading else fallback_name)).strip()
        slug = normalize_slug(str(meta.get("slug") or topic))
        label = f"{source_path or '<text>'}#{index}"
        if not article_pack:
            warnings.append(PartialDataWarning(document_id=label, fields=("pack",), message="article has no pack; skipped"))
            continue

        confidence = _parse_int(meta.get("confidence"))
        if meta.get("confidence") is not None and confidence is None:
            invalid.append("confidence")
        sources_checked = _parse_int(meta.get("sources_checked"))
        if meta.get("sources_checked") is not None and sources_checked is None:
            invalid.append("sources_checked")
        last_updated = _parse_timestamp(meta.get("last_updated"))
        if meta.get("last_updated") is not None and last_updated is None:
            invalid.append("last_updated")
        last_verified = _parse_timestamp(meta.get("last_verified"))
        if meta.get("last_verified") is not None and last_verified is None:
            invalid.append("last_verified")
        tags = _parse_tags(meta.get("tags"))
        if tags is None:
            invalid.append("tags")
            tags = frozenset()
        deleted = _parse_flag(meta.get("deleted"))
        if deleted is None:
            invalid.append("deleted")
            deleted = False

        document_id = str(meta.get("id") or _document_id(article_pack, slug, last_updated, body))
        if invalid:
            warnings.append(
                PartialDataWarning(
                    document_id=document_id,
                    fields=tuple(invalid),
                    message=f"unparseable frontmatter values in {label}",
                ),
            )
        documents.append(
            Document(
                document_id=document_id,
                pack=article_pack,
                topic=topic,
                body=body,
                confidence=confidence,
                sources_checked=sources_checked,
                last_updated=last_updated,
                last_verified=last_verified,
                tags=tags,
                slug=slug,
                source_path=source_path,
                deleted=deleted,
            ),
        )
    return documents, warnings


def iter_pack_files(root: Path) -> Iterable[tuple[str, Path]]:
    """Yield ``(pack, path)`` for every article file under ``root/<pack>/``."""

    for pack_dir in sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")):
        for path in sorted(pack_dir.rglob("*.md")):
            if path.name.lower() in INDEX_FILES:
                continue
            yield pack_dir.name, path


def load_directory(
    root: str | Path,
    *,
    separator: str,
    encoding: str = "utf-8",
) -> tuple[InMemoryDocumentStore, Sequence[PartialDataWarning]]:
    """Build an in-memory store from a knowledge directory."""

    root_path = Path(root)
    if not root_path.is_dir():
        raise FileNotFoundError(f"Knowledge directory not found: {root_path}")
    documents: dict[str, Document] = {}
    warnings: list[PartialDataWarning] = []
    file_count = 0
    for pack, path in iter_pack_files(root_path):
        file_count += 1
        relative = str(path.relative_to(root_path))
        try:
            text = path.read_text(encoding=encoding)
        except (UnicodeDecodeError, OSError) as exc:
            warnings.append(
                PartialDataWarning(document_id=relative, fields=("file",), message=f"unreadable file skipped: {exc}"),
            )
            continue
        parsed, file_warnings = parse_articles(
            text,
            separator=separator,
            pack=pack,
            source_path=relative,
        )
        warnings.extend(file_warnings)
        for document in parsed:
            if document.document_id in documents:
                warnings.append(
                    PartialDataWarning(
                        document_id=document.document_id,
                        fields=("id",),
                        message=f"duplicate article in {relative}; first occurrence kept",
                    ),
                )
                continue
            documents[document.document_id] = document

    for warning in warnings:
        _logger.warning("load.partial_data", document_id=warning.document_id, fields=list(warning.fields), detail=warning.message)
    _logger.info("load.complete", root=str(root_path), file_count=file_count, document_count=len(documents))
    return InMemoryDocumentStore(documents.values()), warnings


def read_pack_file(root: str | Path, pack: str, relative_path: str | None = None, *, encoding: str = "utf-8") -> str:
    """Read one file of a pack, defaulting to its ``INDEX.md``.

    Paths that resolve outside the pack directory are rejected.
    """

    pack_dir = (Path(root) / pack).resolve()
    if "/" in pack or "\\" in pack or pack in {"", ".", ".."} or not pack_dir.is_dir():
        raise PackNotFound(pack)
    target = (pack_dir / (relative_path or "INDEX.md")).resolve()
    if target != pack_dir and pack_dir not in target.parents:
        raise InvalidPath(f"Invalid path: {relative_path}")
    try:
        return target.read_text(encoding=encoding)
    except (FileNotFoundError, IsADirectoryError):
        raise DocumentNotFound(f"{pack}/{relative_path or 'INDEX.md'}") from None
