"""Discovery, filtering and loading of local files for upload."""

import base64
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from gemini_research_agent.models import InlineData, Part

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB
DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES = {
    # Documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".rtf": "application/rtf",
    ".odt": "application/vnd.oasis.opendocument.text",
    # Text
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
    ".tsv": "text/tab-separated-values",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".xml": "application/xml",
    ".json": "application/json",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    # Code
    ".py": "text/x-python",
    ".js": "text/javascript",
    ".ts": "text/x-typescript",
    ".java": "text/x-java",
    ".c": "text/x-c",
    ".cpp": "text/x-c++",
    ".go": "text/x-go",
    ".rs": "text/x-rust",
    ".sh": "application/x-sh",
    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    # Audio / video
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def get_mime_type(path: PathLike) -> str:
    """Resolve a MIME type from the file extension."""
    return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


def normalize_extension(ext: str) -> str:
    """Normalize 'PDF', '.pdf' and 'pdf' to '.pdf'."""
    ext = ext.strip().lower()
    if not ext:
        raise ValueError("Empty file extension")
    return ext if ext.startswith(".") else f".{ext}"


def format_bytes(size: int) -> str:
    """Format a byte count for humans."""
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[i]}"


class SkipReason(str, Enum):
    EXTENSION_FILTERED = "extension-filtered"
    TOO_LARGE = "too-large"
    UNREADABLE = "unreadable"


@dataclass
class FileFilters:
    """Rules deciding which files a scan accepts."""

    recursive: bool = True
    extensions: Optional[list[str]] = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def __post_init__(self) -> None:
        if self.max_file_size < 0:
            raise ValueError("max_file_size must be non-negative")
        if self.extensions is not None:
            self.extensions = sorted({normalize_extension(e) for e in self.extensions})

    def allows_extension(self, path: PathLike) -> bool:
        if not self.extensions:
            return True
        return Path(path).suffix.lower() in self.extensions

    @classmethod
    def from_cli(
        cls,
        *,
        recursive: bool = True,
        types: Optional[str] = None,
        max_size_mb: Optional[float] = None,
    ) -> "FileFilters":
        """Build filters from comma-separated types and a size in megabytes."""
        extensions = [t for t in types.split(",") if t.strip()] if types else None
        max_size = (
            int(max_size_mb * 1024 * 1024)
            if max_size_mb is not None
            else DEFAULT_MAX_FILE_SIZE
        )
        return cls(recursive=recursive, extensions=extensions, max_file_size=max_size)


@dataclass
class ScannedFile:
    name: str
    path: str
    size: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "mime_type": self.mime_type,
        }


@dataclass
class SkippedFile:
    path: str
    reason: SkipReason
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason.value, "detail": self.detail}


@dataclass
class ScanResult:
    """Accepted and skipped files for one scan. Built fresh per call."""

    root: str
    files: list[ScannedFile] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "files": [f.to_dict() for f in self.files],
            "skipped": [s.to_dict() for s in self.skipped],
            "total_size": self.total_size,
        }


@dataclass
class Document:
    """A file loaded into memory for upload."""

    name: str
    path: str
    size: int
    mime_type: str
    content: bytes = field(repr=False)

    def to_part(self) -> Part:
        return Part(inline_data=InlineData(mime_type=self.mime_type, data=self.content))

    def to_dict(self, include_data: bool = True) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "mime_type": self.mime_type,
        }
        if include_data:
            d["data"] = base64.b64encode(self.content).decode("ascii")
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Document":
        content = base64.b64decode(d.get("data", ""), validate=True)
        name = d["name"]
        return cls(
            name=name,
            path=d.get("path") or name,
            size=len(content),
            mime_type=d.get("mime_type") or get_mime_type(name),
            content=content,
        )

    @classmethod
    def from_bytes(
        cls, name: str, content: bytes, mime_type: Optional[str] = None
    ) -> "Document":
        return cls(
            name=name,
            path=name,
            size=len(content),
            mime_type=mime_type or get_mime_type(name),
            content=content,
        )


class FileManager:
    """Scans folders and loads files according to a set of filters."""

    def __init__(self, filters: Optional[FileFilters] = None) -> None:
        self.filters = filters or FileFilters()

    def scan_folder(
        self, path: PathLike, filters: Optional[FileFilters] = None
    ) -> ScanResult:
        """
        Walk a directory and classify every file as accepted or skipped.

        Entries are visited in lexical order and both output lists are sorted
        by path, so an unchanged tree always scans identically.

        Raises:
            NotADirectoryError: if path is not an existing directory
        """
        filters = filters or self.filters
        root = Path(path).resolve()
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")

        result = ScanResult(root=str(root))
        visited: set[tuple[int, int]] = set()
        self._walk(root, filters, result, visited)

        result.files.sort(key=lambda f: f.path)
        result.skipped.sort(key=lambda s: s.path)
        logger.debug(
            "Scanned %s: %d accepted, %d skipped",
            root,
            len(result.files),
            len(result.skipped),
        )
        return result

    def _walk(
        self,
        directory: Path,
        filters: FileFilters,
        result: ScanResult,
        visited: set[tuple[int, int]],
    ) -> None:
        try:
            st = directory.stat()
            key = (st.st_dev, st.st_ino)
            if key in visited:
                result.skipped.append(
                    SkippedFile(str(directory), SkipReason.UNREADABLE, "symlink cycle")
                )
                return
            visited.add(key)
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            result.skipped.append(
                SkippedFile(str(directory), SkipReason.UNREADABLE, e.strerror or str(e))
            )
            return

        for entry in entries:
            entry_path = Path(entry.path)
            try:
                is_dir = entry.is_dir()  # follows symlinks
            except OSError as e:
                result.skipped.append(
                    SkippedFile(str(entry_path), SkipReason.UNREADABLE, str(e))
                )
                continue

            if is_dir:
                if filters.recursive:
                    self._walk(entry_path, filters, result, visited)
                continue

            self._classify(entry_path, filters, result)

    def _classify(self, path: Path, filters: FileFilters, result: ScanResult) -> None:
        if not filters.allows_extension(path):
            result.skipped.append(
                SkippedFile(
                    str(path),
                    SkipReason.EXTENSION_FILTERED,
                    f"{path.suffix or '(none)'} not in allowed extensions",
                )
            )
            return

        try:
            size = path.stat().st_size
        except OSError as e:
            result.skipped.append(
                SkippedFile(str(path), SkipReason.UNREADABLE, e.strerror or str(e))
            )
            return

        if not os.access(path, os.R_OK):
            result.skipped.append(
                SkippedFile(str(path), SkipReason.UNREADABLE, "permission denied")
            )
            return

        if size > filters.max_file_size:
            result.skipped.append(
                SkippedFile(
                    str(path),
                    SkipReason.TOO_LARGE,
                    f"{format_bytes(size)} exceeds {format_bytes(filters.max_file_size)}",
                )
            )
            return

        result.files.append(
            ScannedFile(
                name=path.name,
                path=str(path),
                size=size,
                mime_type=get_mime_type(path),
            )
        )

    def check_upload(self, name: str, size: int) -> Optional[SkippedFile]:
        """Apply the scan filters to an in-memory upload; None means accepted."""
        if not self.filters.allows_extension(name):
            return SkippedFile(name, SkipReason.EXTENSION_FILTERED)
        if size > self.filters.max_file_size:
            return SkippedFile(
                name,
                SkipReason.TOO_LARGE,
                f"{format_bytes(size)} exceeds {format_bytes(self.filters.max_file_size)}",
            )
        return None

    def load_file(self, path: PathLike) -> Optional[Document]:
        """Read one file. Returns None when it is missing or unreadable."""
        file_path = Path(path).resolve()
        try:
            content = file_path.read_bytes()
        except OSError as e:
            logger.warning("Could not load %s: %s", path, e)
            return None

        return Document(
            name=file_path.name,
            path=str(file_path),
            size=len(content),
            mime_type=get_mime_type(file_path),
            content=content,
        )

    def load_scanned(self, scan: ScanResult) -> list[Document]:
        """Load every accepted file of a scan, dropping any that vanished."""
        documents = []
        for scanned in scan.files:
            doc = self.load_file(scanned.path)
            if doc is not None:
                documents.append(doc)
        return documents

    def load_paths(self, paths: Iterable[PathLike]) -> tuple[list[Document], list[str]]:
        """
        Load a mix of files and folders.

        Folders are scanned with the manager's filters; single files are
        loaded as given. Returns (documents, error messages).
        """
        documents: list[Document] = []
        errors: list[str] = []

        for raw in paths:
            path = Path(raw)
            if not path.exists():
                errors.append(f"File not found: {raw}")
                continue

            if path.is_dir():
                scan = self.scan_folder(path)
                documents.extend(self.load_scanned(scan))
                continue

            doc = self.load_file(path)
            if doc is None:
                errors.append(f"Could not load file: {raw}")
            else:
                documents.append(doc)

        return documents, errors


def create_file_manager(filters: Optional[FileFilters] = None) -> FileManager:
    return FileManager(filters)


def load_document(path: PathLike) -> Optional[Document]:
    """Load a single document, or None if it cannot be read."""
    return FileManager().load_file(path)


def load_documents_from_folder(
    path: PathLike, filters: Optional[FileFilters] = None
) -> list[Document]:
    """Scan a folder and load every accepted file."""
    manager = FileManager(filters)
    return manager.load_scanned(manager.scan_folder(path))
