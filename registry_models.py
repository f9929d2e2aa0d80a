"""
Registry Data Model

Value types shared by the catalog walker, the manifest resolver and the
batch executor. Everything here is plain data; no I/O happens in this module.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class RegistryType(IntEnum):
    """Registry vendor, numbered the way registry records store it"""

    QUAY = 1
    AZURE = 2
    CUSTOM = 3
    GITLAB = 4
    PROGET = 5
    DOCKERHUB = 6
    ECR = 7
    GITHUB = 8

    @classmethod
    def parse(cls, value: Any) -> "RegistryType":
        """Accept an enum member, its number or its (case-insensitive) name.

        A missing type (None) means a custom registry.
        """
        if value is None:
            return cls.CUSTOM
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown registry type: {value}")
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Unknown registry type: {value!r}")


@dataclass(frozen=True)
class RegistryRef:
    """Identifies the registry a call targets"""

    id: str
    type: RegistryType = RegistryType.CUSTOM
    name: str = ""


@dataclass(frozen=True)
class Repository:
    name: str
    tags_count: Optional[int] = None


@dataclass(frozen=True)
class ShortTag:
    """Tag resolved from its schema-v2 manifest only"""

    name: str
    image_id: Optional[str]
    image_digest: Optional[str]
    manifest_v2: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class TagDetail:
    """Merged view of the schema-v1 and schema-v2 manifests of one tag"""

    name: str
    os: Optional[str] = None
    architecture: Optional[str] = None
    size: Optional[int] = None
    image_digest: Optional[str] = None
    image_id: Optional[str] = None
    manifest_v2: Optional[Dict[str, Any]] = field(default=None, compare=False)
    history: List[Dict[str, Any]] = field(default_factory=list, compare=False)


@dataclass(frozen=True)
class AddTagPayload:
    tag: str
    manifest: Dict[str, Any] = field(compare=False)


@dataclass(frozen=True)
class TagRename:
    name: str
    new_name: str


@dataclass(frozen=True)
class PageCursor:
    last: str
    n: Optional[int] = None


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_cursor: Optional[PageCursor] = None


@dataclass(frozen=True)
class BatchProgress:
    """Cumulative count of settled items, with failures counted separately"""

    completed: int
    failed: int = 0

    def shifted(self, completed: int = 0, failed: int = 0) -> "BatchProgress":
        """Offset this value so several batches add up to one running count"""
        return BatchProgress(self.completed + completed, self.failed + failed)

    @property
    def succeeded(self) -> int:
        return self.completed - self.failed


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one batch item; `index` is the item's position in its batch"""

    index: int
    item: Any
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchSummary:
    succeeded: List[ItemResult] = field(default_factory=list)
    failed: List[ItemResult] = field(default_factory=list)
    progress: Optional[BatchProgress] = None

    @property
    def all_succeeded(self) -> bool:
        return not self.failed
