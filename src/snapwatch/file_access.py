"""
Read-only file access layer.

The monitors see every transport through the ReadonlyFile interface.
Only local disk access is implemented here.
"""

import errno
import logging
import os
import stat
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional

from .acl import Ace, Acl
from .exceptions import (
    FileAccessError,
    InsufficientAccessError,
    RepositoryUnavailableError,
    ResourceNotFoundError,
)
from .models import FileKind, FilterReason
from .snapshot import SEPARATOR, ordering_key

logger = logging.getLogger(__name__)

# errno values meaning "the storage behind this path went away for now"
TRANSIENT_ERRNOS = frozenset([
    errno.ENOTCONN,
    errno.ESTALE,
    errno.ETIMEDOUT,
    errno.EHOSTDOWN,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.ENETUNREACH,
])


def translate_os_error(error: OSError, path: str) -> FileAccessError:
    """Map an OSError to the file access exception hierarchy."""
    if isinstance(error, FileNotFoundError):
        return ResourceNotFoundError(str(error), path)
    if isinstance(error, PermissionError):
        return InsufficientAccessError(str(error), path)
    if error.errno in TRANSIENT_ERRNOS:
        return RepositoryUnavailableError(str(error), path)
    return FileAccessError(str(error), path)


@dataclass
class ListingResult:
    """
    Outcome of listing one directory.

    A failed listing carries the reason and is treated by the monitor as
    a directory with no children.
    """
    children: List["ReadonlyFile"] = field(default_factory=list)
    reason: Optional[FilterReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls, children: List["ReadonlyFile"]) -> "ListingResult":
        return cls(children=children)

    @classmethod
    def failure(cls, reason: FilterReason, message: str) -> "ListingResult":
        return cls(children=[], reason=reason, message=message)


class ReadonlyFile(ABC):
    """Abstract read-only view of one file or directory."""

    file_system_type = "abstract"
    supports_aces = False

    def __init__(self, path: str):
        self.path = path

    @abstractmethod
    def is_directory(self) -> bool:
        pass

    @abstractmethod
    def is_regular_file(self) -> bool:
        pass

    @abstractmethod
    def exists(self) -> bool:
        pass

    @abstractmethod
    def can_read(self) -> bool:
        pass

    @abstractmethod
    def length(self) -> int:
        """Return the size of the file in bytes."""
        pass

    @abstractmethod
    def last_modified(self) -> int:
        """Return the modification time in milliseconds."""
        pass

    @abstractmethod
    def list_children(self) -> ListingResult:
        """
        List the entries of a directory.

        Returns:
            Children sorted by snapshot ordering, or a failed result

        Raises:
            RepositoryUnavailableError: If the transport is temporarily down
        """
        pass

    @abstractmethod
    def get_acl(self) -> Acl:
        """Return the Acl, or the indeterminate Acl if it cannot be read."""
        pass

    @abstractmethod
    def open_content_stream(self) -> BinaryIO:
        pass

    def get_file_aces(self) -> Optional[List[Ace]]:
        """
        Return the file-level ACEs of a transport that exposes them.

        Only consulted when supports_aces is True. None means the
        security descriptor could not be read.
        """
        return None

    def get_share_aces(self) -> Optional[List[Ace]]:
        """Return the share-level ACEs, or None if they could not be read."""
        return None

    @property
    def name(self) -> str:
        return self.path.rstrip(SEPARATOR).rsplit(SEPARATOR, 1)[-1]

    @property
    def kind(self) -> FileKind:
        return FileKind.DIR if self.is_directory() else FileKind.FILE

    def snapshot_path(self) -> str:
        """Path as stored in snapshots; directories end with the separator."""
        if self.is_directory() and not self.path.endswith(SEPARATOR):
            return self.path + SEPARATOR
        return self.path

    def matches_pattern(self, matcher) -> bool:
        path = self.snapshot_path()
        if path.endswith(SEPARATOR):
            return matcher.matches_directory(path)
        return matcher.matches(path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"


class LocalReadonlyFile(ReadonlyFile):
    """File on a locally mounted file system."""

    file_system_type = "local"

    def __init__(self, path):
        self.local_path = Path(path)
        super().__init__(path if isinstance(path, str) else self.local_path.as_posix())

    def _lstat(self) -> os.stat_result:
        try:
            return os.lstat(self.local_path)
        except OSError as e:
            raise translate_os_error(e, self.path) from e

    def is_directory(self) -> bool:
        try:
            return stat.S_ISDIR(os.lstat(self.local_path).st_mode)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise translate_os_error(e, self.path) from e

    def is_regular_file(self) -> bool:
        return stat.S_ISREG(self._lstat().st_mode)

    def exists(self) -> bool:
        return os.path.lexists(self.local_path)

    def can_read(self) -> bool:
        return os.access(self.local_path, os.R_OK)

    def length(self) -> int:
        return self._lstat().st_size

    def last_modified(self) -> int:
        return self._lstat().st_mtime_ns // 1_000_000

    def _child(self, name: str) -> "LocalReadonlyFile":
        return LocalReadonlyFile(self.path.rstrip(SEPARATOR) + SEPARATOR + name)

    def list_children(self) -> ListingResult:
        try:
            names = os.listdir(self.local_path)
        except OSError as e:
            error = translate_os_error(e, self.path)
            if isinstance(error, RepositoryUnavailableError):
                raise error from e
            reason = (
                FilterReason.ACCESS_DENIED
                if isinstance(error, InsufficientAccessError)
                else FilterReason.IO_EXCEPTION
            )
            return ListingResult.failure(reason, str(e))

        children = [self._child(name) for name in names]
        children.sort(key=lambda child: ordering_key(child.path))
        return ListingResult.success(children)

    def get_acl(self) -> Acl:
        if os.name != "posix":
            return Acl.indeterminate()
        import grp
        import pwd

        try:
            stat_info = os.stat(self.local_path)
        except OSError as e:
            logger.debug(f"Cannot read permissions of {self.path}: {e}")
            return Acl.indeterminate()

        mode = stat_info.st_mode
        if mode & stat.S_IROTH:
            return Acl.public()

        users = set()
        groups = set()
        if mode & stat.S_IRUSR:
            try:
                users.add(pwd.getpwuid(stat_info.st_uid).pw_name)
            except KeyError:
                users.add(str(stat_info.st_uid))
        if mode & stat.S_IRGRP:
            try:
                groups.add(grp.getgrgid(stat_info.st_gid).gr_name)
            except KeyError:
                groups.add(str(stat_info.st_gid))
        return Acl.new_acl(users, groups)

    def open_content_stream(self) -> BinaryIO:
        try:
            return open(self.local_path, "rb")
        except OSError as e:
            raise translate_os_error(e, self.path) from e


class _AccessTimeRestoringStream:
    """Binary stream that puts back the original access time on close."""

    def __init__(self, stream: BinaryIO, local_path: Path, atime_ns: int, mtime_ns: int):
        self._stream = stream
        self._local_path = local_path
        self._atime_ns = atime_ns
        self._mtime_ns = mtime_ns

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        if self._stream.closed:
            return
        self._stream.close()
        try:
            os.utime(self._local_path, ns=(self._atime_ns, self._mtime_ns))
        except OSError as e:
            logger.warning(f"Failed to restore access time of {self._local_path}: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class AccessTimePreservingFile(ReadonlyFile):
    """Wraps a local file and restores its access time after reads."""

    def __init__(self, delegate: LocalReadonlyFile):
        super().__init__(delegate.path)
        self.delegate = delegate
        self.file_system_type = delegate.file_system_type
        self.supports_aces = delegate.supports_aces

    def is_directory(self) -> bool:
        return self.delegate.is_directory()

    def is_regular_file(self) -> bool:
        return self.delegate.is_regular_file()

    def exists(self) -> bool:
        return self.delegate.exists()

    def can_read(self) -> bool:
        return self.delegate.can_read()

    def length(self) -> int:
        return self.delegate.length()

    def last_modified(self) -> int:
        return self.delegate.last_modified()

    def list_children(self) -> ListingResult:
        result = self.delegate.list_children()
        if not result.ok:
            return result
        return ListingResult.success([AccessTimePreservingFile(child) for child in result.children])

    def get_acl(self) -> Acl:
        return self.delegate.get_acl()

    def get_file_aces(self) -> Optional[List[Ace]]:
        return self.delegate.get_file_aces()

    def get_share_aces(self) -> Optional[List[Ace]]:
        return self.delegate.get_share_aces()

    def open_content_stream(self) -> BinaryIO:
        try:
            stat_info = os.stat(self.delegate.local_path)
        except OSError as e:
            raise translate_os_error(e, self.path) from e
        stream = self.delegate.open_content_stream()
        return _AccessTimeRestoringStream(
            stream,
            self.delegate.local_path,
            stat_info.st_atime_ns,
            stat_info.st_mtime_ns,
        )


class DeletedFile(ReadonlyFile):
    """Stand-in for a path that is only known from a snapshot record."""

    def __init__(self, path: str, file_system_type: str, kind: FileKind):
        super().__init__(path)
        self.file_system_type = file_system_type
        self._kind = kind

    def is_directory(self) -> bool:
        return self._kind == FileKind.DIR

    def is_regular_file(self) -> bool:
        return self._kind == FileKind.FILE

    def exists(self) -> bool:
        return False

    def can_read(self) -> bool:
        return False

    def length(self) -> int:
        raise ResourceNotFoundError("File no longer exists", self.path)

    def last_modified(self) -> int:
        raise ResourceNotFoundError("File no longer exists", self.path)

    def list_children(self) -> ListingResult:
        return ListingResult.success([])

    def get_acl(self) -> Acl:
        return Acl.indeterminate()

    def open_content_stream(self) -> BinaryIO:
        raise ResourceNotFoundError("File no longer exists", self.path)

    def snapshot_path(self) -> str:
        return self.path


def open_start_path(start_path: str, preserve_access_time: bool = False) -> ReadonlyFile:
    """
    Create the ReadonlyFile for a monitored start path.

    Args:
        start_path: Path of the root directory
        preserve_access_time: Wrap the file so reads do not update access times

    Returns:
        File object for the root

    Raises:
        ValueError: If the path names a transport that is not supported
    """
    if "://" in start_path:
        scheme = start_path.split("://", 1)[0]
        raise ValueError(f"Unsupported file system type: {scheme}")
    local = LocalReadonlyFile(start_path)
    if preserve_access_time:
        return AccessTimePreservingFile(local)
    return local
