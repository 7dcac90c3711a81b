"""Configuration for the snapwatch package."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .acl import (
    AceSecurityLevel,
    AclAggregator,
    AclFormat,
    acl_format_from_string,
    security_level_from_string,
)


@dataclass
class MonitorConfig:
    """
    Configuration options for the monitors and the change queue.

    Attributes:
        state_dir: Directory holding snapshot directories and the queue database
        db_path: Path to the SQLite database for the durable change queue
        include_patterns: Patterns a path must match (empty matches everything)
        exclude_patterns: Patterns that exclude a path
        ace_security_level: Which ACE levels are consulted (FILEANDSHARE, SHARE, FILE, FILEORSHARE)
        user_acl_format: Template for user principal names
        group_acl_format: Template for group principal names
        mark_all_documents_public: Report every entry as public
        push_acls: Read ACLs at all; when False every Acl is indeterminate
        max_file_size: Files larger than this many bytes are rejected
        supported_mime_types: MIME types accepted; None accepts every type
        checksum_algorithm: hashlib algorithm used for content checksums
        stability_interval_ms: Time after which an unchanged entry is stable
        idle_interval_seconds: Wait after a pass that produced no changes
        recovery_backoff_seconds: Wait before re-stitching after a snapshot fault
        max_queue_size: Capacity of the change buffer and size of a batch
        join_timeout_seconds: How long stop() waits for each monitor thread
        max_retries: Retries of durable queue operations before giving up
        preserve_access_time: Restore the access time of files after reading them
        wake_on_change: Use filesystem notifications to start the next pass early
    """
    state_dir: Path = field(default_factory=lambda: Path("snapwatch-state"))
    db_path: Optional[Path] = None
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    ace_security_level: str = AceSecurityLevel.FILEANDSHARE.value
    user_acl_format: str = AclFormat.USER.value
    group_acl_format: str = AclFormat.GROUP.value
    mark_all_documents_public: bool = False
    push_acls: bool = True
    max_file_size: int = 30 * 1024 * 1024
    supported_mime_types: Optional[List[str]] = None
    checksum_algorithm: str = "sha1"
    stability_interval_ms: int = 5000
    idle_interval_seconds: float = 5.0
    recovery_backoff_seconds: float = 1.0
    max_queue_size: int = 500
    join_timeout_seconds: float = 5.0
    max_retries: int = 3
    preserve_access_time: bool = False
    wake_on_change: bool = False

    def __post_init__(self):
        if isinstance(self.state_dir, str):
            self.state_dir = Path(self.state_dir)
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if self.db_path is None:
            self.db_path = self.state_dir / "queue.db"
        if self.max_queue_size < 1:
            raise ValueError(f"max_queue_size must be positive: {self.max_queue_size}")

    @property
    def snapshot_root(self) -> Path:
        """Directory containing one snapshot directory per monitor."""
        return self.state_dir / "snapshots"

    def build_acl_aggregator(self) -> AclAggregator:
        """Create an AclAggregator from the configured policy names."""
        return AclAggregator(
            security_level=security_level_from_string(self.ace_security_level),
            user_format=acl_format_from_string(self.user_acl_format, AclFormat.USER),
            group_format=acl_format_from_string(self.group_acl_format, AclFormat.GROUP),
        )

    @classmethod
    def from_env(cls, prefix: str = "SNAPWATCH_", **overrides) -> "MonitorConfig":
        """
        Create a configuration from environment variables.

        Explicit keyword overrides win over the environment.

        Args:
            prefix: Prefix of the environment variable names
            **overrides: Field values that take precedence

        Returns:
            The configuration
        """
        values = {}
        state_dir = os.environ.get(f"{prefix}STATE_DIR")
        if state_dir:
            values["state_dir"] = Path(state_dir)
        level = os.environ.get(f"{prefix}SECURITY_LEVEL")
        if level:
            values["ace_security_level"] = level
        idle = os.environ.get(f"{prefix}IDLE_INTERVAL")
        if idle:
            values["idle_interval_seconds"] = float(idle)
        max_size = os.environ.get(f"{prefix}MAX_FILE_SIZE")
        if max_size:
            values["max_file_size"] = int(max_size)
        wake = os.environ.get(f"{prefix}WAKE_ON_CHANGE")
        if wake:
            values["wake_on_change"] = wake.lower() in ("1", "true", "yes")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
