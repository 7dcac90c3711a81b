"""
Access control lists and the ACE aggregation policy.

Combines file-level and share-level access control entries into a single
Acl under a configurable security level.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, FrozenSet

logger = logging.getLogger(__name__)


# Access mask bits
FILE_READ_DATA = 0x00000001
FILE_READ_EA = 0x00000008
FILE_READ_ATTRIBUTES = 0x00000080
READ_CONTROL = 0x00020000
GENERIC_ALL = 0x10000000
GENERIC_READ = 0x80000000

# All of these bits must be set for an ACE to grant read access
READ_ACCESS_MASK = READ_CONTROL | FILE_READ_ATTRIBUTES | FILE_READ_EA | FILE_READ_DATA

# ACE flags
FLAGS_INHERIT_ONLY = 0x08
FLAGS_INHERITED = 0x10

EVERYONE_SID = "S-1-1-0"
BUILTIN_DOMAIN_NAME = "BUILTIN"

WELL_KNOWN_SIDS = frozenset([
    "S-1-5-32-544",  # Administrators
    EVERYONE_SID,    # Everyone
    "S-1-5-32-545",  # Users
    "S-1-5-32-546",  # Guests
    "S-1-5-4",       # NT AUTHORITY\INTERACTIVE
    "S-1-5-11",      # NT AUTHORITY\Authenticated Users
])


@dataclass(frozen=True)
class Acl:
    """
    Aggregated access list for one file or directory.

    An Acl with no users, no groups and is_public False is indeterminate:
    security could not be determined and the consumer must perform its
    own access check.

    Attributes:
        users: Users allowed to read
        groups: Groups allowed to read
        deny_users: Users explicitly denied
        deny_groups: Groups explicitly denied
        is_public: Whether everybody may read
    """
    users: Optional[FrozenSet[str]] = None
    groups: Optional[FrozenSet[str]] = None
    deny_users: Optional[FrozenSet[str]] = None
    deny_groups: Optional[FrozenSet[str]] = None
    is_public: bool = False

    def __post_init__(self):
        for name in ("users", "groups", "deny_users", "deny_groups"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, frozenset):
                object.__setattr__(self, name, frozenset(value))
        if self.is_public and any(
            getattr(self, name)
            for name in ("users", "groups", "deny_users", "deny_groups")
        ):
            raise ValueError("A public Acl cannot carry users or groups")

    @classmethod
    def indeterminate(cls) -> "Acl":
        """Acl meaning 'defer to the consumer's own access check'."""
        return cls()

    @classmethod
    def public(cls) -> "Acl":
        return cls(is_public=True)

    @classmethod
    def new_acl(
        cls,
        users: Optional[Iterable[str]],
        groups: Optional[Iterable[str]],
        deny_users: Optional[Iterable[str]] = None,
        deny_groups: Optional[Iterable[str]] = None,
    ) -> "Acl":
        return cls(
            users=frozenset(users) if users is not None else None,
            groups=frozenset(groups) if groups is not None else None,
            deny_users=frozenset(deny_users) if deny_users is not None else None,
            deny_groups=frozenset(deny_groups) if deny_groups is not None else None,
        )

    @property
    def is_determinate(self) -> bool:
        return self.is_public or self.users is not None or self.groups is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        if self.is_public:
            return {"is_public": True}
        data = {}
        for name in ("users", "groups", "deny_users", "deny_groups"):
            value = getattr(self, name)
            if value is not None:
                data[name] = sorted(value)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Acl":
        """Create from dictionary."""
        if data.get("is_public"):
            return cls.public()
        return cls.new_acl(
            data.get("users"),
            data.get("groups"),
            data.get("deny_users"),
            data.get("deny_groups"),
        )


class SidType(Enum):
    """Principal types a security identifier can resolve to."""
    USER = 1
    DOM_GRP = 2
    DOMAIN = 3
    ALIAS = 4
    WKN_GRP = 5
    DELETED = 6
    INVALID = 7
    UNKNOWN = 8


SUPPORTED_SID_TYPES = frozenset([
    SidType.USER,
    SidType.DOMAIN,
    SidType.DOM_GRP,
    SidType.ALIAS,
])


@dataclass(frozen=True)
class Sid:
    """
    A security identifier as reported by the transport.

    Attributes:
        sid_string: Canonical form, e.g. S-1-5-21-...
        display_name: Resolved name, e.g. DOMAIN\\user; equals sid_string
            when the name could not be resolved
        sid_type: Principal type
        domain_name: Domain the principal belongs to
    """
    sid_string: str
    display_name: str
    sid_type: SidType = SidType.USER
    domain_name: str = ""

    @property
    def is_resolved(self) -> bool:
        return self.display_name != self.sid_string


@dataclass(frozen=True)
class Ace:
    """One access control entry."""
    sid: Sid
    is_allow: bool = True
    access_mask: int = GENERIC_READ
    flags: int = 0

    @property
    def is_inherit_only(self) -> bool:
        return (self.flags & FLAGS_INHERIT_ONLY) == FLAGS_INHERIT_ONLY

    @property
    def is_inherited(self) -> bool:
        return (self.flags & FLAGS_INHERITED) == FLAGS_INHERITED

    @property
    def is_read(self) -> bool:
        return (
            (self.access_mask & READ_ACCESS_MASK) == READ_ACCESS_MASK
            or (self.access_mask & (GENERIC_ALL | GENERIC_READ)) != 0
        )


class AceSecurityLevel(Enum):
    """Which ACE levels are consulted and how they are combined."""
    FILEANDSHARE = "FILEANDSHARE"
    SHARE = "SHARE"
    FILE = "FILE"
    FILEORSHARE = "FILEORSHARE"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["AceSecurityLevel"]:
        if value is None:
            return None
        for level in cls:
            if level.value.lower() == value.strip().lower():
                return level
        return None


class AclFormat(Enum):
    """Templates for rendering a principal name."""
    USER_AT_DOMAIN = "user@domain"
    DOMAIN_BACKSLASH_USER = "domain\\user"
    USER = "user"
    GROUP_AT_DOMAIN = "group@domain"
    DOMAIN_BACKSLASH_GROUP = "domain\\group"
    GROUP = "group"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["AclFormat"]:
        if value is None:
            return None
        for fmt in cls:
            if fmt.value.lower() == value.strip().lower():
                return fmt
        return None

    def format_name(self, name: str, domain: str) -> str:
        if self in (AclFormat.USER_AT_DOMAIN, AclFormat.GROUP_AT_DOMAIN):
            return f"{name}@{domain}"
        if self in (AclFormat.DOMAIN_BACKSLASH_USER, AclFormat.DOMAIN_BACKSLASH_GROUP):
            return f"{domain}\\{name}"
        return name


def security_level_from_string(value: Optional[str]) -> AceSecurityLevel:
    """Parse a security level, falling back to FILEANDSHARE."""
    level = AceSecurityLevel.from_string(value)
    if level is None:
        logger.warning(
            f"Incorrect value specified for ace security level: {value!r}; "
            f"using default {AceSecurityLevel.FILEANDSHARE.value}"
        )
        return AceSecurityLevel.FILEANDSHARE
    return level


def acl_format_from_string(value: Optional[str], default: AclFormat) -> AclFormat:
    """Parse an ACL format, falling back to the given default."""
    fmt = AclFormat.from_string(value)
    if fmt is None:
        logger.warning(
            f"Incorrect value specified for ACL format: {value!r}; "
            f"using default {default.value}"
        )
        return default
    return fmt


class AclAggregator:
    """
    Builds an Acl from file-level and share-level ACEs.

    Only ACEs granting read access to supported principals are kept. A deny
    read entry at any consulted level makes the whole result indeterminate.
    The FILEANDSHARE intersection does not resolve group membership: a user
    allowed at one level and a group containing that user allowed at the
    other level do not intersect. Everyone at either level admits every
    entry of the other level.
    """

    def __init__(
        self,
        security_level: AceSecurityLevel = AceSecurityLevel.FILEANDSHARE,
        user_format: AclFormat = AclFormat.USER,
        group_format: AclFormat = AclFormat.GROUP,
    ):
        self.security_level = security_level
        self.user_format = user_format
        self.group_format = group_format

    def aggregate(
        self,
        file_aces: Optional[List[Ace]],
        share_aces: Optional[List[Ace]],
        subject: str = "",
    ) -> Acl:
        """
        Combine ACE lists into an Acl.

        Args:
            file_aces: File-level ACEs, or None if they could not be read
            share_aces: Share-level ACEs, or None if they could not be read
            subject: Path used in log messages

        Returns:
            The aggregated Acl, or the indeterminate Acl
        """
        file_kept: List[Ace] = []
        share_kept: List[Ace] = []

        if self.security_level != AceSecurityLevel.SHARE:
            if not self._collect(file_aces, file_kept, "file", subject):
                return Acl.indeterminate()
        if self.security_level != AceSecurityLevel.FILE:
            if not self._collect(share_aces, share_kept, "share", subject):
                return Acl.indeterminate()

        final_aces = self._combine(file_kept, share_kept)
        logger.debug(f"Final ACL for {subject}: {final_aces}")

        users = set()
        groups = set()
        for ace in final_aces:
            self._add_principal(ace.sid, users, groups)
        return Acl.new_acl(users, groups)

    def _collect(
        self,
        aces: Optional[List[Ace]],
        kept: List[Ace],
        level: str,
        subject: str,
    ) -> bool:
        if aces is None:
            logger.warning(f"Cannot process ACL because {level} security is not readable on {subject}")
            return False

        for ace in aces:
            if ace.is_inherit_only or ace.is_inherited:
                logger.debug(f"Filtering inherit only or inherited ACE {ace} for {subject}")
                continue
            if not ace.is_read:
                logger.debug(f"Filtering non-read ACE {ace} for {subject}")
                continue
            if not self._is_supported(ace.sid):
                logger.debug(f"Filtering unsupported ACE {ace} for {subject}")
                continue
            if not ace.is_allow:
                logger.warning(f"Cannot process ACL. DENY READ ACE found at {level} level for {subject}")
                return False
            kept.append(ace)
        return True

    @staticmethod
    def _is_supported(sid: Sid) -> bool:
        if sid.sid_string not in WELL_KNOWN_SIDS:
            if sid.sid_type not in SUPPORTED_SID_TYPES:
                return False
            if sid.sid_type == SidType.ALIAS and sid.domain_name == BUILTIN_DOMAIN_NAME:
                return False
        return sid.is_resolved

    def _combine(self, file_aces: List[Ace], share_aces: List[Ace]) -> List[Ace]:
        level = self.security_level
        if level == AceSecurityLevel.FILE:
            return list(file_aces)
        if level == AceSecurityLevel.SHARE:
            return list(share_aces)
        if level == AceSecurityLevel.FILEORSHARE:
            return list(file_aces) + list(share_aces)

        everyone_at_share = _contains_everyone(share_aces)
        everyone_at_file = _contains_everyone(file_aces)
        if everyone_at_share or everyone_at_file:
            final_aces = []
            if everyone_at_share:
                final_aces.extend(file_aces)
            if everyone_at_file:
                final_aces.extend(share_aces)
            return final_aces

        share_sids = {ace.sid.sid_string for ace in share_aces}
        return [ace for ace in file_aces if ace.sid.sid_string in share_sids]

    def _add_principal(self, sid: Sid, users: set, groups: set) -> None:
        entry = sid.display_name
        ix = entry.find("\\")
        if ix > 0:
            domain = entry[:ix]
            name = entry[ix + 1:]
            if sid.sid_type == SidType.USER:
                entry = self.user_format.format_name(name, domain)
            else:
                entry = self.group_format.format_name(name, domain)

        if sid.sid_type == SidType.USER:
            users.add(entry)
        elif sid.sid_type in (SidType.DOM_GRP, SidType.DOMAIN):
            groups.add(entry)
        elif sid.sid_type in (SidType.ALIAS, SidType.WKN_GRP):
            if ix < 0 and sid.domain_name:
                entry = self.group_format.format_name(entry, sid.domain_name)
            groups.add(entry)


def _contains_everyone(aces: List[Ace]) -> bool:
    return any(ace.sid.sid_string == EVERYONE_SID for ace in aces)
