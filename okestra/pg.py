"""Process groups: owners, their members, and the signals passed between them."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Protocol, TypeVar


class PGSignalSource(str, Enum):
    """Who sent a signal."""

    OWNER = "owner"
    MEMBER = "member"


class PGSignalKind(str, Enum):
    """What a signal means."""

    CREATE = "create"
    PANIC = "panic"
    NORMAL = "normal"


class PGSignalSendMode(str, Enum):
    """How a signal is delivered."""

    BROADCAST = "broadcast"
    UNICAST = "unicast"


class PGSignalKillReason(str, Enum):
    """Why a member left its group."""

    LEAVE = "leave"
    FATAL_ERROR = "fatal_error"
    MEMBER_KILLED = "member_killed"


@dataclass
class PGSignal:
    """Data sent between the owner and the members of a group."""

    source: PGSignalSource | None = None
    signal: PGSignalKind | None = None
    mode: PGSignalSendMode | None = None
    reason: PGSignalKillReason | None = None
    recipient_key: str = ""
    source_key: str = ""


class PGError(Exception):
    """A process group operation failed."""

    def __init__(self, op: str, err: BaseException | str | None, key: str) -> None:
        self.op = op
        self.err = err
        self.key = key
        super().__init__(str(self))

    def __str__(self) -> str:
        detail = "<nil>" if self.err is None else str(self.err)
        return f"pg error: operation={self.op} key={self.key}: {detail}"


class _GroupOwner(Protocol):
    def key(self) -> str: ...

    def handle_signal(self, source: str, signal: PGSignal) -> Any: ...

    def is_local(self) -> bool: ...

    def node_name(self) -> str: ...


class _GroupMember(Protocol):
    def key(self) -> str: ...

    def handle_signal(self, source: str, signal: PGSignal) -> Any: ...


OwnerT = TypeVar("OwnerT", bound=_GroupOwner)
MemberT = TypeVar("MemberT", bound=_GroupMember)

Dispatch = Callable[[Callable[[], Any]], Any]


def _call_now(notify: Callable[[], Any]) -> None:
    notify()


class ProcessGroup(Generic[OwnerT, MemberT]):
    """Registry of group owners, their members and the members they monitor.

    Notifications to owners and members are delivered after the registry's
    lock is released, through ``dispatch`` (called synchronously by default).
    """

    def __init__(self, dispatch: Dispatch | None = None) -> None:
        self._owners: dict[str, OwnerT] = {}
        self._members: dict[str, MemberT] = {}
        self._groups: dict[str, list[str]] = {}
        self._monitors: dict[str, list[str]] = {}
        self._lock = threading.RLock()
        self._dispatch: Dispatch = dispatch or _call_now

    def register_group(self, owner: OwnerT) -> None:
        """Register ``owner`` with an empty group and monitor list."""
        key = owner.key()
        with self._lock:
            self._owners[key] = owner
            self._groups[key] = []
            self._monitors[key] = []

    def find_owner(self, key: str) -> OwnerT:
        """Return the owner registered under ``key``."""
        with self._lock:
            try:
                return self._owners[key]
            except KeyError:
                raise PGError("FindOwner", "owner not found", key) from None

    def group_owner(self, key: str) -> OwnerT:
        """Return the owner of the group ``key``."""
        with self._lock:
            try:
                return self._owners[key]
            except KeyError:
                raise PGError("GroupOwner", "owner not found", key) from None

    def _resolve(self, member_ids: list[str]) -> list[MemberT]:
        return [self._members[mid] for mid in member_ids if mid in self._members]

    def remove_group(self, owner: OwnerT) -> None:
        """Drop ``owner``'s group and tell each of its members it was killed."""
        key = owner.key()
        with self._lock:
            if key not in self._groups:
                raise PGError("RemoveGroup", "members not found", key)
            members = self._resolve(self._groups[key])
            self._owners.pop(key, None)
            del self._groups[key]
            self._monitors.pop(key, None)

        signal = PGSignal(
            source=PGSignalSource.OWNER,
            signal=PGSignalKind.NORMAL,
            mode=PGSignalSendMode.BROADCAST,
            reason=PGSignalKillReason.MEMBER_KILLED,
        )
        for member in members:
            member.handle_signal(key, signal)

    def members(self, key: str) -> list[MemberT]:
        """Return the members of the group ``key``, in joining order."""
        with self._lock:
            if key not in self._groups:
                raise PGError("Members", "members not found", key)
            return self._resolve(self._groups[key])

    def local_groups(self) -> list[OwnerT]:
        """Return the owners that run on this node."""
        with self._lock:
            owners = list(self._owners.values())
        return [owner for owner in owners if owner.is_local()]

    def join(self, key: str, member: MemberT) -> None:
        """Add ``member`` to group ``key`` and tell the owner it joined."""
        member_key = member.key()
        with self._lock:
            owner = self._owners.get(key)
            if owner is None:
                raise PGError("Join", "owner not found", key)
            group = self._groups.setdefault(key, [])
            if member_key in group:
                return
            group.append(member_key)
            self._members[member_key] = member

        signal = PGSignal(
            source=PGSignalSource.MEMBER,
            signal=PGSignalKind.CREATE,
            mode=PGSignalSendMode.UNICAST,
            recipient_key=owner.key(),
            source_key=member_key,
        )
        self._dispatch(lambda: owner.handle_signal(member_key, signal))

    def leave(self, owner_id: str, member_id: str, reason: PGSignal) -> None:
        """Remove ``member_id`` from the group; a monitoring owner receives ``reason``."""
        with self._lock:
            monitored = self._monitors.get(owner_id)
            if monitored is None:
                raise PGError("Leave", "owner not found", owner_id)
            alert_owner = member_id in monitored

            if owner_id in self._groups:
                self._groups[owner_id] = [
                    mid for mid in self._groups[owner_id] if mid != member_id
                ]
            self._members.pop(member_id, None)
            self._monitors[owner_id] = [mid for mid in monitored if mid != member_id]
            owner = self._owners.get(owner_id) if alert_owner else None

        if owner is not None:
            self._dispatch(lambda: owner.handle_signal(member_id, reason))

    def monitor(self, owner: OwnerT, member: str) -> None:
        """Have ``owner`` be told when ``member`` leaves."""
        with self._lock:
            watched = self._monitors.setdefault(owner.key(), [])
            if member not in watched:
                watched.append(member)

    def unmonitor(self, owner: OwnerT, member: str) -> None:
        """Stop telling ``owner`` when ``member`` leaves."""
        with self._lock:
            key = owner.key()
            self._monitors[key] = [
                mid for mid in self._monitors.get(key, []) if mid != member
            ]