"""protocol agnostic operations

A Set is a tuple of edits. Every Edit must name its merge policy; there is
no default and a missing policy fails when the Edit is constructed.
"""
import json
from dataclasses import dataclass
from enum import Enum

from nmclient.model.path import Path
from nmclient.model.capabilities import Datastore


class OperationKind(Enum):
    GET = "get"
    SET = "set"
    SUBSCRIBE = "subscribe"
    COMMIT = "commit"
    DISCARD = "discard"
    LOCK = "lock"
    UNLOCK = "unlock"
    UNSUBSCRIBE = "unsubscribe"
    CLOSE_SESSION = "close-session"


class Scope(Enum):
    CONFIG_ONLY = "config"
    STATE_ONLY = "state"
    BOTH = "all"


class MergePolicy(Enum):
    MERGE = "merge"
    REPLACE = "replace"
    CREATE = "create"
    DELETE = "delete"
    REMOVE = "remove"

    @property
    def destructive(self) -> bool:
        return self in (MergePolicy.REPLACE, MergePolicy.DELETE, MergePolicy.REMOVE)

    @property
    def needs_payload(self) -> bool:
        return self not in (MergePolicy.DELETE, MergePolicy.REMOVE)


class Encoding(Enum):
    XML = "xml"
    JSON = "json"
    JSON_IETF = "json_ietf"
    PROTO = "proto"
    ASCII = "ascii"

    @property
    def is_json(self) -> bool:
        return self in (Encoding.JSON, Encoding.JSON_IETF)


@dataclass(frozen=True)
class Sample:
    """periodic delivery; interval in seconds"""
    interval: float

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError('sample interval must be positive')


@dataclass(frozen=True)
class OnChange:
    """delivery on every change; optional heartbeat in seconds"""
    heartbeat: float = None


def _as_path(path) -> Path:
    return path if isinstance(path, Path) else Path.parse(path)


@dataclass(frozen=True)
class Edit:
    """one change of a Set operation

    Parameters
    ----------
    path : Path | str
        the node to change
    payload : bytes | str | dict | list
        opaque payload; dicts and lists are serialized for json encodings
    encoding : Encoding
        encoding of the payload
    merge_policy : MergePolicy
        merge, replace, create, delete or remove
    """
    path: Path
    payload: bytes
    encoding: Encoding
    merge_policy: MergePolicy

    def __post_init__(self):
        if not isinstance(self.merge_policy, MergePolicy):
            raise TypeError(f'merge_policy must be a MergePolicy, got {self.merge_policy!r}')
        if not isinstance(self.encoding, Encoding):
            raise TypeError(f'encoding must be an Encoding, got {self.encoding!r}')
        object.__setattr__(self, 'path', _as_path(self.path))

        payload = self.payload
        if payload is None:
            payload = b''
        elif isinstance(payload, (dict, list)):
            if not self.encoding.is_json:
                raise TypeError(f'structured payload needs a json encoding, got {self.encoding.value}')
            payload = json.dumps(payload).encode()
        elif isinstance(payload, str):
            payload = payload.encode()
        object.__setattr__(self, 'payload', bytes(payload))

        if self.merge_policy.needs_payload and not self.payload:
            raise ValueError(f'merge policy {self.merge_policy.value} needs a payload')


@dataclass(frozen=True)
class GetOperation:
    path: Path
    scope: Scope

    kind = OperationKind.GET

    def __post_init__(self):
        if not isinstance(self.scope, Scope):
            raise TypeError(f'scope must be a Scope, got {self.scope!r}')
        object.__setattr__(self, 'path', _as_path(self.path))


@dataclass(frozen=True)
class SetOperation:
    """one or more edits applied as one request

    datastore is filled in by the client (candidate if negotiated, running otherwise)
    """
    edits: tuple
    datastore: Datastore = None

    kind = OperationKind.SET

    def __post_init__(self):
        edits = tuple(self.edits)
        if not edits:
            raise ValueError('a set operation needs at least one edit')
        for edit in edits:
            if not isinstance(edit, Edit):
                raise TypeError(f'expected Edit, got {edit!r}')
        object.__setattr__(self, 'edits', edits)

    @property
    def destructive(self) -> bool:
        return any(e.merge_policy.destructive for e in self.edits)

    @property
    def path(self) -> Path:
        return self.edits[0].path


@dataclass(frozen=True)
class SubscribeOperation:
    path: Path
    mode: object

    kind = OperationKind.SUBSCRIBE

    def __post_init__(self):
        if not isinstance(self.mode, (Sample, OnChange)):
            raise TypeError(f'mode must be Sample or OnChange, got {self.mode!r}')
        object.__setattr__(self, 'path', _as_path(self.path))


@dataclass(frozen=True)
class ControlOperation:
    """commit, discard-changes, lock, unlock, delete-subscription and close-session"""
    kind: OperationKind
    datastore: Datastore = None
    confirm_timeout: int = None
    subscription_id: str = None

    path = None
