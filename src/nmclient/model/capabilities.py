from dataclasses import dataclass, field
from enum import Enum


class Datastore(Enum):
    RUNNING = "running"
    CANDIDATE = "candidate"
    STARTUP = "startup"
    OPERATIONAL = "operational"


@dataclass(frozen=True)
class ModelData:
    """a data model supported by the device"""
    name: str
    organization: str = None
    version: str = None
    namespace: str = None


@dataclass(frozen=True)
class Capabilities:
    """negotiated feature set of a session

    Populated once during negotiation and read-only afterwards. If the device
    changes its feature set the session has to be closed and negotiated again.

    Parameters
    ----------
    protocol : Protocol
        the protocol this feature set belongs to
    features : frozenset
        capability URIs or feature identifiers
    encodings : tuple
        supported payload encodings, preferred first
    merge_policies : frozenset
        merge policies the protocol can express
    datastores : frozenset
        datastores that can be read or written
    supports_lock : bool
        lock/unlock is available
    supports_commit : bool
        a candidate datastore with commit is available
    supports_subscribe : bool
        streaming subscriptions are available
    supports_atomic_set : bool
        a failed multi edit set is guaranteed to be applied fully or not at all
    models : tuple
        ModelData of the supported data models
    version : str
        netconf base version, gnmi version or restconf api root
    session_id : str
        netconf session-id
    """
    protocol: object
    features: frozenset = frozenset()
    encodings: tuple = ()
    merge_policies: frozenset = frozenset()
    datastores: frozenset = frozenset()
    supports_lock: bool = False
    supports_commit: bool = False
    supports_subscribe: bool = False
    supports_atomic_set: bool = False
    models: tuple = ()
    version: str = None
    session_id: str = None
    extras: dict = field(default_factory=dict, compare=False)

    def has(self, feature:str) -> bool:
        """return True if a feature (or a capability URI starting with it) was negotiated"""
        if feature in self.features:
            return True
        return any(f.startswith(feature) for f in self.features)

    def supports_encoding(self, encoding) -> bool:
        return encoding in self.encodings

    def supports_merge_policy(self, policy) -> bool:
        return policy in self.merge_policies

    @property
    def candidate(self) -> bool:
        return Datastore.CANDIDATE in self.datastores

    @property
    def preferred_encoding(self):
        return self.encodings[0] if self.encodings else None
