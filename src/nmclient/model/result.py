"""protocol agnostic results

The payload of a Result is a tree built from dicts (containers and list
entries), lists (YANG lists, leaf-lists and repeated nodes) and scalars. It
is always rooted at the top level data node and uses local names as keys,
no matter if the device answered in XML, JSON or protobuf.
"""
from dataclasses import dataclass, field
from enum import Enum

from nmclient.model.path import Path
from nmclient.tools.exceptions import NodeNotFoundError


class Source(Enum):
    CONFIG = "config"
    STATE = "state"
    MIXED = "mixed"
    UNKNOWN = "unknown"


@dataclass
class Result:
    """decoded payload tree and its source classification

    Parameters
    ----------
    data : dict
        the payload tree
    source : Source
        configuration, operational state or both
    path : Path
        the path that was requested (or the path of a stream update)
    timestamp : int
        device timestamp in nanoseconds (gnmi and notifications)
    metadata : dict
        operation details like merge_policy, destructive, subscription_id
    """
    data: dict = field(default_factory=dict)
    source: Source = Source.UNKNOWN
    path: Path = None
    timestamp: int = None
    metadata: dict = field(default_factory=dict)

    def find(self, path):
        """return the node addressed by path

        Parameters
        ----------
        path : Path | str
            path relative to the root of the tree

        Returns
        -------
        node
            dict, list or scalar

        Raises
        ------
        NodeNotFoundError
            if any element (or key predicate) of the path does not match
        """
        path = Path.parse(path)
        node = self.data
        walked = []
        for elem in path.elems:
            walked.append(str(elem))
            node = _child(node, elem.name)
            if node is _MISSING:
                raise NodeNotFoundError(f'node /{"/".join(walked)} not found')
            if elem.keys:
                node = _select(node, elem.key_dict)
                if node is _MISSING:
                    raise NodeNotFoundError(f'no entry /{"/".join(walked)} found')
        return node

    def exists(self, path) -> bool:
        try:
            self.find(path)
        except NodeNotFoundError:
            return False
        return True


_MISSING = object()


def _child(node, name):
    if isinstance(node, dict):
        return node.get(name, _MISSING)
    if isinstance(node, list) and len(node) == 1 and isinstance(node[0], dict):
        return node[0].get(name, _MISSING)
    return _MISSING

def _select(node, keys:dict):
    entries = node if isinstance(node, list) else [node]
    for entry in entries:
        if isinstance(entry, dict) and all(str(entry.get(k)) == v for k, v in keys.items()):
            return entry
    return _MISSING

def strip_module(name:str) -> str:
    """'ietf-interfaces:interfaces' -> 'interfaces'"""
    return name.split(':', 1)[1] if ':' in name else name

def normalize(value):
    """strip module prefixes from all keys of a json tree"""
    if isinstance(value, dict):
        return {strip_module(k): normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize(v) for v in value]
    return value

def insert(tree:dict, path:Path, value) -> dict:
    """insert value at path into tree

    list entries addressed by key predicates are created (including their
    key leaves) if they do not exist yet. dict values are merged into an
    existing container.

    Parameters
    ----------
    tree : dict
        the tree to modify
    path : Path
        where to put the value
    value : any
        the value

    Returns
    -------
    dict
        the modified tree
    """
    if path.is_root:
        if isinstance(value, dict):
            _merge(tree, value)
        return tree

    node = tree
    last = len(path.elems) - 1
    for idx, elem in enumerate(path.elems):
        if elem.keys:
            entries = node.setdefault(elem.name, [])
            if not isinstance(entries, list):
                entries = [entries]
                node[elem.name] = entries
            entry = _select(entries, elem.key_dict)
            if entry is _MISSING:
                entry = dict(elem.keys)
                entries.append(entry)
            if idx == last:
                if isinstance(value, list):
                    for item in value:
                        if isinstance(item, dict):
                            _merge(entry, item)
                elif isinstance(value, dict):
                    _merge(entry, value)
                return tree
            node = entry
        elif idx == last:
            current = node.get(elem.name)
            if isinstance(current, dict) and isinstance(value, dict):
                _merge(current, value)
            else:
                node[elem.name] = value
        else:
            child = node.get(elem.name)
            if isinstance(child, list) and len(child) == 1 and isinstance(child[0], dict):
                child = child[0]
            elif not isinstance(child, dict):
                child = {}
                node[elem.name] = child
            node = child
    return tree

def _merge(target:dict, source:dict) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value
