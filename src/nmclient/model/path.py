"""abstract addressing of a data tree location

A Path is an ordered sequence of PathElem. Each element has a name, an
optional YANG module (``ietf-interfaces:interfaces``) and optional key
predicates (``interface[name=eth0]``). The codecs convert a Path into an
XML subtree filter, a RESTCONF URI or a gNMI path.

Examples
--------
>>> path = Path.parse("/interfaces/interface[name=eth0]/config")
>>> path.elems[1].keys
(('name', 'eth0'),)
>>> str(path)
'/interfaces/interface[name=eth0]/config'
"""
from dataclasses import dataclass


class PathElem:
    """one element of a Path

    keys keep the order they were written in (RESTCONF needs the YANG key
    order) but two elements with the same keys in another order are equal.
    """
    __slots__ = ('name', 'keys', 'module')

    def __init__(self, name:str, keys=(), module:str=None):
        if not name:
            raise ValueError('path element needs a name')
        if isinstance(keys, dict):
            keys = keys.items()
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'keys', tuple((str(k), str(v)) for k, v in keys))
        object.__setattr__(self, 'module', module)

    def __setattr__(self, name, value):
        raise AttributeError('PathElem is immutable')

    def __eq__(self, other):
        if not isinstance(other, PathElem):
            return NotImplemented
        return (self.name == other.name and self.module == other.module
                and dict(self.keys) == dict(other.keys))

    def __hash__(self):
        return hash((self.name, self.module, frozenset(self.keys)))

    def __repr__(self):
        return f'PathElem({self.name!r}, keys={self.keys!r}, module={self.module!r})'

    def __str__(self):
        name = f'{self.module}:{self.name}' if self.module else self.name
        predicates = ''.join(f'[{k}={_quote(v)}]' for k, v in self.keys)
        return f'{name}{predicates}'

    @property
    def key_dict(self) -> dict:
        return dict(self.keys)


@dataclass(frozen=True)
class Path:
    elems: tuple = ()
    origin: str = None

    def __post_init__(self):
        object.__setattr__(self, 'elems', tuple(self.elems))

    @classmethod
    def parse(cls, text:str) -> "Path":
        """parse the textual form of a path

        Parameters
        ----------
        text : str
            eg. /interfaces/interface[name=eth0] or openconfig:/interfaces

        Returns
        -------
        Path
            the parsed path
        """
        if isinstance(text, Path):
            return text
        if text is None:
            raise ValueError('path must not be None')
        text = text.strip()
        origin = None
        head, sep, tail = text.partition(':/')
        if sep and '/' not in head and '[' not in head and head:
            origin = head
            text = '/' + tail
        segments = [s for s in _split(text) if s]
        return cls(tuple(_parse_elem(s) for s in segments), origin=origin)

    def __str__(self):
        text = '/' + '/'.join(str(e) for e in self.elems)
        return f'{self.origin}:{text}' if self.origin else text

    def __len__(self):
        return len(self.elems)

    def __iter__(self):
        return iter(self.elems)

    def __truediv__(self, other) -> "Path":
        if isinstance(other, PathElem):
            return Path(self.elems + (other,), origin=self.origin)
        child = Path.parse(other) if not isinstance(other, Path) else other
        return Path(self.elems + child.elems, origin=self.origin)

    @property
    def parent(self) -> "Path":
        return Path(self.elems[:-1], origin=self.origin)

    @property
    def last(self) -> PathElem:
        return self.elems[-1] if self.elems else None

    @property
    def is_root(self) -> bool:
        return not self.elems


def _quote(value:str) -> str:
    if any(c in value for c in '[]=/ '):
        return "'%s'" % value.replace("'", "\\'")
    return value

def _split(text:str):
    """split on '/' unless we are inside a key predicate"""
    depth = 0
    quote = None
    current = []
    for char in text:
        if quote:
            if char == quote and current[-1] != '\\':
                quote = None
            current.append(char)
            continue
        if char in ('"', "'") and depth:
            quote = char
        elif char == '[':
            depth += 1
        elif char == ']':
            depth -= 1
            if depth < 0:
                raise ValueError(f'unbalanced "]" in path {text}')
        elif char == '/' and depth == 0:
            yield ''.join(current)
            current = []
            continue
        current.append(char)
    if depth or quote:
        raise ValueError(f'unterminated key predicate in path {text}')
    yield ''.join(current)

def _parse_elem(segment:str) -> PathElem:
    bracket = segment.find('[')
    name = segment if bracket < 0 else segment[:bracket]
    module = None
    if ':' in name:
        module, name = name.split(':', 1)

    keys = []
    rest = '' if bracket < 0 else segment[bracket:]
    while rest:
        if not rest.startswith('['):
            raise ValueError(f'invalid key predicate {rest} in {segment}')
        end = _predicate_end(rest)
        predicate = rest[1:end]
        rest = rest[end + 1:]
        key, sep, value = predicate.partition('=')
        if not sep or not key:
            raise ValueError(f'invalid key predicate [{predicate}] in {segment}')
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1].replace("\\" + value[0], value[0])
        keys.append((key.strip(), value))
    return PathElem(name, keys=keys, module=module)

def _predicate_end(text:str) -> int:
    quote = None
    for idx, char in enumerate(text):
        if quote:
            if char == quote and text[idx - 1] != '\\':
                quote = None
        elif char in ('"', "'"):
            quote = char
        elif char == ']':
            return idx
    raise ValueError(f'unterminated key predicate {text}')
