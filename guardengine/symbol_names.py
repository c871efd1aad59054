"""
Symbol name lists - parsing and matching of configured symbol names

Options such as ``null_check_validation_methods`` and
``excluded_symbol_names`` hold pipe-separated entries. Each entry is either
a bare identifier (``Validate``, ``Validate*``, ``.ctor``) or a
documentation-ID style name with a kind prefix
(``M:Company.Guard.NotNull(System.Object)``, ``T:Company.Widget``,
``N:Company.Legacy``). Dotted entries without a prefix match a symbol of any
kind with that fully qualified name.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, Union
import re
import logging

from .errors import ConfigurationParseError
from .program import (
    CONSTRUCTOR_NAME, MethodRef, Operation, TypeSymbol,
)

logger = logging.getLogger(__name__)


SYMBOL_KINDS = {'M', 'T', 'N', 'P', 'E', 'F'}

_IDENTIFIER = r'[A-Za-z_][A-Za-z0-9_`]*'
_BARE_NAME_RE = re.compile(rf'^(?:{_IDENTIFIER}\*?|\.ctor|\.cctor)$')
_QUALIFIED_NAME_RE = re.compile(rf'^(?:{_IDENTIFIER}|#ctor|#cctor)(?:\.(?:{_IDENTIFIER}|#ctor|#cctor))*$')
_PARAMETER_LIST_RE = re.compile(r'^\(([A-Za-z0-9_.`{},\[\]@*:]*)\)$')


@dataclass(frozen=True)
class SymbolIdentity:
    """The names a resolved symbol can be matched by"""
    kind: str  # 'M', 'T' or 'N'
    name: str  # Simple metadata name, '.ctor' for constructors
    documentation_id: str

    @property
    def qualified_name(self) -> str:
        """Documentation ID without kind prefix and parameter list"""
        body = self.documentation_id.split(':', 1)[1]
        return body.split('(', 1)[0]


@dataclass(frozen=True)
class ByName:
    """Matches any symbol with this simple name, in any container"""
    name: str
    prefix: bool = False  # Entry ended with '*'

    def matches(self, identity: SymbolIdentity) -> bool:
        if self.prefix:
            return identity.name.startswith(self.name)
        return identity.name == self.name

    def __str__(self):
        return f"{self.name}*" if self.prefix else self.name


@dataclass(frozen=True)
class ByQualifiedSignature:
    """Matches by documentation ID; kind None matches any symbol kind"""
    kind: Optional[str]
    signature: str  # Without kind prefix
    has_parameter_list: bool = False

    def matches(self, identity: SymbolIdentity) -> bool:
        if self.kind is not None and identity.kind != self.kind:
            return False
        if self.has_parameter_list:
            return identity.documentation_id == f"{identity.kind}:{self.signature}"
        return identity.qualified_name == self.signature

    def __str__(self):
        return f"{self.kind}:{self.signature}" if self.kind else self.signature


SymbolSpec = Union[ByName, ByQualifiedSignature]


def _normalize_signature(signature: str) -> str:
    # '.ctor' is accepted in place of the documentation spelling '#ctor'
    signature = signature.replace('..cctor', '.#cctor').replace('..ctor', '.#ctor')
    return signature


def parse_symbol_name(entry: str, option_name: str = "") -> SymbolSpec:
    """
    Parse one configured entry.

    Raises:
        ConfigurationParseError: the entry is not a valid name or signature
    """
    text = entry.strip()
    if not text:
        raise ConfigurationParseError("empty symbol name", option_name)

    if _BARE_NAME_RE.match(text):
        if text.endswith('*'):
            return ByName(text[:-1], prefix=True)
        return ByName(text)

    kind: Optional[str] = None
    body = text
    if len(text) > 1 and text[1] == ':':
        kind = text[0]
        body = text[2:]
        if kind not in SYMBOL_KINDS:
            raise ConfigurationParseError(f"unknown symbol kind prefix '{kind}:' in '{text}'", option_name)

    body = _normalize_signature(body)
    name_part, paren, rest = body.partition('(')
    if not _QUALIFIED_NAME_RE.match(name_part):
        raise ConfigurationParseError(f"malformed symbol name '{text}'", option_name)

    if paren:
        if kind not in (None, 'M', 'P'):
            raise ConfigurationParseError(f"parameter list not allowed for '{kind}:' in '{text}'", option_name)
        if not _PARAMETER_LIST_RE.match(paren + rest) or rest.count('(') or rest.count(')') != 1:
            raise ConfigurationParseError(f"malformed parameter list in '{text}'", option_name)
        return ByQualifiedSignature(kind or 'M', body, has_parameter_list=True)

    if kind is None and '.' not in name_part:
        raise ConfigurationParseError(f"malformed symbol name '{text}'", option_name)

    return ByQualifiedSignature(kind, body)


def parse_symbol_names(text: Optional[str],
                       option_name: str = "") -> Tuple[List[SymbolSpec], List[ConfigurationParseError]]:
    """
    Parse a pipe-separated list. Malformed entries are skipped and returned
    as errors alongside the valid specs.
    """
    specs: List[SymbolSpec] = []
    errors: List[ConfigurationParseError] = []
    if not text:
        return specs, errors

    for entry in text.split('|'):
        if not entry.strip():
            continue
        try:
            specs.append(parse_symbol_name(entry, option_name))
        except ConfigurationParseError as e:
            logger.warning(f"Skipping configuration entry: {e}")
            errors.append(e)

    return specs, errors


# ============================================================
# IDENTITIES OF RESOLVED SYMBOLS
# ============================================================

def operation_identity(operation: Operation) -> SymbolIdentity:
    return SymbolIdentity('M', operation.name, operation.documentation_id)


def method_ref_identity(method: MethodRef) -> SymbolIdentity:
    name = CONSTRUCTOR_NAME if method.name == '#ctor' else method.name
    return SymbolIdentity('M', name, method.documentation_id)


def type_identity(type_symbol: TypeSymbol) -> SymbolIdentity:
    return SymbolIdentity('T', type_symbol.name, type_symbol.documentation_id)


def qualified_type_identity(qualified_name: str) -> SymbolIdentity:
    """Identity of a type known only by its qualified name (e.g. a base type)"""
    return SymbolIdentity('T', qualified_name.rsplit('.', 1)[-1], f"T:{qualified_name}")


def namespace_identities(namespace: str) -> Iterator[SymbolIdentity]:
    """Identities of a namespace and each of its enclosing namespaces"""
    if not namespace:
        return
    segments = namespace.split('.')
    for i in range(len(segments), 0, -1):
        qualified = '.'.join(segments[:i])
        yield SymbolIdentity('N', segments[i - 1], f"N:{qualified}")


class SymbolNameSet:
    """Immutable set of parsed specs with matching helpers"""

    def __init__(self, specs: Iterable[SymbolSpec] = ()):
        self._specs: Tuple[SymbolSpec, ...] = tuple(specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self) -> Iterator[SymbolSpec]:
        return iter(self._specs)

    def __bool__(self) -> bool:
        return bool(self._specs)

    def matches(self, identity: SymbolIdentity) -> bool:
        return any(spec.matches(identity) for spec in self._specs)

    def matches_any(self, identities: Iterable[SymbolIdentity]) -> bool:
        return any(self.matches(identity) for identity in identities)

    @classmethod
    def parse(cls, text: Optional[str],
              option_name: str = "") -> Tuple['SymbolNameSet', List[ConfigurationParseError]]:
        specs, errors = parse_symbol_names(text, option_name)
        return cls(specs), errors


__all__ = [
    'ByName',
    'ByQualifiedSignature',
    'SymbolSpec',
    'SymbolIdentity',
    'SymbolNameSet',
    'parse_symbol_name',
    'parse_symbol_names',
    'operation_identity',
    'method_ref_identity',
    'type_identity',
    'qualified_type_identity',
    'namespace_identities',
]
