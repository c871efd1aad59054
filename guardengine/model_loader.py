"""
Model loader - parses YAML/JSON program model documents into a Compilation

The document is what a host front end exports for one compiled unit:

    name: Samples
    types:
      - name: Person
        namespace: Samples
        accessibility: public
    operations:
      - name: .ctor
        type: Samples.Person
        kind: constructor
        parameters:
          - {name: other, type: Samples.Person}
        body:
          entry: 0
          blocks:
            - id: 0
              operations:
                - kind: constructor_initializer
                  arguments:
                    - {kind: member_access, receiver: {param: other}, name: Name}
              branch: return

``body`` may also be a plain list of expressions, shorthand for a single
block that returns. Operations without a body are abstract or extern.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar
from enum import Enum
import logging

from .errors import ModelLoadError
from .program import (
    Accessibility, BasicBlock, BranchKind, Compilation, ControlFlowGraph,
    Expression, ExpressionKind, MethodRef, NullableAnnotation, Operation,
    OperationKind, Parameter, RefKind, TypeSymbol,
)

logger = logging.getLogger(__name__)

E = TypeVar('E', bound=Enum)


def _enum(enum_type: Type[E], value: Any, default: E, field_name: str) -> E:
    if value is None:
        return default
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ModelLoadError(f"{field_name}: '{value}' is not one of {allowed}")


def _str_tuple(value: Any) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


class ModelLoader:
    """Builds Compilation objects from program model documents"""

    def __init__(self):
        self._types: Dict[str, TypeSymbol] = {}
        self._raw_types: Dict[str, Mapping[str, Any]] = {}

    def load(self, filepath: Path) -> Compilation:
        """Load a compilation from a YAML or JSON file"""
        filepath = Path(filepath)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ModelLoadError(f"cannot read model: {e}", str(filepath))
        except yaml.YAMLError as e:
            raise ModelLoadError(f"invalid YAML/JSON: {e}", str(filepath))

        if not isinstance(data, Mapping):
            raise ModelLoadError("model document must be a mapping", str(filepath))

        try:
            compilation = self.from_dict(data, default_name=filepath.stem)
        except ModelLoadError as e:
            if not e.source:
                raise ModelLoadError(e.message, str(filepath)) from e
            raise
        except (TypeError, ValueError) as e:
            raise ModelLoadError(f"malformed model: {e}", str(filepath)) from e
        logger.info(f"Loaded {len(compilation.operations)} operations from {filepath.name}")
        return compilation

    def from_dict(self, data: Mapping[str, Any], default_name: str = "unit") -> Compilation:
        self._types = {}
        self._raw_types = {}

        for raw_type in data.get('types') or []:
            qualified = self._raw_qualified_name(raw_type)
            if qualified in self._raw_types:
                raise ModelLoadError(f"duplicate type {qualified}")
            self._raw_types[qualified] = raw_type

        types = [self._type(name) for name in self._raw_types]

        operations = []
        for index, raw_operation in enumerate(data.get('operations') or []):
            operations.append(self._parse_operation(raw_operation, index))

        return Compilation(name=str(data.get('name') or default_name), types=types, operations=operations)

    # ============================================================
    # TYPES
    # ============================================================

    def _raw_qualified_name(self, raw: Mapping[str, Any]) -> str:
        if not raw.get('name'):
            raise ModelLoadError("type without a name")
        container = raw.get('containing_type')
        if container:
            return f"{container}.{raw['name']}"
        namespace = raw.get('namespace') or ""
        return f"{namespace}.{raw['name']}" if namespace else str(raw['name'])

    def _type(self, qualified_name: str) -> TypeSymbol:
        if qualified_name in self._types:
            return self._types[qualified_name]
        if qualified_name not in self._raw_types:
            raise ModelLoadError(f"unknown type {qualified_name}")

        raw = self._raw_types[qualified_name]
        container = self._type(raw['containing_type']) if raw.get('containing_type') else None
        type_symbol = TypeSymbol(
            name=str(raw['name']),
            namespace="" if container else str(raw.get('namespace') or ""),
            accessibility=_enum(Accessibility, raw.get('accessibility'), Accessibility.PUBLIC,
                                f"type {qualified_name} accessibility"),
            is_sealed=bool(raw.get('sealed', False)),
            containing_type=container,
            base_types=_str_tuple(raw.get('base_types')),
            suppressions=_str_tuple(raw.get('suppressions')),
        )
        self._types[qualified_name] = type_symbol
        return type_symbol

    # ============================================================
    # OPERATIONS
    # ============================================================

    def _parse_operation(self, raw: Mapping[str, Any], index: int) -> Operation:
        name = raw.get('name')
        if not name:
            raise ModelLoadError(f"operation #{index} has no name")
        if not raw.get('type'):
            raise ModelLoadError(f"operation {name} has no containing type")

        containing_type = self._type(str(raw['type']))
        label = f"{containing_type.qualified_name}.{name}"
        parameters = [
            self._parse_parameter(raw_param, ordinal, label)
            for ordinal, raw_param in enumerate(raw.get('parameters') or [])
        ]

        return Operation(
            name=str(name),
            containing_type=containing_type,
            kind=_enum(OperationKind, raw.get('kind'), OperationKind.METHOD, f"{label} kind"),
            accessibility=_enum(Accessibility, raw.get('accessibility'), Accessibility.PUBLIC,
                                f"{label} accessibility"),
            parameters=parameters,
            cfg=self._parse_body(raw.get('body'), label),
            is_extension_method=bool(raw.get('extension', False)),
            is_static=bool(raw.get('static', False)),
            file_path=str(raw.get('file') or ""),
            line_number=int(raw.get('line') or 1),
            suppressions=_str_tuple(raw.get('suppressions')),
        )

    def _parse_parameter(self, raw: Mapping[str, Any], ordinal: int, label: str) -> Parameter:
        if not raw.get('name'):
            raise ModelLoadError(f"{label}: parameter #{ordinal} has no name")
        return Parameter(
            name=str(raw['name']),
            type_name=str(raw.get('type') or "System.Object"),
            is_reference_type=bool(raw.get('reference', True)),
            ordinal=int(raw.get('ordinal', ordinal)),
            ref_kind=_enum(RefKind, raw.get('ref_kind'), RefKind.NONE, f"{label} ref_kind"),
            nullable_annotation=_enum(NullableAnnotation, raw.get('nullable'), NullableAnnotation.OBLIVIOUS,
                                      f"{label} nullable"),
            attributes=_str_tuple(raw.get('attributes')),
            is_this=bool(raw.get('this', False)),
        )

    def _parse_body(self, raw: Any, label: str) -> Optional[ControlFlowGraph]:
        if raw is None:
            return None

        if isinstance(raw, list):
            block = BasicBlock(id=0, operations=[self.parse_expression(e, label) for e in raw],
                               branch=BranchKind.RETURN)
            return ControlFlowGraph(entry=0, blocks={0: block})

        if not isinstance(raw, Mapping):
            raise ModelLoadError(f"{label}: body must be a list or a mapping")

        blocks: Dict[int, BasicBlock] = {}
        for raw_block in raw.get('blocks') or []:
            block = self._parse_block(raw_block, label)
            if block.id in blocks:
                raise ModelLoadError(f"{label}: duplicate block id {block.id}")
            blocks[block.id] = block

        entry = int(raw.get('entry', min(blocks) if blocks else 0))
        return ControlFlowGraph(entry=entry, blocks=blocks)

    def _parse_block(self, raw: Mapping[str, Any], label: str) -> BasicBlock:
        if 'id' not in raw:
            raise ModelLoadError(f"{label}: block without id")
        block_id = int(raw['id'])
        branch = _enum(BranchKind, raw.get('branch'), BranchKind.FALL_THROUGH,
                       f"{label} block {block_id} branch")
        successors = raw.get('successors')
        if successors is None and 'next' in raw:
            successors = [raw['next']]

        block = BasicBlock(
            id=block_id,
            operations=[self.parse_expression(e, label) for e in raw.get('operations') or []],
            branch=branch,
            successors=[int(s) for s in successors or []],
        )
        if branch == BranchKind.CONDITIONAL:
            if 'condition' not in raw:
                raise ModelLoadError(f"{label}: conditional block {block_id} has no condition")
            block.condition = self.parse_expression(raw['condition'], label)
            block.when_true = int(raw['when_true']) if raw.get('when_true') is not None else None
            block.when_false = int(raw['when_false']) if raw.get('when_false') is not None else None
        return block

    # ============================================================
    # EXPRESSIONS
    # ============================================================

    def _parse_method_ref(self, raw: Any, label: str) -> Optional[MethodRef]:
        if raw is None:
            return None
        if not isinstance(raw, Mapping) or not raw.get('name'):
            raise ModelLoadError(f"{label}: call target must be a mapping with a name")
        references = raw.get('reference_parameters')
        return MethodRef(
            name=str(raw['name']),
            containing_type=str(raw.get('type') or ""),
            parameter_types=_str_tuple(raw.get('parameter_types')),
            parameter_attributes=tuple(_str_tuple(a) for a in raw.get('parameter_attributes') or []),
            is_constructor=bool(raw.get('constructor', False)),
            is_static=bool(raw.get('static', True)),
            is_extension_method=bool(raw.get('extension', False)),
            reference_parameters=tuple(bool(r) for r in references) if references is not None else None,
        )

    def _expressions(self, raw: Any, label: str) -> List[Expression]:
        return [self.parse_expression(e, label) for e in raw or []]

    def parse_expression(self, raw: Any, label: str = "") -> Expression:
        """Build an Expression tree from its document form"""
        if not isinstance(raw, Mapping):
            raise ModelLoadError(f"{label}: expression must be a mapping, got {raw!r}")

        line = int(raw.get('line') or 0)
        if 'param' in raw:
            expr = Expression.param(str(raw['param']), line)
        elif 'local' in raw:
            expr = Expression.local(str(raw['local']), line)
        else:
            if 'kind' not in raw:
                raise ModelLoadError(f"{label}: expression without kind: {dict(raw)!r}")
            kind = _enum(ExpressionKind, raw['kind'], ExpressionKind.OTHER, f"{label} expression kind")
            expr = self._build(kind, raw, label, line)

        expr.column = int(raw.get('column') or 0)
        return expr

    def _child(self, raw: Mapping[str, Any], key: str, label: str) -> Expression:
        if raw.get(key) is None:
            raise ModelLoadError(f"{label}: {raw.get('kind')} expression needs '{key}'")
        return self.parse_expression(raw[key], label)

    def _optional_child(self, raw: Mapping[str, Any], key: str, label: str) -> Optional[Expression]:
        return self.parse_expression(raw[key], label) if raw.get(key) is not None else None

    def _build(self, kind: ExpressionKind, raw: Mapping[str, Any], label: str, line: int) -> Expression:
        K = ExpressionKind
        name = raw.get('name')

        if kind == K.PARAMETER_REF:
            return Expression.param(str(name), line)
        if kind == K.LOCAL_REF:
            return Expression.local(str(name), line)
        if kind == K.LITERAL:
            return Expression.literal(raw.get('value'), line)
        if kind == K.NULL_LITERAL:
            return Expression.null(line)
        if kind == K.MEMBER_ACCESS:
            return Expression.member(self._optional_child(raw, 'receiver', label), str(name), line)
        if kind == K.ELEMENT_ACCESS:
            return Expression.element(self._child(raw, 'receiver', label),
                                      self._expressions(raw.get('arguments'), label), line)
        if kind == K.INVOCATION:
            return Expression.call(str(name), self._expressions(raw.get('arguments'), label),
                                   receiver=self._optional_child(raw, 'receiver', label),
                                   target=self._parse_method_ref(raw.get('target'), label), line=line)
        if kind == K.DELEGATE_INVOKE:
            return Expression.invoke_delegate(self._child(raw, 'receiver', label),
                                              self._expressions(raw.get('arguments'), label), line)
        if kind == K.CONSTRUCTOR_INITIALIZER:
            return Expression.constructor_initializer(self._parse_method_ref(raw.get('target'), label),
                                                      self._expressions(raw.get('arguments'), label), line)
        if kind == K.OBJECT_CREATION:
            return Expression.new(str(raw.get('type') or name or "object"),
                                  self._expressions(raw.get('arguments'), label),
                                  target=self._parse_method_ref(raw.get('target'), label), line=line)
        if kind == K.CONVERSION:
            return Expression.convert(self._child(raw, 'operand', label), str(raw.get('type') or "object"), line)
        if kind == K.BINARY:
            if not raw.get('operator'):
                raise ModelLoadError(f"{label}: binary expression needs 'operator'")
            return Expression.binary(self._child(raw, 'left', label), str(raw['operator']),
                                     self._child(raw, 'right', label), line)
        if kind == K.UNARY_NOT:
            return Expression.not_(self._child(raw, 'operand', label), line)
        if kind == K.IS_NULL:
            return Expression.is_null(self._child(raw, 'operand', label), bool(raw.get('negated', False)), line)
        if kind == K.IS_TYPE:
            return Expression.is_type(self._child(raw, 'operand', label), str(raw.get('type') or "object"),
                                      bool(raw.get('negated', False)), line)
        if kind == K.COALESCE:
            return Expression.coalesce(self._child(raw, 'left', label), self._child(raw, 'right', label), line)
        if kind == K.CONDITIONAL:
            return Expression.conditional(self._child(raw, 'condition', label),
                                          self._child(raw, 'when_true', label),
                                          self._child(raw, 'when_false', label), line)
        if kind == K.CONDITIONAL_ACCESS:
            return Expression.conditional_access(self._child(raw, 'receiver', label),
                                                 self._child(raw, 'when_not_null', label), line)
        if kind == K.CONDITIONAL_RECEIVER:
            return Expression.conditional_receiver()
        if kind == K.ASSIGNMENT:
            return Expression.assign(self._child(raw, 'target', label), self._child(raw, 'value', label), line)
        if kind == K.THROW:
            return Expression.throw(self._optional_child(raw, 'operand', label), line)
        if kind == K.LAMBDA:
            return Expression.lambda_(self._expressions(raw.get('body'), label), line)

        return Expression(K.OTHER, str(raw.get('text') or ""),
                          children=self._expressions(raw.get('children'), label), line=line)


def load_compilation(filepath) -> Compilation:
    """Convenience wrapper around ModelLoader.load"""
    return ModelLoader().load(Path(filepath))
