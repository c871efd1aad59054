"""
Program model - symbols and control flow graphs consumed by the analyzer

The host compiler owns parsing, binding and lowering. It hands the analyzer
read-only symbols (types, operations, parameters) and, for every operation
with a body, a control flow graph of basic blocks whose operations are
expression trees in evaluation order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol, Set, Tuple
import logging

from .models import Location

logger = logging.getLogger(__name__)


class Accessibility(Enum):
    """Declared accessibility of a type or member"""
    PUBLIC = "public"
    PROTECTED = "protected"
    PROTECTED_INTERNAL = "protected_internal"  # protected OR internal
    PRIVATE_PROTECTED = "private_protected"    # protected AND internal
    INTERNAL = "internal"
    PRIVATE = "private"


class RefKind(Enum):
    NONE = "none"
    REF = "ref"
    IN = "in"
    OUT = "out"


class NullableAnnotation(Enum):
    """Null state the platform's own nullable tracking assigns to a type"""
    OBLIVIOUS = "oblivious"
    ANNOTATED = "annotated"          # T?
    NOT_ANNOTATED = "not_annotated"  # T in a nullable-enabled context


class OperationKind(Enum):
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    STATIC_CONSTRUCTOR = "static_constructor"
    PROPERTY_GET = "property_get"
    PROPERTY_SET = "property_set"
    INDEXER_GET = "indexer_get"
    INDEXER_SET = "indexer_set"
    EVENT_ADD = "event_add"
    EVENT_REMOVE = "event_remove"
    OPERATOR = "operator"


CONSTRUCTOR_NAME = ".ctor"
STATIC_CONSTRUCTOR_NAME = ".cctor"


def to_documentation_name(name: str) -> str:
    """Map metadata names to their documentation-ID spelling"""
    if name == CONSTRUCTOR_NAME:
        return "#ctor"
    if name == STATIC_CONSTRUCTOR_NAME:
        return "#cctor"
    return name


def format_documentation_id(prefix: str, container: str, name: str,
                            parameter_types: Tuple[str, ...]) -> str:
    qualified = f"{container}.{to_documentation_name(name)}" if container else to_documentation_name(name)
    if parameter_types:
        return f"{prefix}:{qualified}({','.join(parameter_types)})"
    return f"{prefix}:{qualified}"


# ============================================================
# SYMBOLS
# ============================================================

@dataclass(frozen=True)
class TypeSymbol:
    """A named type. Nested types point at their containing type."""
    name: str
    namespace: str = ""
    accessibility: Accessibility = Accessibility.PUBLIC
    is_sealed: bool = False
    containing_type: Optional['TypeSymbol'] = None
    base_types: Tuple[str, ...] = ()  # Qualified names, nearest base first
    suppressions: Tuple[str, ...] = ()  # Rule ids suppressed for the whole type

    @property
    def containing_namespace(self) -> str:
        if self.containing_type is not None:
            return self.containing_type.containing_namespace
        return self.namespace

    @property
    def qualified_name(self) -> str:
        if self.containing_type is not None:
            return f"{self.containing_type.qualified_name}.{self.name}"
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    @property
    def documentation_id(self) -> str:
        return f"T:{self.qualified_name}"

    def enclosing_types(self) -> Iterator['TypeSymbol']:
        """This type followed by each containing type, innermost first"""
        current: Optional[TypeSymbol] = self
        while current is not None:
            yield current
            current = current.containing_type

    def __str__(self):
        return self.qualified_name


@dataclass(frozen=True)
class Parameter:
    """A formal parameter; for extension methods the receiver has is_this set"""
    name: str
    type_name: str = "System.Object"
    is_reference_type: bool = True
    ordinal: int = 0
    ref_kind: RefKind = RefKind.NONE
    nullable_annotation: NullableAnnotation = NullableAnnotation.OBLIVIOUS
    attributes: Tuple[str, ...] = ()
    is_this: bool = False

    def __str__(self):
        return f"{self.type_name} {self.name}"


@dataclass(frozen=True)
class MethodRef:
    """Resolved target of a call site"""
    name: str
    containing_type: str = ""  # Qualified name of the declaring type
    parameter_types: Tuple[str, ...] = ()
    parameter_attributes: Tuple[Tuple[str, ...], ...] = ()
    is_constructor: bool = False
    is_static: bool = True
    is_extension_method: bool = False
    reference_parameters: Optional[Tuple[bool, ...]] = None  # None when unknown

    @property
    def documentation_id(self) -> str:
        return format_documentation_id("M", self.containing_type, self.name, self.parameter_types)

    @property
    def documentation_id_without_parameters(self) -> str:
        return format_documentation_id("M", self.containing_type, self.name, ())

    def attributes_of(self, ordinal: int) -> Tuple[str, ...]:
        if 0 <= ordinal < len(self.parameter_attributes):
            return self.parameter_attributes[ordinal]
        return ()

    def accepts_reference(self, ordinal: int) -> bool:
        """Whether the parameter at ordinal can receive a null reference"""
        if self.reference_parameters is None or ordinal >= len(self.reference_parameters):
            return True
        return self.reference_parameters[ordinal]


# ============================================================
# EXPRESSIONS
# ============================================================

class ExpressionKind(Enum):
    """Node kinds the host lowers method bodies to"""
    PARAMETER_REF = "parameter_ref"
    LOCAL_REF = "local_ref"
    LITERAL = "literal"
    NULL_LITERAL = "null_literal"
    MEMBER_ACCESS = "member_access"
    ELEMENT_ACCESS = "element_access"
    INVOCATION = "invocation"
    DELEGATE_INVOKE = "delegate_invoke"
    CONSTRUCTOR_INITIALIZER = "constructor_initializer"
    OBJECT_CREATION = "object_creation"
    CONVERSION = "conversion"
    BINARY = "binary"
    UNARY_NOT = "unary_not"
    IS_NULL = "is_null"
    IS_TYPE = "is_type"
    COALESCE = "coalesce"
    CONDITIONAL = "conditional"
    CONDITIONAL_ACCESS = "conditional_access"
    CONDITIONAL_RECEIVER = "conditional_receiver"
    ASSIGNMENT = "assignment"
    THROW = "throw"
    LAMBDA = "lambda"
    OTHER = "other"


@dataclass
class Expression:
    """
    Expression tree node.

    Field use by kind:
        PARAMETER_REF       parameter
        LOCAL_REF           name
        MEMBER_ACCESS       receiver (None for static members), name
        ELEMENT_ACCESS      receiver, arguments
        INVOCATION          receiver (None for static and extension calls), name, target, arguments
        DELEGATE_INVOKE     receiver, arguments
        CONSTRUCTOR_INITIALIZER / OBJECT_CREATION   target, arguments
        BINARY              operator, children = [left, right]
        CONVERSION, UNARY_NOT, THROW   children = [operand]
        IS_NULL, IS_TYPE    children = [operand], negated
        COALESCE            children = [left, right]
        CONDITIONAL         children = [condition, when_true, when_false]
        CONDITIONAL_ACCESS  receiver, children = [when_not_null]
        ASSIGNMENT          children = [target, value]
    """
    kind: ExpressionKind
    text: str = ""
    children: List['Expression'] = field(default_factory=list)
    parameter: Optional[str] = None
    name: Optional[str] = None
    receiver: Optional['Expression'] = None
    arguments: List['Expression'] = field(default_factory=list)
    target: Optional[MethodRef] = None
    operator: Optional[str] = None
    negated: bool = False
    value: Any = None
    line: int = 0
    column: int = 0

    # ----- builders -----

    @classmethod
    def param(cls, name: str, line: int = 0) -> 'Expression':
        return cls(ExpressionKind.PARAMETER_REF, name, parameter=name, line=line)

    @classmethod
    def local(cls, name: str, line: int = 0) -> 'Expression':
        return cls(ExpressionKind.LOCAL_REF, name, name=name, line=line)

    @classmethod
    def literal(cls, value: Any, line: int = 0) -> 'Expression':
        return cls(ExpressionKind.LITERAL, repr(value), value=value, line=line)

    @classmethod
    def null(cls, line: int = 0) -> 'Expression':
        return cls(ExpressionKind.NULL_LITERAL, "null", line=line)

    @classmethod
    def member(cls, receiver: Optional['Expression'], name: str, line: int = 0) -> 'Expression':
        text = f"{receiver.text}.{name}" if receiver is not None else name
        return cls(ExpressionKind.MEMBER_ACCESS, text, receiver=receiver, name=name, line=line)

    @classmethod
    def element(cls, receiver: 'Expression', indices: List['Expression'], line: int = 0) -> 'Expression':
        text = f"{receiver.text}[{', '.join(i.text for i in indices)}]"
        return cls(ExpressionKind.ELEMENT_ACCESS, text, receiver=receiver, arguments=list(indices), line=line)

    @classmethod
    def call(cls, name: str, arguments: Optional[List['Expression']] = None,
             receiver: Optional['Expression'] = None, target: Optional[MethodRef] = None,
             line: int = 0) -> 'Expression':
        arguments = list(arguments or [])
        prefix = f"{receiver.text}." if receiver is not None else ""
        text = f"{prefix}{name}({', '.join(a.text for a in arguments)})"
        return cls(ExpressionKind.INVOCATION, text, name=name, receiver=receiver,
                   arguments=arguments, target=target, line=line)

    @classmethod
    def invoke_delegate(cls, receiver: 'Expression', arguments: Optional[List['Expression']] = None,
                        line: int = 0) -> 'Expression':
        arguments = list(arguments or [])
        text = f"{receiver.text}({', '.join(a.text for a in arguments)})"
        return cls(ExpressionKind.DELEGATE_INVOKE, text, receiver=receiver, arguments=arguments, line=line)

    @classmethod
    def constructor_initializer(cls, target: Optional[MethodRef], arguments: List['Expression'],
                                line: int = 0) -> 'Expression':
        text = f"this({', '.join(a.text for a in arguments)})"
        return cls(ExpressionKind.CONSTRUCTOR_INITIALIZER, text, target=target,
                   arguments=list(arguments), line=line)

    @classmethod
    def new(cls, type_name: str, arguments: Optional[List['Expression']] = None,
            target: Optional[MethodRef] = None, line: int = 0) -> 'Expression':
        arguments = list(arguments or [])
        text = f"new {type_name}({', '.join(a.text for a in arguments)})"
        return cls(ExpressionKind.OBJECT_CREATION, text, name=type_name, target=target,
                   arguments=arguments, line=line)

    @classmethod
    def convert(cls, operand: 'Expression', type_name: str, line: int = 0) -> 'Expression':
        return cls(ExpressionKind.CONVERSION, f"(({type_name}){operand.text})", children=[operand],
                   name=type_name, line=line)

    @classmethod
    def binary(cls, left: 'Expression', op: str, right: 'Expression', line: int = 0) -> 'Expression':
        return cls(ExpressionKind.BINARY, f"{left.text} {op} {right.text}", children=[left, right],
                   operator=op, line=line)

    @classmethod
    def equals_null(cls, operand: 'Expression', line: int = 0) -> 'Expression':
        return cls.binary(operand, "==", cls.null(line), line)

    @classmethod
    def not_equals_null(cls, operand: 'Expression', line: int = 0) -> 'Expression':
        return cls.binary(operand, "!=", cls.null(line), line)

    @classmethod
    def is_null(cls, operand: 'Expression', negated: bool = False, line: int = 0) -> 'Expression':
        text = f"{operand.text} is {'not ' if negated else ''}null"
        return cls(ExpressionKind.IS_NULL, text, children=[operand], negated=negated, line=line)

    @classmethod
    def is_type(cls, operand: 'Expression', type_name: str, negated: bool = False,
                line: int = 0) -> 'Expression':
        text = f"{operand.text} is {'not ' if negated else ''}{type_name}"
        return cls(ExpressionKind.IS_TYPE, text, children=[operand], name=type_name,
                   negated=negated, line=line)

    @classmethod
    def not_(cls, operand: 'Expression', line: int = 0) -> 'Expression':
        return cls(ExpressionKind.UNARY_NOT, f"!({operand.text})", children=[operand], line=line)

    @classmethod
    def and_(cls, left: 'Expression', right: 'Expression', line: int = 0) -> 'Expression':
        return cls.binary(left, "&&", right, line)

    @classmethod
    def or_(cls, left: 'Expression', right: 'Expression', line: int = 0) -> 'Expression':
        return cls.binary(left, "||", right, line)

    @classmethod
    def coalesce(cls, left: 'Expression', right: 'Expression', line: int = 0) -> 'Expression':
        return cls(ExpressionKind.COALESCE, f"{left.text} ?? {right.text}", children=[left, right], line=line)

    @classmethod
    def conditional(cls, condition: 'Expression', when_true: 'Expression',
                    when_false: 'Expression', line: int = 0) -> 'Expression':
        text = f"{condition.text} ? {when_true.text} : {when_false.text}"
        return cls(ExpressionKind.CONDITIONAL, text, children=[condition, when_true, when_false], line=line)

    @classmethod
    def conditional_access(cls, receiver: 'Expression', when_not_null: 'Expression',
                           line: int = 0) -> 'Expression':
        return cls(ExpressionKind.CONDITIONAL_ACCESS, f"{receiver.text}?{when_not_null.text}",
                   receiver=receiver, children=[when_not_null], line=line)

    @classmethod
    def conditional_receiver(cls) -> 'Expression':
        return cls(ExpressionKind.CONDITIONAL_RECEIVER, "")

    @classmethod
    def assign(cls, target: 'Expression', value: 'Expression', line: int = 0) -> 'Expression':
        return cls(ExpressionKind.ASSIGNMENT, f"{target.text} = {value.text}", children=[target, value], line=line)

    @classmethod
    def throw(cls, operand: Optional['Expression'] = None, line: int = 0) -> 'Expression':
        children = [operand] if operand is not None else []
        text = f"throw {operand.text}" if operand is not None else "throw"
        return cls(ExpressionKind.THROW, text, children=children, line=line)

    @classmethod
    def lambda_(cls, body: List['Expression'], line: int = 0) -> 'Expression':
        return cls(ExpressionKind.LAMBDA, "() => { ... }", children=list(body), line=line)

    # ----- queries -----

    @property
    def operand(self) -> Optional['Expression']:
        return self.children[0] if self.children else None

    def strip_conversions(self) -> 'Expression':
        """Look through reference conversions: ((IFoo)p) still denotes p"""
        expr = self
        while expr.kind == ExpressionKind.CONVERSION and expr.children:
            expr = expr.children[0]
        return expr

    def referenced_parameter(self) -> Optional[str]:
        """Name of the parameter this expression denotes directly, if any"""
        expr = self.strip_conversions()
        if expr.kind == ExpressionKind.PARAMETER_REF:
            return expr.parameter
        return None

    def location(self, file_path: str) -> Location:
        return Location(file_path=file_path, line_number=max(self.line, 1),
                        column=self.column or None, snippet=self.text or None)

    def __str__(self):
        return self.text or self.kind.value


# ============================================================
# CONTROL FLOW GRAPH
# ============================================================

class BranchKind(Enum):
    FALL_THROUGH = "fall_through"
    CONDITIONAL = "conditional"
    RETURN = "return"
    THROW = "throw"
    UNRESOLVED = "unresolved"  # Successor edges the host could not determine precisely


@dataclass
class BasicBlock:
    """A basic block; operations run in order, then the branch is taken"""
    id: int
    operations: List[Expression] = field(default_factory=list)
    branch: BranchKind = BranchKind.FALL_THROUGH
    successors: List[int] = field(default_factory=list)  # FALL_THROUGH / RETURN / UNRESOLVED targets
    condition: Optional[Expression] = None  # CONDITIONAL only
    when_true: Optional[int] = None
    when_false: Optional[int] = None

    def successor_ids(self) -> List[int]:
        if self.branch == BranchKind.THROW:
            return []
        if self.branch == BranchKind.CONDITIONAL:
            return [b for b in (self.when_true, self.when_false) if b is not None]
        return list(self.successors)


@dataclass
class ControlFlowGraph:
    """Control flow graph of one operation body"""
    entry: int
    blocks: Dict[int, BasicBlock] = field(default_factory=dict)

    def block(self, block_id: int) -> BasicBlock:
        return self.blocks[block_id]

    def successors(self, block_id: int) -> List[int]:
        """
        Successor ids that exist in the graph; dangling edges are dropped.

        An UNRESOLVED block that names no successor falls through to the
        next block by id.
        """
        block = self.blocks[block_id]
        successor_ids = block.successor_ids()
        if block.branch == BranchKind.UNRESOLVED and not successor_ids:
            later = [other for other in self.blocks if other > block_id]
            successor_ids = [min(later)] if later else []

        result = []
        for succ in successor_ids:
            if succ in self.blocks:
                result.append(succ)
            else:
                logger.debug(f"Block {block_id} has a dangling edge to {succ}")
        return result

    def predecessors(self) -> Dict[int, List[int]]:
        preds: Dict[int, List[int]] = {block_id: [] for block_id in self.blocks}
        for block_id in self.blocks:
            for succ in self.successors(block_id):
                if block_id not in preds[succ]:
                    preds[succ].append(block_id)
        return preds

    def reverse_postorder(self) -> List[int]:
        """Reachable blocks in reverse postorder from the entry block"""
        if self.entry not in self.blocks:
            return []

        visited: Set[int] = {self.entry}
        postorder: List[int] = []
        stack: List[Tuple[int, Iterator[int]]] = [(self.entry, iter(self.successors(self.entry)))]

        while stack:
            block_id, children = stack[-1]
            advanced = False
            for child in children:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(self.successors(child))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                postorder.append(block_id)

        postorder.reverse()
        return postorder

    def back_edges(self) -> Set[Tuple[int, int]]:
        """Edges whose target does not come after their source in reverse postorder"""
        order = {block_id: i for i, block_id in enumerate(self.reverse_postorder())}
        edges = set()
        for block_id, index in order.items():
            for succ in self.successors(block_id):
                if succ in order and order[succ] <= index:
                    edges.add((block_id, succ))
        return edges


# ============================================================
# OPERATIONS
# ============================================================

@dataclass
class Operation:
    """A method, constructor or accessor under analysis"""
    name: str
    containing_type: TypeSymbol
    kind: OperationKind = OperationKind.METHOD
    accessibility: Accessibility = Accessibility.PUBLIC
    parameters: List[Parameter] = field(default_factory=list)
    cfg: Optional[ControlFlowGraph] = None  # None for abstract / extern members
    is_extension_method: bool = False
    is_static: bool = False
    file_path: str = ""
    line_number: int = 1
    suppressions: Tuple[str, ...] = ()

    @property
    def documentation_id(self) -> str:
        return format_documentation_id(
            "M", self.containing_type.qualified_name, self.name,
            tuple(p.type_name for p in self.parameters)
        )

    @property
    def display_name(self) -> str:
        name = self.containing_type.name if self.name in (CONSTRUCTOR_NAME, STATIC_CONSTRUCTOR_NAME) else self.name
        params = ", ".join(str(p) for p in self.parameters)
        return f"{self.containing_type.name}.{name}({params})"

    @property
    def location(self) -> Location:
        return Location(file_path=self.file_path, line_number=max(self.line_number, 1))

    def parameter(self, name: str) -> Optional[Parameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def __str__(self):
        return self.display_name


# ============================================================
# PROVIDER INTERFACE
# ============================================================

class SymbolProvider(Protocol):
    """Read-only view of a compiled unit, supplied by the host"""

    name: str

    def list_operations(self) -> List[Operation]:
        ...

    def get_parameters(self, operation: Operation) -> List[Parameter]:
        ...

    def get_control_flow_graph(self, operation: Operation) -> Optional[ControlFlowGraph]:
        ...

    def resolve_call_target(self, expression: Expression) -> Optional[MethodRef]:
        ...


@dataclass
class Compilation:
    """In-memory compiled unit implementing SymbolProvider"""
    name: str
    types: List[TypeSymbol] = field(default_factory=list)
    operations: List[Operation] = field(default_factory=list)

    def list_operations(self) -> List[Operation]:
        return list(self.operations)

    def get_parameters(self, operation: Operation) -> List[Parameter]:
        return list(operation.parameters)

    def get_control_flow_graph(self, operation: Operation) -> Optional[ControlFlowGraph]:
        return operation.cfg

    def resolve_call_target(self, expression: Expression) -> Optional[MethodRef]:
        return expression.target
