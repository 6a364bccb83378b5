"""A small relational algebra evaluator over in-memory relations.

Expressions are immutable trees of operator nodes. Build them directly::

    Selection(Terminal([(1, "a"), (2, "b")]), lambda r: r[0] > 1).eval()

or through the fluent ``ExpressionBuilder``::

    (ExpressionBuilder.from_rows([(1, "a"), (2, "b"), (3, "c")])
        .select(lambda x: x[0] > 1)
        .project(lambda x: x[1])
        .eval())

Every ``eval()`` walks the whole tree again and returns a fresh list. Rows are
opaque values compared with ``==``; duplicates are kept (bag semantics).
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union as TypingUnion

logger = logging.getLogger(__name__)

__all__ = [
    "RelAlgError",
    "ExpressionError",
    "SchemaError",
    "Expression",
    "Terminal",
    "Selection",
    "Projection",
    "Join",
    "CartesianProduct",
    "Union",
    "Intersection",
    "Difference",
    "ExpressionBuilder",
    "pretty",
    "to_csv",
    "STRATEGIES",
]

Row = Any
Predicate = Callable[[Row], bool]
Mapper = Callable[[Row], Row]
JoinPredicate = Callable[[Row, Row], bool]
JoinMapper = Callable[[Row, Row], Row]

STRATEGIES = ("hash", "scan")


class RelAlgError(Exception):
    """Base error for the relational algebra evaluator."""

class ExpressionError(RelAlgError):
    """An operator node was built with an unusable argument."""

class SchemaError(RelAlgError):
    pass


def _assert(cond: bool, msg: str, err=RelAlgError):
    if not cond:
        raise err(msg)

def _fn_name(fn: Callable) -> str:
    name = getattr(fn, "__name__", None)
    if name is None:
        return repr(fn)
    return "λ" if name == "<lambda>" else name

# Fail fast on callables that can never accept the rows they will be given.
# Signatures that cannot be inspected (some builtins, C types) are trusted.
def _check_callable(fn: Any, nargs: int, role: str, node: str):
    _assert(callable(fn), f"{node}: {role} must be callable, got {type(fn).__name__}", ExpressionError)
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return
    try:
        sig.bind(*([None] * nargs))
    except TypeError:
        raise ExpressionError(
            f"{node}: {role} {_fn_name(fn)}{sig} cannot be called with {nargs} row argument(s)"
        ) from None

def _check_expression(expr: Any, role: str, node: str):
    _assert(
        isinstance(expr, Expression),
        f"{node}: {role} must be an Expression, got {type(expr).__name__}",
        ExpressionError,
    )

SCALAR = "scalar"

def _describe(shape) -> str:
    return "non-tuple values" if shape == SCALAR else f"{shape} fields"

# Shape shared by every row: the tuple arity, SCALAR for non-tuple rows, or
# None when there are no rows.
def _shape(rows: Iterable[Row], where: str):
    shape = None
    for row in rows:
        current = len(row) if isinstance(row, tuple) else SCALAR
        if shape is None:
            shape = current
        elif current != shape:
            raise SchemaError(f"{where}: row {row!r} has {_describe(current)}, expected {_describe(shape)}")
    return shape

def _check_compatible(left: Sequence[Row], right: Sequence[Row], node: str):
    ls = _shape(left, f"{node} (left)")
    rs = _shape(right, f"{node} (right)")
    _assert(
        ls is None or rs is None or ls == rs,
        f"{node}: row shape mismatch, left rows have {_describe(ls)} and right rows have {_describe(rs)}",
        SchemaError,
    )

# Set operators over two leaves are checked when the node is built.
def _check_terminals(left: Expression, right: Expression, node: str):
    if isinstance(left, Terminal) and isinstance(right, Terminal):
        _check_compatible(left.rows, right.rows, node)


########################
# Expression nodes
########################

class Expression:
    """A node of a relational algebra tree.

    ``eval`` evaluates any sub-expressions first, then applies the node's own
    transformation and returns the materialized rows as a new list.
    """

    def eval(self) -> List[Row]:
        raise NotImplementedError()


# Leaf node holding a private copy of its rows.
@dataclass(frozen=True, repr=False)
class Terminal(Expression):
    rows: Tuple[Row, ...] = ()

    def __post_init__(self):
        rows = tuple(self.rows)
        _shape(rows, "Terminal")
        object.__setattr__(self, "rows", rows)

    def eval(self) -> List[Row]:
        return list(self.rows)

    def __repr__(self): return f"Terminal[{len(self.rows)}]"


# sigma - keep rows for which the predicate holds, in input order
@dataclass(frozen=True, repr=False)
class Selection(Expression):
    child: Expression
    predicate: Predicate

    def __post_init__(self):
        _check_expression(self.child, "child", "Selection")
        _check_callable(self.predicate, 1, "predicate", "Selection")

    def eval(self) -> List[Row]:
        rows = [row for row in self.child.eval() if self.predicate(row)]
        logger.debug("Selection kept %d rows", len(rows))
        return rows

    def __repr__(self): return f"σ[{_fn_name(self.predicate)}]({self.child})"


# pi - map every row; never drops or duplicates rows, may change the row type
@dataclass(frozen=True, repr=False)
class Projection(Expression):
    child: Expression
    mapper: Mapper

    def __post_init__(self):
        _check_expression(self.child, "child", "Projection")
        _check_callable(self.mapper, 1, "mapper", "Projection")

    def eval(self) -> List[Row]:
        return [self.mapper(row) for row in self.child.eval()]

    def __repr__(self): return f"π[{_fn_name(self.mapper)}]({self.child})"


@dataclass(frozen=True, repr=False)
class Join(Expression):
    """Nested loop theta join.

    Both inputs are evaluated exactly once. For every left row (in left order)
    every right row is visited (in right order); ``mapper(l, r)`` is emitted
    for each pair where ``predicate(l, r)`` holds. Output order is therefore
    left-major, right-minor.
    """
    left: Expression
    right: Expression
    predicate: JoinPredicate
    mapper: JoinMapper

    def __post_init__(self):
        _check_expression(self.left, "left", type(self).__name__)
        _check_expression(self.right, "right", type(self).__name__)
        _check_callable(self.predicate, 2, "predicate", type(self).__name__)
        _check_callable(self.mapper, 2, "mapper", type(self).__name__)

    def eval(self) -> List[Row]:
        left_rows = self.left.eval()
        right_rows = self.right.eval()
        out_rows = []
        for lrow in left_rows:
            for rrow in right_rows:
                if self.predicate(lrow, rrow):
                    out_rows.append(self.mapper(lrow, rrow))
        logger.debug("Join of %d x %d rows produced %d rows", len(left_rows), len(right_rows), len(out_rows))
        return out_rows

    def __repr__(self): return f"({self.left})⋈[{_fn_name(self.predicate)}]({self.right})"


def _always(left_row: Row, right_row: Row) -> bool:
    return True

# Unconditional join, evaluated by an inner Join with an always-true predicate.
@dataclass(frozen=True, repr=False)
class CartesianProduct(Expression):
    left: Expression
    right: Expression
    mapper: JoinMapper
    joiner: Join = field(init=False, compare=False)

    def __post_init__(self):
        _check_expression(self.left, "left", "CartesianProduct")
        _check_expression(self.right, "right", "CartesianProduct")
        _check_callable(self.mapper, 2, "mapper", "CartesianProduct")
        object.__setattr__(self, "joiner", Join(self.left, self.right, _always, self.mapper))

    def eval(self) -> List[Row]:
        return self.joiner.eval()

    def __repr__(self): return f"({self.left})×({self.right})"


# Bag union: left rows then right rows, nothing removed.
@dataclass(frozen=True, repr=False)
class Union(Expression):
    left: Expression
    right: Expression

    def __post_init__(self):
        _check_expression(self.left, "left", "Union")
        _check_expression(self.right, "right", "Union")
        _check_terminals(self.left, self.right, "Union")

    def eval(self) -> List[Row]:
        left_rows = self.left.eval()
        right_rows = self.right.eval()
        _check_compatible(left_rows, right_rows, "Union")
        return left_rows + right_rows

    def __repr__(self): return f"({self.left})⋃({self.right})"


@dataclass(frozen=True, repr=False)
class _MembershipFilter(Expression):
    """Filters the left rows by whether an equal row occurs on the right.

    Left order and multiplicity are preserved; the right side is only used as
    a membership test. With the ``"hash"`` strategy the right rows are loaded
    into a set (falling back to a scan when they are unhashable); ``"scan"``
    compares against the right list directly. Both give the same result.
    """
    left: Expression
    right: Expression
    strategy: str = "hash"

    keep_matches = True
    symbol = "?"

    def __post_init__(self):
        node = type(self).__name__
        _check_expression(self.left, "left", node)
        _check_expression(self.right, "right", node)
        _assert(
            self.strategy in STRATEGIES,
            f"{node}: unknown strategy {self.strategy!r}, expected one of {STRATEGIES}",
            ExpressionError,
        )
        _check_terminals(self.left, self.right, node)

    def _found(self, left_rows: List[Row], right_rows: List[Row]) -> List[bool]:
        if self.strategy == "hash":
            try:
                members = set(right_rows)
                return [row in members for row in left_rows]
            except TypeError:
                logger.debug("%s: rows are unhashable, scanning instead", type(self).__name__)
        return [row in right_rows for row in left_rows]

    def eval(self) -> List[Row]:
        left_rows = self.left.eval()
        right_rows = self.right.eval()
        _check_compatible(left_rows, right_rows, type(self).__name__)
        found = self._found(left_rows, right_rows)
        return [row for row, hit in zip(left_rows, found) if hit == self.keep_matches]

    def __repr__(self): return f"({self.left}){self.symbol}({self.right})"


# Semi-join intersection: a left row appearing twice and matching stays twice.
@dataclass(frozen=True, repr=False)
class Intersection(_MembershipFilter):
    keep_matches = True
    symbol = "∩"


# Anti-join difference: left rows without an equal row on the right.
@dataclass(frozen=True, repr=False)
class Difference(_MembershipFilter):
    keep_matches = False
    symbol = "−"


########################
# Builder
########################

RightInput = TypingUnion["ExpressionBuilder", Expression, Iterable[Row]]

def _as_expression(right: RightInput) -> Expression:
    if isinstance(right, ExpressionBuilder):
        return right.expression
    if isinstance(right, Expression):
        return right
    return Terminal(right)


@dataclass(frozen=True)
class ExpressionBuilder:
    """Chains relational algebra operations over a starting expression.

    Each method wraps the current expression in a new node and returns a new
    builder; the receiver is left untouched, so a builder can be branched::

        base = ExpressionBuilder.from_rows(rows).select(is_active)
        names = base.project(lambda r: r[1])
        ids = base.project(lambda r: r[0])

    Methods taking ``right`` accept rows (wrapped in a ``Terminal``), an
    ``Expression`` or another ``ExpressionBuilder``.
    """
    expression: Expression

    def __post_init__(self):
        _check_expression(self.expression, "expression", "ExpressionBuilder")

    @classmethod
    def from_rows(cls, rows: Iterable[Row]) -> "ExpressionBuilder":
        return cls(Terminal(rows))

    def project(self, mapper: Mapper) -> "ExpressionBuilder":
        return ExpressionBuilder(Projection(self.expression, mapper))

    def select(self, predicate: Predicate) -> "ExpressionBuilder":
        return ExpressionBuilder(Selection(self.expression, predicate))

    def join(self, right: RightInput, predicate: JoinPredicate, mapper: JoinMapper) -> "ExpressionBuilder":
        return ExpressionBuilder(Join(self.expression, _as_expression(right), predicate, mapper))

    def cartesian_product(self, right: RightInput, mapper: JoinMapper) -> "ExpressionBuilder":
        return ExpressionBuilder(CartesianProduct(self.expression, _as_expression(right), mapper))

    def union(self, right: RightInput) -> "ExpressionBuilder":
        return ExpressionBuilder(Union(self.expression, _as_expression(right)))

    def intersect(self, right: RightInput, strategy: str = "hash") -> "ExpressionBuilder":
        return ExpressionBuilder(Intersection(self.expression, _as_expression(right), strategy))

    def minus(self, right: RightInput, strategy: str = "hash") -> "ExpressionBuilder":
        return ExpressionBuilder(Difference(self.expression, _as_expression(right), strategy))

    def eval(self) -> List[Row]:
        return self.expression.eval()


#############################
# Rendering
#############################

def _to_str(x: Any) -> str:
    return x if isinstance(x, str) else str(x)

def _cells(row: Row) -> List[str]:
    return list(map(_to_str, row)) if isinstance(row, tuple) else [_to_str(row)]

def _headers(rows: Sequence[Row], headers: Optional[Sequence[str]]) -> List[str]:
    if headers is not None:
        return list(headers)
    if not rows:
        return []
    width = max(len(_cells(r)) for r in rows)
    return ["value"] if width == 1 and not isinstance(rows[0], tuple) else [f"c{i}" for i in range(width)]

def to_csv(rows: Sequence[Row], headers: Optional[Sequence[str]] = None, delimiter: str = ",") -> str:
    """Render rows as delimiter separated text, header line first."""
    out = [delimiter.join(_headers(rows, headers))]
    for r in rows:
        out.append(delimiter.join(_cells(r)))
    return "\n".join(out)

def pretty(rows: Sequence[Row], headers: Optional[Sequence[str]] = None, max_width: int = 24) -> str:
    """Render rows as an aligned text table; long cells are cut with an ellipsis."""
    if not rows and headers is None:
        return "(no rows)"
    cols = _headers(rows, headers)
    if not cols:
        return f"({len(rows)} rows, 0 columns)"
    data = [cols] + [_cells(r) for r in rows]
    widths = [0] * len(cols)
    for row in data:
        _assert(len(row) == len(cols), f"pretty: row {row!r} does not match headers {cols}", SchemaError)
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    widths = [min(w, max_width) for w in widths]

    def fmt(row):
        cells = []
        for i, cell in enumerate(row):
            if len(cell) > widths[i]:
                cell = cell[: max(0, widths[i] - 1)] + "…"
            cells.append(cell.ljust(widths[i]))
        return " | ".join(cells).rstrip()

    lines = [fmt(cols), "-+-".join("-" * w for w in widths)]
    for row in data[1:]:
        lines.append(fmt(row))
    return "\n".join(lines)
