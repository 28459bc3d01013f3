"""Formula expression language evaluator.

Expressions are small strings such as ``IF(value>=100,'high','low')`` or
``price * quantity`` evaluated against a flat variable map. Binary operators
bind by fixed category, loosest first::

    +  -  *  /  >=  <=  !=  =  >  <

so ``a + b > 10`` reads as ``a + (b > 10)``. Every level is left-associative
and parentheses group. A leading ``-`` negates the operand that follows it
(``-value``, ``-(a + b)``) and binds tighter than any binary operator.
Identifiers missing from the variable map evaluate to their own name.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

Value = Any

OPERATOR_PRECEDENCE: List[str] = ["+", "-", "*", "/", ">=", "<=", "!=", "=", ">", "<"]
RETURN_TYPES = ("number", "string", "boolean")

_TWO_CHAR_OPS = {">=", "<=", "!="}
_ONE_CHAR_OPS = {"+", "-", "*", "/", "=", ">", "<"}
_KEYWORDS = {"true": True, "false": False, "null": None}


@dataclass
class ExpressionEvalError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


class ExprSyntaxError(ExpressionEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("EXPR_SYNTAX_ERROR", message, path)


class UnknownFunctionError(ExpressionEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("EXPR_UNKNOWN_FUNCTION", message, path)


class ArityError(ExpressionEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("EXPR_ARITY", message, path)


class ExprTypeError(ExpressionEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("EXPR_TYPE_ERROR", message, path)


# --- tokens -----------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    kind: str  # num, str, ident, op, lparen, rparen, comma
    value: Any
    pos: int


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_."


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    text = expression
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "\"'":
            end = text.find(ch, i + 1)
            if end == -1:
                raise ExprSyntaxError("Unterminated string literal", f"${i}")
            tokens.append(Token("str", text[i + 1 : end], i))
            i = end + 1
            continue
        operand_expected = not tokens or tokens[-1].kind in {"op", "lparen", "comma"}
        if ch.isdigit() or (
            ch == "-" and operand_expected and i + 1 < length and text[i + 1].isdigit()
        ):
            start = i
            i += 1
            while i < length and (text[i].isdigit() or text[i] == "."):
                i += 1
            raw = text[start:i]
            try:
                number: int | float = int(raw) if "." not in raw else float(raw)
            except ValueError as exc:
                raise ExprSyntaxError(f"Invalid number: {raw}", f"${start}") from exc
            tokens.append(Token("num", number, start))
            continue
        if ch.isalpha() or ch == "_":
            start = i
            while i < length and _is_ident_char(text[i]):
                i += 1
            tokens.append(Token("ident", text[start:i], start))
            continue
        pair = text[i : i + 2]
        if pair in _TWO_CHAR_OPS:
            tokens.append(Token("op", pair, i))
            i += 2
            continue
        if ch in _ONE_CHAR_OPS:
            tokens.append(Token("op", ch, i))
            i += 1
            continue
        if ch == "(":
            tokens.append(Token("lparen", ch, i))
        elif ch == ")":
            tokens.append(Token("rparen", ch, i))
        elif ch == ",":
            tokens.append(Token("comma", ch, i))
        else:
            raise ExprSyntaxError(f"Unexpected character: {ch!r}", f"${i}")
        i += 1
    return tokens


# --- syntax tree ------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple
    pos: int


@dataclass(frozen=True)
class Negate:
    operand: Any


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Any
    right: Any


class _Parser:
    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.index = 0

    def peek(self) -> Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self, kind: str) -> Token:
        token = self.peek()
        if token is None or token.kind != kind:
            where = f"${token.pos}" if token else "$end"
            raise ExprSyntaxError(f"Expected {kind}", where)
        self.index += 1
        return token

    def parse(self) -> Any:
        if not self.tokens:
            raise ExprSyntaxError("Empty expression", "$")
        node = self.parse_level(0)
        extra = self.peek()
        if extra is not None:
            raise ExprSyntaxError(f"Unexpected token: {extra.value!r}", f"${extra.pos}")
        return node

    def parse_level(self, level: int) -> Any:
        if level >= len(OPERATOR_PRECEDENCE):
            return self.parse_primary()
        op = OPERATOR_PRECEDENCE[level]
        node = self.parse_level(level + 1)
        while True:
            token = self.peek()
            if token is None or token.kind != "op" or token.value != op:
                return node
            self.index += 1
            node = BinaryOp(op, node, self.parse_level(level + 1))

    def parse_primary(self) -> Any:
        token = self.peek()
        if token is None:
            raise ExprSyntaxError("Unexpected end of expression", "$end")
        self.index += 1
        if token.kind == "op" and token.value == "-":
            return Negate(self.parse_primary())
        if token.kind in {"num", "str"}:
            return Literal(token.value)
        if token.kind == "lparen":
            node = self.parse_level(0)
            self.take("rparen")
            return node
        if token.kind == "ident":
            nxt = self.peek()
            if nxt is not None and nxt.kind == "lparen":
                self.index += 1
                return Call(token.value, tuple(self.parse_args()), token.pos)
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            return Variable(token.value)
        raise ExprSyntaxError(f"Unexpected token: {token.value!r}", f"${token.pos}")

    def parse_args(self) -> List[Any]:
        args: List[Any] = []
        nxt = self.peek()
        if nxt is not None and nxt.kind == "rparen":
            self.index += 1
            return args
        while True:
            args.append(self.parse_level(0))
            token = self.peek()
            if token is not None and token.kind == "comma":
                self.index += 1
                continue
            self.take("rparen")
            return args


def parse(expression: str) -> Any:
    if not isinstance(expression, str):
        raise ExprSyntaxError("Expression must be string", "$")
    return _Parser(tokenize(expression)).parse()


# --- value semantics --------------------------------------------------------


def truthy(value: Value) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def to_number(value: Value, path: str = "$") -> int | float:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError as exc:
            raise ExprTypeError(f"Not a number: {value!r}", path) from exc
        if not math.isfinite(number):
            raise ExprTypeError(f"Not a number: {value!r}", path)
        return number
    raise ExprTypeError(f"Not a number: {type(value).__name__}", path)


def to_text(value: Value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _finite(value: Value, path: str) -> Value:
    if isinstance(value, float) and not math.isfinite(value):
        raise ExprTypeError("Non-finite number", path)
    return value


def _is_number(value: Value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _add(left: Value, right: Value, path: str) -> Value:
    if isinstance(left, str) or isinstance(right, str):
        return to_text(left) + to_text(right)
    return to_number(left, path) + to_number(right, path)


def _divide(left: Value, right: Value, path: str) -> Value:
    divisor = to_number(right, path)
    if divisor == 0:
        raise ExprTypeError("Division by zero", path)
    return to_number(left, path) / divisor


def _equals(left: Value, right: Value) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _compare(left: Value, right: Value, cmp: Callable[[Any, Any], bool], path: str) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return cmp(left, right)
    try:
        return cmp(to_number(left, path), to_number(right, path))
    except ExprTypeError:
        return False


_BINARY: Dict[str, Callable[[Value, Value, str], Value]] = {
    "+": _add,
    "-": lambda a, b, p: to_number(a, p) - to_number(b, p),
    "*": lambda a, b, p: to_number(a, p) * to_number(b, p),
    "/": _divide,
    ">=": lambda a, b, p: _compare(a, b, lambda x, y: x >= y, p),
    "<=": lambda a, b, p: _compare(a, b, lambda x, y: x <= y, p),
    "!=": lambda a, b, p: not _equals(a, b),
    "=": lambda a, b, p: _equals(a, b),
    ">": lambda a, b, p: _compare(a, b, lambda x, y: x > y, p),
    "<": lambda a, b, p: _compare(a, b, lambda x, y: x < y, p),
}


def _round_half_up(value: Value, path: str) -> int:
    return math.floor(to_number(value, path) + 0.5)


def _first(args: List[Value]) -> Value:
    return args[0] if args else None


def _fn_and(args: List[Value], path: str) -> bool:
    return all(truthy(arg) for arg in args)


def _fn_or(args: List[Value], path: str) -> bool:
    return any(truthy(arg) for arg in args)


def _fn_not(args: List[Value], path: str) -> bool:
    return not truthy(_first(args))


def _fn_sum(args: List[Value], path: str) -> Value:
    total: int | float = 0
    for arg in args:
        total += to_number(arg, path)
    return total


def _fn_multiply(args: List[Value], path: str) -> Value:
    product: int | float = 1
    for arg in args:
        product *= to_number(arg if truthy(arg) else 1, path)
    return product


def _fn_divide(args: List[Value], path: str) -> Value:
    if len(args) != 2:
        raise ArityError("DIVIDE requires 2 arguments", path)
    return _divide(args[0], args[1], path)


def _text_arg(args: List[Value]) -> str:
    value = _first(args)
    return to_text(value) if truthy(value) else ""


def _numbers(args: List[Value], name: str, path: str) -> List[int | float]:
    if not args:
        raise ArityError(f"{name} requires at least 1 argument", path)
    return [to_number(arg, path) for arg in args]


_FUNCTIONS: Dict[str, Callable[[List[Value], str], Value]] = {
    "AND": _fn_and,
    "OR": _fn_or,
    "NOT": _fn_not,
    "SUM": _fn_sum,
    "MULTIPLY": _fn_multiply,
    "DIVIDE": _fn_divide,
    "CONCAT": lambda args, path: "".join(to_text(arg) for arg in args),
    "UPPER": lambda args, path: _text_arg(args).upper(),
    "LOWER": lambda args, path: _text_arg(args).lower(),
    "TRIM": lambda args, path: _text_arg(args).strip(),
    "ROUND": lambda args, path: _round_half_up(_first(args), path),
    "CEIL": lambda args, path: math.ceil(to_number(_first(args), path)),
    "FLOOR": lambda args, path: math.floor(to_number(_first(args), path)),
    "ABS": lambda args, path: abs(to_number(_first(args), path)),
    "MAX": lambda args, path: max(_numbers(args, "MAX", path)),
    "MIN": lambda args, path: min(_numbers(args, "MIN", path)),
}

FUNCTION_NAMES = frozenset(_FUNCTIONS) | {"IF"}


# --- evaluation -------------------------------------------------------------


def _eval_node(node: Any, variables: Dict[str, Value], path: str) -> Value:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Variable):
        if node.name in variables:
            return variables[node.name]
        return node.name
    if isinstance(node, Negate):
        return -to_number(_eval_node(node.operand, variables, f"{path}.neg"), path)
    if isinstance(node, BinaryOp):
        left = _eval_node(node.left, variables, f"{path}.left")
        right = _eval_node(node.right, variables, f"{path}.right")
        return _finite(_BINARY[node.op](left, right, path), path)
    if isinstance(node, Call):
        name = node.name.upper()
        call_path = f"{path}.{name}"
        if name == "IF":
            # Only the selected branch is evaluated.
            if len(node.args) != 3:
                raise ArityError("IF requires 3 arguments", call_path)
            cond = _eval_node(node.args[0], variables, f"{call_path}[0]")
            branch = 1 if truthy(cond) else 2
            return _eval_node(node.args[branch], variables, f"{call_path}[{branch}]")
        func = _FUNCTIONS.get(name)
        if func is None:
            raise UnknownFunctionError(f"Unknown function: {node.name}", call_path)
        args = [
            _eval_node(arg, variables, f"{call_path}[{idx}]")
            for idx, arg in enumerate(node.args)
        ]
        return _finite(func(args, call_path), call_path)
    raise ExprSyntaxError("Invalid expression node", path)


def evaluate(expression: str, variables: Dict[str, Value] | None = None) -> Value:
    """Evaluate ``expression`` against ``variables``.

    Raises an ``ExpressionEvalError`` subclass on syntax errors, unknown
    functions, wrong arity and non-numeric arithmetic.
    """
    tree = parse(expression)
    return _eval_node(tree, variables or {}, "$")


def coerce_value(value: Value, return_type: str | None) -> Value:
    if value is None:
        return None
    if return_type == "number":
        return to_number(value)
    if return_type == "string":
        return to_text(value)
    if return_type == "boolean":
        return truthy(value)
    return value
