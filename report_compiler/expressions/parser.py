# report_compiler/expressions/parser.py
"""
Tokenizer and recursive-descent parser for derived-field expressions.

Grammar (standard arithmetic precedence, left associative)::

    expression := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := ("+" | "-") factor | primary
    primary    := NUMBER | STRING | "true" | "false"
                | IDENT "." IDENT
                | IDENT "(" [expression ("," expression)*] ")"
                | "(" expression ")"

Any ``identifier.identifier`` token (``orders .total`` included) is a field reference; its model half is
recorded as a referenced model. Parsing is pure and deterministic.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from report_compiler.errors import ExpressionSyntaxError

from .nodes import ALLOWED_FUNCTIONS, BinaryOp, ColumnRef, FunctionCall, Literal, Node, UnaryOp, iter_columns

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"
_TOKEN_PATTERNS = [
    ("WS", r"\s+"),
    ("REFERENCE", rf"{_IDENT}\s*\.{_IDENT}"),
    ("NUMBER", r"(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?"),
    ("IDENT", _IDENT),
    ("STRING", r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\""),
    ("OPERATOR", r"[+\-*/]"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_PATTERNS))


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class ParsedExpression:
    """Parse output: the AST plus the models and fields it references."""

    ast: Node
    referenced_models: FrozenSet[str]
    referenced_fields: Dict[str, FrozenSet[str]]

    def fields_payload(self) -> Dict[str, List[str]]:
        return {model: sorted(fields) for model, fields in sorted(self.referenced_fields.items())}


def tokenize(expression: str) -> List[Token]:
    """Split an expression into tokens, failing on the first unknown character."""
    tokens: List[Token] = []
    position = 0
    length = len(expression)
    while position < length:
        match = _TOKEN_RE.match(expression, position)
        if match is None:
            char = expression[position]
            if char in "'\"":
                raise ExpressionSyntaxError("Unterminated string literal", position)
            if char == ".":
                raise ExpressionSyntaxError("Expected field identifier after '.'", position)
            raise ExpressionSyntaxError(f"Unknown operator '{char}'", position)
        kind = match.lastgroup
        text = match.group()
        if kind == "IDENT" and match.end() < length and expression[match.end()] == ".":
            raise ExpressionSyntaxError("Expected field identifier after '.'", match.end() + 1)
        if kind != "WS":
            tokens.append(Token(kind, text, position))
        position = match.end()
    tokens.append(Token("EOF", "", length))
    return tokens


def _unescape(raw: str) -> str:
    return re.sub(r"\\(.)", r"\1", raw)


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.index = 0

    def peek(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def parse(self) -> Node:
        node = self.parse_expression()
        token = self.peek()
        if token.kind == "RPAREN":
            raise ExpressionSyntaxError("Unbalanced parentheses: unexpected ')'", token.position)
        if token.kind != "EOF":
            raise ExpressionSyntaxError(f"Unexpected token '{token.text}'", token.position)
        return node

    def parse_expression(self) -> Node:
        node = self.parse_term()
        while self.peek().kind == "OPERATOR" and self.peek().text in "+-":
            operator = self.advance().text
            node = BinaryOp(operator, node, self.parse_term())
        return node

    def parse_term(self) -> Node:
        node = self.parse_factor()
        while self.peek().kind == "OPERATOR" and self.peek().text in "*/":
            operator = self.advance().text
            node = BinaryOp(operator, node, self.parse_factor())
        return node

    def parse_factor(self) -> Node:
        token = self.peek()
        if token.kind == "OPERATOR" and token.text in "+-":
            self.advance()
            return UnaryOp(token.text, self.parse_factor())
        return self.parse_primary()

    def parse_primary(self) -> Node:
        token = self.advance()

        if token.kind == "NUMBER":
            text = token.text
            if any(marker in text for marker in ".eE"):
                return Literal(float(text), "number")
            return Literal(int(text), "number")

        if token.kind == "STRING":
            return Literal(_unescape(token.text[1:-1]), "string")

        if token.kind == "REFERENCE":
            model_id, field_id = token.text.split(".", 1)
            return ColumnRef(model_id.rstrip(), field_id)

        if token.kind == "IDENT":
            lowered = token.text.lower()
            if self.peek().kind == "LPAREN":
                return self.parse_call(token)
            if lowered in ("true", "false"):
                return Literal(lowered == "true", "boolean")
            raise ExpressionSyntaxError(
                f"Unexpected identifier '{token.text}', expected model.field", token.position
            )

        if token.kind == "LPAREN":
            node = self.parse_expression()
            closing = self.advance()
            if closing.kind != "RPAREN":
                raise ExpressionSyntaxError("Unbalanced parentheses: expected ')'", closing.position)
            return node

        if token.kind == "EOF":
            previous = self.tokens[self.index - 2] if self.index >= 2 else None
            if previous is not None and previous.kind == "OPERATOR":
                raise ExpressionSyntaxError(
                    f"Dangling operator '{previous.text}' is missing an operand", previous.position
                )
            raise ExpressionSyntaxError("Unexpected end of expression", token.position)

        if token.kind == "RPAREN":
            raise ExpressionSyntaxError("Unbalanced parentheses: unexpected ')'", token.position)

        if token.kind == "OPERATOR":
            raise ExpressionSyntaxError(f"Operator '{token.text}' is missing an operand", token.position)

        raise ExpressionSyntaxError(f"Unexpected token '{token.text}'", token.position)

    def parse_call(self, name_token: Token) -> Node:
        name = name_token.text.lower()
        if name not in ALLOWED_FUNCTIONS:
            raise ExpressionSyntaxError(f"Unknown function '{name_token.text}'", name_token.position)
        self.advance()  # "("
        args: List[Node] = []
        if self.peek().kind != "RPAREN":
            while True:
                args.append(self.parse_expression())
                if self.peek().kind == "COMMA":
                    self.advance()
                    continue
                break
        closing = self.advance()
        if closing.kind != "RPAREN":
            raise ExpressionSyntaxError("Unbalanced parentheses: expected ')'", closing.position)
        return FunctionCall(name, tuple(args))


def collect_references(ast: Node) -> Tuple[FrozenSet[str], Dict[str, FrozenSet[str]]]:
    """Referenced model ids and per-model field ids of an AST."""
    fields: Dict[str, set] = {}
    for column in iter_columns(ast):
        fields.setdefault(column.model_id, set()).add(column.field_id)
    return frozenset(fields), {model: frozenset(ids) for model, ids in fields.items()}


def parse(expression: str) -> ParsedExpression:
    """
    Parse a derived-field expression.

    Raises:
        ExpressionSyntaxError: on empty input or malformed syntax.
    """
    if expression is None or not expression.strip():
        raise ExpressionSyntaxError("Expression cannot be empty", 0)
    ast = _Parser(tokenize(expression)).parse()
    models, fields = collect_references(ast)
    return ParsedExpression(ast=ast, referenced_models=models, referenced_fields=fields)


def try_parse(expression: str) -> Tuple[Optional[ParsedExpression], Optional[ExpressionSyntaxError]]:
    """Parse without raising; exactly one of the pair is set."""
    try:
        return parse(expression), None
    except ExpressionSyntaxError as exc:
        return None, exc
