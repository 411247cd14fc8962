import re
from typing import Collection, List, NamedTuple, Optional

from ..errors import ParseError
from ..utils.data_parser import UNDEFINED, TEMPLATE_PATTERN, split_expression
from .sandbox import check_identifier
from . import ast

# ============================================================================
# 1. 词法分析 (Tokenizer)
# ============================================================================

class Token(NamedTuple):
    kind: str   # num | str | ident | op | open | close | eof
    value: object
    pos: int

# 按长度降序匹配
_OPERATORS = (
    "===", "!==",
    "==", "!=", "<=", ">=", "&&", "||", "??",
    "+", "-", "*", "/", "%", "<", ">", "!", "?", ":", ".", ",", "(", ")", "[", "]",
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "{": "{", "}": "}"}

KEYWORD_LITERALS = {"true": True, "false": False, "null": None, "undefined": UNDEFINED}

MAX_NESTING = 64

# 123 / 1.5 / .5 / 1e3 / 2.5E-2
_NUMBER = re.compile(r"(?:\d+(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?")

def _ends_operand(tokens: List[Token]) -> bool:
    if not tokens:
        return False
    last = tokens[-1]
    return last.kind in ("num", "str", "ident") or (last.kind == "op" and last.value in (")", "]", "}"))

def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    braces: List[str] = []  # '{{' 模板 / '{' 对象字面量
    i, n = 0, len(source)

    while i < n:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "{":
            if source.startswith("{{", i):
                braces.append("{{")
                tokens.append(Token("open", "{{", i))
                i += 2
            else:
                braces.append("{")
                tokens.append(Token("op", "{", i))
                i += 1
            continue

        if ch == "}":
            if braces and braces[-1] == "{":
                braces.pop()
                tokens.append(Token("op", "}", i))
                i += 1
            elif braces and braces[-1] == "{{" and source.startswith("}}", i):
                braces.pop()
                tokens.append(Token("close", "}}", i))
                i += 2
            else:
                raise ParseError("Unbalanced '}'", source, i)
            continue

        # ".5" 只在不能构成成员访问的位置才是数字
        leading_dot = ch == "." and i + 1 < n and source[i + 1].isdigit() and not _ends_operand(tokens)
        if ch.isdigit() or leading_dot:
            match = _NUMBER.match(source, i)
            text = match.group(0)
            is_float = "." in text or "e" in text.lower()
            tokens.append(Token("num", float(text) if is_float else int(text), i))
            i = match.end()
            continue

        if ch in ("'", '"'):
            quote, start = ch, i
            i += 1
            chars = []
            while i < n and source[i] != quote:
                if source[i] == "\\" and i + 1 < n:
                    chars.append(_ESCAPES.get(source[i + 1], source[i + 1]))
                    i += 2
                    continue
                chars.append(source[i])
                i += 1
            if i >= n:
                raise ParseError("Unterminated string literal", source, start)
            i += 1
            tokens.append(Token("str", "".join(chars), start))
            continue

        if ch.isalpha() or ch in "_$":
            start = i
            while i < n and (source[i].isalnum() or source[i] in "_$"):
                i += 1
            tokens.append(Token("ident", source[start:i], start))
            continue

        for op in _OPERATORS:
            if source.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise ParseError(f"Unexpected character '{ch}'", source, i)

    if braces:
        raise ParseError("Unterminated '{{' or '{'", source, n)

    tokens.append(Token("eof", None, n))
    return tokens

# ============================================================================
# 2. 递归下降语法分析 (Recursive-descent Parser)
# ============================================================================

class _Parser:
    def __init__(self, source: str, functions: Collection[str]):
        self.source = source
        self.functions = functions
        self.tokens = tokenize(source)
        self.pos = 0
        self.depth = 0

    # --- token helpers ---
    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _check(self, kind: str, value: Optional[str] = None) -> bool:
        token = self.current
        return token.kind == kind and (value is None or token.value == value)

    def _match(self, *ops: str) -> Optional[str]:
        if self.current.kind == "op" and self.current.value in ops:
            return self._advance().value
        return None

    def _expect(self, kind: str, value: Optional[str] = None) -> Token:
        if not self._check(kind, value):
            expected = value or kind
            found = self.current.value if self.current.kind != "eof" else "end of expression"
            raise ParseError(f"Expected '{expected}' but found '{found}'", self.source, self.current.pos)
        return self._advance()

    def _error(self, message: str) -> ParseError:
        return ParseError(message, self.source, self.current.pos)

    # --- grammar ---
    def parse(self) -> ast.Node:
        if self._check("eof"):
            raise self._error("Empty expression")
        node = self.expression()
        if not self._check("eof"):
            raise self._error(f"Unexpected token '{self.current.value}'")
        return node

    def expression(self) -> ast.Node:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise self._error("Expression is nested too deeply")
        try:
            return self.conditional()
        finally:
            self.depth -= 1

    def conditional(self) -> ast.Node:
        test = self.nullish()
        if self._match("?"):
            consequent = self.expression()
            self._expect("op", ":")
            alternate = self.expression()
            return ast.Conditional(test, consequent, alternate)
        return test

    def nullish(self) -> ast.Node:
        node = self.logical_or()
        while self._match("??"):
            node = ast.Logical("??", node, self.logical_or())
        return node

    def logical_or(self) -> ast.Node:
        node = self.logical_and()
        while self._match("||"):
            node = ast.Logical("||", node, self.logical_and())
        return node

    def logical_and(self) -> ast.Node:
        node = self.equality()
        while self._match("&&"):
            node = ast.Logical("&&", node, self.equality())
        return node

    def equality(self) -> ast.Node:
        node = self.relational()
        while True:
            op = self._match("===", "!==", "==", "!=")
            if not op:
                return node
            node = ast.Binary(op, node, self.relational())

    def relational(self) -> ast.Node:
        node = self.additive()
        while True:
            op = self._match("<=", ">=", "<", ">")
            if not op:
                return node
            node = ast.Binary(op, node, self.additive())

    def additive(self) -> ast.Node:
        node = self.multiplicative()
        while True:
            op = self._match("+", "-")
            if not op:
                return node
            node = ast.Binary(op, node, self.multiplicative())

    def multiplicative(self) -> ast.Node:
        node = self.unary()
        while True:
            op = self._match("*", "/", "%")
            if not op:
                return node
            node = ast.Binary(op, node, self.unary())

    def unary(self) -> ast.Node:
        op = self._match("!", "-", "+")
        if op:
            self.depth += 1
            if self.depth > MAX_NESTING:
                raise self._error("Expression is nested too deeply")
            try:
                return ast.Unary(op, self.unary())
            finally:
                self.depth -= 1
        return self.postfix()

    def postfix(self) -> ast.Node:
        node = self.primary()
        while True:
            if self._match("."):
                token = self._advance()
                if token.kind == "ident":
                    node = ast.Member(node, check_identifier(token.value, self.source))
                elif token.kind == "num" and isinstance(token.value, int):
                    node = ast.Index(node, ast.Literal(token.value))
                else:
                    raise ParseError("Expected property name after '.'", self.source, token.pos)
            elif self._match("["):
                index = self.expression()
                self._expect("op", "]")
                if isinstance(index, ast.Literal) and isinstance(index.value, str):
                    check_identifier(index.value, self.source)
                node = ast.Index(node, index)
            elif self._check("op", "("):
                raise self._error("Only allowlisted helper functions may be called")
            else:
                return node

    def primary(self) -> ast.Node:
        token = self.current

        if token.kind == "num" or token.kind == "str":
            self._advance()
            return ast.Literal(token.value)

        if token.kind == "open":
            self._advance()
            if self._check("close"):
                raise self._error("Empty template token")
            node = self.expression()
            self._expect("close")
            return node

        if token.kind == "ident":
            self._advance()
            name = token.value
            if name in KEYWORD_LITERALS:
                return ast.Literal(KEYWORD_LITERALS[name])
            check_identifier(name, self.source)
            if self._check("op", "("):
                if name not in self.functions:
                    raise ParseError(f"Unknown function '{name}'", self.source, token.pos)
                self._advance()
                args = self._sequence(")")
                return ast.Call(name, tuple(args))
            return ast.Identifier(name)

        if self._match("("):
            node = self.expression()
            self._expect("op", ")")
            return node

        if self._match("["):
            return ast.ArrayLiteral(tuple(self._sequence("]")))

        if self._match("{"):
            return self._object_literal()

        if token.kind == "eof":
            raise self._error("Unexpected end of expression")
        raise self._error(f"Unexpected token '{token.value}'")

    def _sequence(self, closer: str) -> List[ast.Node]:
        items: List[ast.Node] = []
        if self._match(closer):
            return items
        while True:
            items.append(self.expression())
            if self._match(closer):
                return items
            self._expect("op", ",")

    def _object_literal(self) -> ast.ObjectLiteral:
        entries = []
        if self._match("}"):
            return ast.ObjectLiteral(())
        while True:
            token = self._advance()
            if token.kind not in ("ident", "str", "num"):
                raise ParseError("Expected object key", self.source, token.pos)
            key = check_identifier(str(token.value), self.source)
            self._expect("op", ":")
            entries.append((key, self.expression()))
            if self._match("}"):
                return ast.ObjectLiteral(tuple(entries))
            self._expect("op", ",")

# ============================================================================
# 3. 入口 (Entry Points)
# ============================================================================

_SINGLE_TOKEN = re.compile(r'^\s*\{\{(.*)\}\}\s*$', re.DOTALL)
# 运算符表达式中可以出现的字符；出现此集合之外的字符说明是文本模板
_NON_TEXT = re.compile(r'^[\s\d+\-*/%<>=!&|?:.,()\[\]{}\'"]*$')

def parse_expression(source: str, functions: Collection[str]) -> ast.Node:
    return _Parser(source, functions).parse()

def parse_template(source: str, functions: Collection[str]) -> ast.Node:
    parts = []
    for part in split_expression(source):
        if part.startswith("{{") and part.endswith("}}"):
            parts.append(parse_expression(part[2:-2], functions))
        else:
            parts.append(part)
    return ast.Template(tuple(parts))

def parse(source: str, functions: Collection[str], mode: str = "expression") -> ast.Node:
    """
    mode="expression": 整体作为表达式解析；含 {{ }} 且外部是普通文本时退化为字符串模板。
    mode="template":   仅由单个 {{ }} 构成时返回原始类型的值，否则做字符串插值，无 {{ }} 时原样返回。
    """
    if mode == "template":
        if "{{" not in source:
            return ast.Literal(source)
        single = _SINGLE_TOKEN.match(source)
        if single and len(split_expression(source.strip())) == 1:
            return parse_expression(single.group(1), functions)
        return parse_template(source, functions)

    if mode != "expression":
        raise ValueError(f"Unknown parse mode '{mode}'")

    if "{{" not in source:
        return parse_expression(source, functions)
    try:
        return parse_expression(source, functions)
    except ParseError:
        outside = TEMPLATE_PATTERN.sub("", source)
        if _NON_TEXT.match(outside):
            raise
        return parse_template(source, functions)
