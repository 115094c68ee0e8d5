"""
Dice formula evaluation for table draws, HP and gold rolls.

Formulas are tokenized into dice terms (``NdM`` with an optional ``khK`` /
``klK`` suffix), operators, parentheses and integer literals, then reduced by
a small recursive-descent evaluator. A formula that cannot be evaluated
yields a total of 0 instead of raising.
"""
import random
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from ..utils.logger import logger

Number = Union[int, float]

_TOKEN_RE = re.compile(
    r"(?P<dice>(?P<count>\d*)d(?P<faces>\d+)(?:(?P<keep>kh|kl)(?P<keep_count>\d*))?)"
    r"|(?P<number>\d+)"
    r"|(?P<op>[-+*/()])",
    re.IGNORECASE,
)

MAX_DICE = 100
MAX_FACES = 1000
MAX_MAGNITUDE = 10 ** 18
MAX_DIGITS = 19


class MalformedExpressionError(ValueError):
    """A dice formula could not be tokenized or evaluated."""


class KeepMode(str, Enum):
    SUM = "sum"
    KEEP_HIGHEST = "kh"
    KEEP_LOWEST = "kl"


@dataclass
class DieResult:
    result: int
    active: bool = True


@dataclass
class DiceTerm:
    count: int
    faces: int
    keep_mode: KeepMode = KeepMode.SUM
    keep_count: int = 0
    results: List[DieResult] = field(default_factory=list)

    @property
    def formula(self) -> str:
        suffix = ""
        if self.keep_mode is not KeepMode.SUM:
            suffix = f"{self.keep_mode.value}{self.keep_count}"
        return f"{self.count}d{self.faces}{suffix}"

    @property
    def total(self) -> int:
        return sum(r.result for r in self.results if r.active)

    def roll(self, rng, minimize: bool = False, maximize: bool = False) -> int:
        draws = []
        for _ in range(self.count):
            if minimize:
                draws.append(1)
            elif maximize:
                draws.append(self.faces)
            else:
                draws.append(rng.randint(1, self.faces))

        if self.keep_mode is KeepMode.SUM:
            self.results = [DieResult(result=d) for d in draws]
        else:
            ordered = sorted(draws, reverse=self.keep_mode is KeepMode.KEEP_HIGHEST)
            self.results = [
                DieResult(result=d, active=i < self.keep_count)
                for i, d in enumerate(ordered)
            ]
        return self.total


@dataclass
class OperatorTerm:
    operator: str


@dataclass
class NumericTerm:
    number: int


Term = Union[DiceTerm, OperatorTerm, NumericTerm]


@dataclass(frozen=True)
class RollResult:
    total: Number
    formula: str
    terms: Tuple[Term, ...] = ()

    @property
    def dice(self) -> List[int]:
        """Every die drawn, kept or not, in term order."""
        return [r.result for t in self.terms if isinstance(t, DiceTerm) for r in t.results]

    def describe(self) -> str:
        return f"Rolled {self.formula}: [{', '.join(str(d) for d in self.dice)}] = {self.total}"

    def to_dict(self) -> dict:
        return {
            "formula": self.formula,
            "total": self.total,
            "terms": [asdict(t) for t in self.terms],
        }


def _to_int(digits: str) -> int:
    if len(digits.lstrip("0")) > MAX_DIGITS:
        raise MalformedExpressionError(f"Number too large: {digits[:20]}...")
    return int(digits)


def tokenize(formula: str) -> List[Term]:
    source = re.sub(r"\s+", "", formula or "")
    if not source:
        raise MalformedExpressionError("Empty formula")

    terms: List[Term] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if not match:
            raise MalformedExpressionError(f"Unexpected '{source[pos]}' at position {pos}")
        pos = match.end()

        if match.group("dice"):
            count = _to_int(match.group("count") or "1")
            faces = _to_int(match.group("faces"))
            if count < 1 or faces < 1:
                raise MalformedExpressionError(f"Invalid dice term: {match.group('dice')}")
            if count > MAX_DICE or faces > MAX_FACES:
                raise MalformedExpressionError(
                    f"Dice term {match.group('dice')} exceeds {MAX_DICE}d{MAX_FACES}"
                )
            keep = (match.group("keep") or "").lower()
            keep_mode = KeepMode(keep) if keep else KeepMode.SUM
            keep_count = _to_int(match.group("keep_count") or "1") if keep else 0
            terms.append(DiceTerm(count=count, faces=faces, keep_mode=keep_mode, keep_count=keep_count))
        elif match.group("number"):
            terms.append(NumericTerm(number=_to_int(match.group("number"))))
        else:
            terms.append(OperatorTerm(operator=match.group("op")))
    return terms


def _normalize(value: Number) -> Number:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _bounded(value: Number) -> Number:
    if abs(value) > MAX_MAGNITUDE:
        raise MalformedExpressionError(f"Result exceeds {MAX_MAGNITUDE}")
    return value


class _Parser:
    """expression := term (('+'|'-') term)*
    term       := factor (('*'|'/') factor)*
    factor     := ('+'|'-') factor | number | dice | '(' expression ')'
    """

    def __init__(self, terms: List[Term]):
        self.terms = terms
        self.pos = 0

    def parse(self) -> Number:
        try:
            value = self._expression()
        except OverflowError as e:
            raise MalformedExpressionError(f"Result out of range: {e}") from e
        except RecursionError as e:
            raise MalformedExpressionError("Formula nested too deeply") from e
        if self.pos != len(self.terms):
            raise MalformedExpressionError(f"Unexpected token at position {self.pos}")
        return _normalize(value)

    def _peek_operator(self) -> Optional[str]:
        if self.pos < len(self.terms) and isinstance(self.terms[self.pos], OperatorTerm):
            return self.terms[self.pos].operator
        return None

    def _expression(self) -> Number:
        value = self._term()
        while self._peek_operator() in ("+", "-"):
            op = self._peek_operator()
            self.pos += 1
            rhs = self._term()
            value = _bounded(value + rhs if op == "+" else value - rhs)
        return value

    def _term(self) -> Number:
        value = self._factor()
        while self._peek_operator() in ("*", "/"):
            op = self._peek_operator()
            self.pos += 1
            rhs = self._factor()
            if op == "*":
                value = _bounded(value * rhs)
            else:
                if rhs == 0:
                    raise MalformedExpressionError("Division by zero")
                value = _bounded(_normalize(value / rhs))
        return value

    def _factor(self) -> Number:
        if self.pos >= len(self.terms):
            raise MalformedExpressionError("Unexpected end of formula")
        term = self.terms[self.pos]

        if isinstance(term, OperatorTerm):
            if term.operator in ("+", "-"):
                self.pos += 1
                value = self._factor()
                return -value if term.operator == "-" else value
            if term.operator == "(":
                self.pos += 1
                value = self._expression()
                if self._peek_operator() != ")":
                    raise MalformedExpressionError("Unbalanced parenthesis")
                self.pos += 1
                return value
            raise MalformedExpressionError(f"Unexpected operator '{term.operator}'")

        self.pos += 1
        if isinstance(term, DiceTerm):
            return term.total
        return _bounded(term.number)


class Roll:
    """A single evaluation of a dice formula.

    ``rng`` is any object exposing ``randint(a, b)``; the ``random`` module is
    used when omitted.
    """

    def __init__(self, formula: str, rng=None):
        self._formula = formula
        self._rng = rng or random
        self._total: Optional[Number] = None
        self._terms: List[Term] = []
        self._evaluated = False

    @property
    def formula(self) -> str:
        return self._formula

    @property
    def total(self) -> Optional[Number]:
        return self._total

    @property
    def terms(self) -> Tuple[Term, ...]:
        return tuple(self._terms)

    @property
    def evaluated(self) -> bool:
        return self._evaluated

    def evaluate(self, minimize: bool = False, maximize: bool = False) -> "Roll":
        if self._evaluated:
            return self

        try:
            self._terms = tokenize(self._formula)
            for term in self._terms:
                if isinstance(term, DiceTerm):
                    term.roll(self._rng, minimize=minimize, maximize=maximize)
            self._total = _Parser(self._terms).parse()
        except MalformedExpressionError as e:
            # TODO: surface malformed formulas to callers once table data is validated on import
            logger.warning(f"Malformed dice formula '{self._formula}', using 0: {e}")
            self._total = 0

        self._evaluated = True
        return self

    def to_result(self) -> RollResult:
        if not self._evaluated:
            self.evaluate()
        return RollResult(total=self._total, formula=self._formula, terms=tuple(self._terms))


def evaluate(formula: str, minimize: bool = False, maximize: bool = False, rng=None) -> RollResult:
    """Evaluate ``formula`` once, e.g. ``evaluate("2d20kh1 + 3")``."""
    return Roll(formula, rng=rng).evaluate(minimize=minimize, maximize=maximize).to_result()


def formula_domain(formula: str) -> Tuple[int, int]:
    """Smallest and largest totals ``formula`` can produce."""
    low = evaluate(formula, minimize=True).total
    high = evaluate(formula, maximize=True).total
    return int(min(low, high)), int(max(low, high))
