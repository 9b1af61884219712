"""
Cargo Pricing Formula Engine
Turns free-text deal formulas ("95% NBP - 0.25", "Henry Hub + 20%") into
prices against spot or forward-curve index values.

The normalizer is a fixed sequence of text rewrite passes; each pass is a
pure function so it can be tested on its own. The resulting expression is
evaluated by a small recursive-descent parser that only knows numbers,
+ - * / and parentheses.
"""

import logging
import math
import re

import numpy as np
import pandas as pd

from market_data import MarketDataStore, normalize_date_to_month

logger = logging.getLogger(__name__)

# Natural-language names -> market data keys
INDEX_ALIASES = {
    'henry hub': 'HH',
    'nymex hh': 'HH',
    'us gas': 'HH',
    'japan korea marker': 'JKM',
    'asian spot': 'JKM',
    'dutch ttf': 'TTF',
    'title transfer facility': 'TTF',
    'eur gas': 'TTF',
    'national balancing point': 'NBP',
    'uk gas': 'NBP',
    'japan crude cocktail': 'JCC',
    'brent': 'Dated Brent',
    'dated brent': 'Dated Brent',
    'ice brent': 'BRIPE',
    'stn2': 'STN 2',
    'stn 2': 'STN 2',
    'station 2': 'STN 2',
}

# Keywords that make a formula oil-priced (volumes in barrels)
OIL_KEYWORDS = ('brent', 'bripe', 'jcc', 'japan crude cocktail')
GAS_KEYWORDS = ('ttf', 'nbp', 'hh')

_ALLOWED_EXPRESSION = re.compile(r'[\d.\s+\-*/()]+')
_PLUS_PERCENT = re.compile(r'\+\s*(\d+(?:\.\d+)?)%(?:\s|$)')
_MINUS_PERCENT = re.compile(r'-\s*(\d+(?:\.\d+)?)%(?:\s|$)')
_BARE_PERCENT = re.compile(r'(\d+(?:\.\d+)?)%')
_ALPHA_GROUP = re.compile(r'\([^)]*[a-z][^)]*\)', re.IGNORECASE)
_ALPHA_RUN = re.compile(r'[a-z]+', re.IGNORECASE)
_TOKEN = re.compile(r'\s*(?:(\d+\.?\d*|\.\d+)|([+\-*/()]))')


class FormulaError(ValueError):
    """A formula that cannot be turned into a price."""


class NormalizationError(FormulaError):
    pass


class FormulaSyntaxError(FormulaError):
    pass


class FormulaEvaluationError(FormulaError):
    pass


def format_number(value) -> str:
    """Positional notation only; '1e-05' would lose its digits to the alpha strip."""
    return np.format_float_positional(float(value), trim='-')


def _whole_word(keys) -> re.Pattern:
    ordered = sorted(keys, key=len, reverse=True)
    alternation = '|'.join(re.escape(k) for k in ordered)
    return re.compile(rf'(?<!\w)(?:{alternation})(?!\w)', re.IGNORECASE)


# ============================================================
# NORMALIZER PASSES (applied in this order)
# ============================================================

def lowercase_pass(text: str) -> str:
    return text.lower()


def strip_symbols_pass(text: str) -> str:
    """Currency symbols and thousands separators out, en-dash to hyphen."""
    text = text.replace('–', '-')
    text = re.sub(r'[£$€¥]', '', text)
    return text.replace(',', '')


def word_operator_pass(text: str) -> str:
    text = re.sub(r'\bplus\b', '+', text)
    return re.sub(r'\bminus\b', '-', text)


def alias_pass(text: str, aliases: dict = None) -> str:
    """Replace index aliases with their codes, longest alias first.

    Single regex pass: a code written in by one alias ('Dated Brent') is
    never matched again by a shorter alias ('brent').
    """
    aliases = INDEX_ALIASES if aliases is None else aliases
    if not aliases:
        return text
    lookup = {k.lower(): v for k, v in aliases.items()}
    return _whole_word(lookup).sub(lambda m: lookup[m.group(0).lower()], text)


def percentage_pass(text: str) -> str:
    """'+ 20%' -> '* (1 + 0.2) ', '- 5%' -> '* (1 - 0.05) ', '95%' -> '0.95 *'."""
    text = _PLUS_PERCENT.sub(lambda m: f'* (1 + {format_number(float(m.group(1)) / 100)}) ', text)
    text = _MINUS_PERCENT.sub(lambda m: f'* (1 - {format_number(float(m.group(1)) / 100)}) ', text)
    return _BARE_PERCENT.sub(lambda m: f'{format_number(float(m.group(1)) / 100)} *', text)


def plus_minus_pass(text: str) -> str:
    """'+/-' escalators are priced as '+'."""
    return text.replace('+/-', '+')


def index_substitution_pass(text: str, context: dict) -> str:
    """Replace every index code in ``context`` with its value, longest code first."""
    if not context:
        return text
    lookup = {k.lower(): v for k, v in context.items()}
    return _whole_word(lookup).sub(lambda m: format_number(lookup[m.group(0).lower()]), text)


def drop_alpha_groups_pass(text: str) -> str:
    """Parenthesized groups still holding letters are contract placeholders like '(n)'."""
    return _ALPHA_GROUP.sub('', text)


def strip_alpha_pass(text: str) -> str:
    return _ALPHA_RUN.sub('', text)


def operator_cleanup_pass(text: str) -> str:
    text = re.sub(r'[+\-*/]\s*\Z', '', text, count=1)
    text = re.sub(r'\A\s*[+\-*/]', '', text, count=1)
    text = text.replace('++', '+')
    text = text.replace('--', '+')
    text = text.replace('+-', '-')
    return text.replace('-+', '-')


def validate_pass(text: str) -> str:
    if not text.strip() or not _ALLOWED_EXPRESSION.fullmatch(text):
        raise NormalizationError(f"Not a plain arithmetic expression: {text!r}")
    return text


def normalize_formula(formula: str, context: dict = None) -> str:
    """Run all rewrite passes; raises NormalizationError when the result is not pure arithmetic."""
    text = lowercase_pass(formula)
    text = strip_symbols_pass(text)
    text = word_operator_pass(text)
    text = alias_pass(text)
    text = percentage_pass(text)
    text = plus_minus_pass(text)
    text = index_substitution_pass(text, context or {})
    text = drop_alpha_groups_pass(text)
    text = strip_alpha_pass(text)
    text = operator_cleanup_pass(text)
    return validate_pass(text)


# ============================================================
# ARITHMETIC
# ============================================================

def tokenize(expression: str) -> list:
    tokens = []
    pos = 0
    expression = expression.rstrip()
    while pos < len(expression):
        m = _TOKEN.match(expression, pos)
        if not m:
            raise FormulaSyntaxError(f"Unexpected character at {pos} in {expression!r}")
        number, op = m.groups()
        tokens.append(float(number) if number is not None else op)
        pos = m.end()
    return tokens


class _Parser:
    """expression := term (('+'|'-') term)*
    term       := factor (('*'|'/') factor)*
    factor     := ('+'|'-')* (number | '(' expression ')')
    """

    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self):
        tok = self._peek()
        if tok is None:
            raise FormulaSyntaxError("Unexpected end of expression")
        self.pos += 1
        return tok

    def parse(self) -> float:
        value = self._expression()
        if self.pos != len(self.tokens):
            raise FormulaSyntaxError(f"Unexpected token {self.tokens[self.pos]!r}")
        return value

    def _expression(self) -> float:
        value = self._term()
        while self._peek() in ('+', '-'):
            if self._next() == '+':
                value += self._term()
            else:
                value -= self._term()
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in ('*', '/'):
            op = self._next()
            rhs = self._factor()
            if op == '*':
                value *= rhs
            elif rhs == 0:
                raise FormulaEvaluationError("Division by zero")
            else:
                value /= rhs
        return value

    def _factor(self) -> float:
        # Any run of unary signs folds into one
        negative = False
        tok = self._next()
        while tok in ('+', '-'):
            if tok == '-':
                negative = not negative
            tok = self._next()

        if tok == '(':
            value = self._expression()
            if self._next() != ')':
                raise FormulaSyntaxError("Missing closing parenthesis")
        elif isinstance(tok, float):
            value = tok
        else:
            raise FormulaSyntaxError(f"Unexpected token {tok!r}")
        return -value if negative else value


def evaluate_arithmetic(expression: str) -> float:
    """Evaluate a numbers-and-operators expression. Nothing else is executable."""
    try:
        return _Parser(tokenize(expression)).parse()
    except RecursionError:
        raise FormulaSyntaxError("Expression nested too deeply")


# ============================================================
# EVALUATOR
# ============================================================

def build_pricing_context(market: MarketDataStore = None, reference_date=None) -> dict:
    """Spot prices, overridden by the active forward curve row for the reference month."""
    if market is None:
        return {}
    context = market.get_spot_prices()
    if not reference_date:
        return context
    curve = market.get_forward_curve()
    if not curve:
        return context
    month = normalize_date_to_month(reference_date)
    for row in curve:
        if row.month == month:
            context.update(row.prices)
            break
    return context


def evaluate_formula(formula: str, market: MarketDataStore = None, reference_date=None):
    """Price ``formula`` for the month of ``reference_date``.

    Returns the price rounded to 3 decimals, or None when the formula
    cannot be priced. Callers keep their previous value on None.
    """
    if not isinstance(formula, str):
        raise TypeError(f"formula must be a string, got {type(formula).__name__}")
    if not formula.strip():
        return None

    context = build_pricing_context(market, reference_date)
    try:
        expression = normalize_formula(formula, context)
        result = evaluate_arithmetic(expression)
    except FormulaError as e:
        logger.debug(f"No price for {formula!r}: {e}")
        return None

    if not math.isfinite(result):
        logger.debug(f"No price for {formula!r}: non-finite result")
        return None
    return round(result, 3)


def detect_unit(formula: str) -> str:
    """'bbl' for oil-indexed formulas, 'MMBtu' otherwise."""
    if not formula:
        return 'MMBtu'
    lower = formula.lower()
    if any(k in lower for k in OIL_KEYWORDS):
        return 'bbl'
    return 'MMBtu'


def estimate_pricing_date(formula: str, delivery_date: str) -> str:
    """Date on which a cargo's floating price is expected to fix.

    JKM fixes mid previous month, European/US gas at the end of the
    previous month, oil at the end of the delivery month.
    """
    if not delivery_date:
        return ''
    if not formula:
        return delivery_date
    try:
        day = pd.Timestamp(delivery_date).normalize()
    except (ValueError, TypeError):
        return ''
    if pd.isna(day):
        return ''

    index = alias_pass(formula.lower()).lower()
    previous_month_end = day.replace(day=1) - pd.Timedelta(days=1)
    if 'jkm' in index:
        fixing = previous_month_end.replace(day=15)
    elif any(k in index for k in GAS_KEYWORDS):
        fixing = previous_month_end
    elif detect_unit(formula) == 'bbl':
        fixing = day + pd.offsets.MonthEnd(0)
    else:
        fixing = day
    return fixing.strftime('%Y-%m-%d')
