"""
Rail scalar transformer: parses date and gauge scalars with lark.

Dates and gauges are small languages of their own. They are described in
rail_grammar.lark and turned into model values by ScalarTransformer. A
Lark parser instance is kept per thread, so records can be parsed from a
worker pool without sharing parser state.
"""

import threading
from pathlib import Path

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from .rail_model import Date, Precision

GRAMMAR_PATH = Path(__file__).parent / "rail_grammar.lark"
with open(GRAMMAR_PATH, "r", encoding="utf-8") as f:
    SCALAR_GRAMMAR = f.read()

_PRECISIONS = {
    "c": Precision.CIRCA,
    "<": Precision.BEFORE,
    "b": Precision.BEFORE,
    ">": Precision.AFTER,
    "a": Precision.AFTER,
}

_local = threading.local()


def _digits(token, width: int, what: str) -> int:
    text = str(token)
    if len(text) != width:
        raise ValueError(f"{what} must have {width} digits, got '{text}'")
    return int(text)


@v_args(inline=True)
class ScalarTransformer(Transformer):
    """Transformer that converts date and gauge parse trees into values."""

    def date(self, *parts):
        """Assemble a Date from its tagged parts and validate it."""
        values = dict(parts)
        date = Date(
            year=values["year"],
            month=values.get("month"),
            day=values.get("day"),
            precision=values.get("precision", Precision.EXACT),
            doubt=values.get("doubt", False),
        )
        if not date.is_valid():
            raise ValueError(f"no such day: {date}")
        return date

    def precision(self, token):
        return ("precision", _PRECISIONS[str(token)])

    def year(self, token):
        return ("year", _digits(token, 4, "year"))

    def month(self, token):
        return ("month", _digits(token, 2, "month"))

    def day(self, token):
        return ("day", _digits(token, 2, "day"))

    def doubt(self):
        return ("doubt", True)

    def gauge(self, token):
        """Transform a gauge like '1435mm' into millimetres."""
        value = int(str(token))
        if value <= 0:
            raise ValueError(f"gauge must be positive, got {value}")
        return value


def scalar_parser() -> Lark:
    """Return this thread's scalar parser, building it on first use."""
    parser = getattr(_local, "parser", None)
    if parser is None:
        parser = Lark(SCALAR_GRAMMAR, start=["date", "gauge"], parser="lalr")
        _local.parser = parser
    return parser


def _parse(text: str, start: str):
    try:
        tree = scalar_parser().parse(text.strip(), start=start)
    except UnexpectedInput as e:
        raise ValueError(f"expected a {start}, got '{text}'") from e
    try:
        return ScalarTransformer().transform(tree)
    except VisitError as ve:
        # Unwrap so callers see the ValueError raised by the transformer
        raise ve.orig_exc from None


def parse_date(text: str) -> Date:
    """
    Parse a date scalar.

    Args:
        text: The date as written, e.g. 'c1884-05?' or '<1901'.

    Returns:
        The parsed Date.

    Raises:
        ValueError: If the text is not a valid date.
    """
    return _parse(text, "date")


def parse_gauge(text: str) -> int:
    """Parse a gauge scalar like '1435mm' into an integer of millimetres."""
    return _parse(text, "gauge")
