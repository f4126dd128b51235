"""
Angular-momentum coupling coefficients on doubled-spin labels.

All functions take labels ``2j`` (non-negative integers) so that half-integer
spins never appear as floats. The symbols are evaluated exactly with
:mod:`sympy.physics.wigner` and converted to ``float`` once; results are
memoised, so repeated evaluation inside tensor contractions is cheap and
bit-reproducible.

Selection rules are checked before calling sympy: every function returns
``0.0`` when a triad violates the triangle condition or the integer-sum
(parity) condition, instead of raising.

Conventions follow Edmonds, *Angular Momentum in Quantum Mechanics*
(Condon-Shortley phases). Reduced matrix elements satisfy
``<j||1||j> = sqrt(2j + 1)``.
"""

from __future__ import annotations
from functools import lru_cache
import math

from sympy import Rational
from sympy.physics.wigner import clebsch_gordan as _clebsch_gordan
from sympy.physics.wigner import wigner_3j as _wigner_3j
from sympy.physics.wigner import wigner_6j as _wigner_6j
from sympy.physics.wigner import wigner_9j as _wigner_9j


def _half(two_j: int) -> Rational:
    return Rational(int(two_j), 2)


def triangle(a: int, b: int, c: int) -> bool:
    """
    Check the triangle and parity condition for a triad of doubled spins.

    Parameters
    ----------
    a, b, c : int
        Doubled spins.

    Returns
    -------
    bool
        True if ``c`` is contained in ``a (x) b``.
    """
    if a < 0 or b < 0 or c < 0:
        return False
    if (a + b + c) % 2:
        return False
    return abs(a - b) <= c <= a + b


def phase(two_x: int) -> int:
    """Return ``(-1)**x`` for a doubled exponent ``2x`` that must be even."""
    if two_x % 2:
        raise ValueError(f"phase exponent {two_x}/2 is not an integer")
    return -1 if (two_x // 2) % 2 else 1


def _valid_projection(two_j: int, two_m: int) -> bool:
    return abs(two_m) <= two_j and (two_j + two_m) % 2 == 0


@lru_cache(maxsize=None)
def wigner_3j(a: int, b: int, c: int, ma: int, mb: int, mc: int) -> float:
    """Wigner 3j symbol ``(ja jb jc; ma mb mc)`` on doubled labels."""
    if ma + mb + mc != 0 or not triangle(a, b, c):
        return 0.0
    if not all(_valid_projection(j, m) for j, m in ((a, ma), (b, mb), (c, mc))):
        return 0.0
    return float(_wigner_3j(_half(a), _half(b), _half(c),
                            _half(ma), _half(mb), _half(mc)))


@lru_cache(maxsize=None)
def clebsch_gordan(a: int, b: int, c: int, ma: int, mb: int, mc: int) -> float:
    """Clebsch-Gordan coefficient ``<ja ma jb mb | jc mc>`` on doubled labels."""
    if ma + mb != mc or not triangle(a, b, c):
        return 0.0
    if not all(_valid_projection(j, m) for j, m in ((a, ma), (b, mb), (c, mc))):
        return 0.0
    return float(_clebsch_gordan(_half(a), _half(b), _half(c),
                                 _half(ma), _half(mb), _half(mc)))


@lru_cache(maxsize=None)
def wigner_6j(a: int, b: int, c: int, d: int, e: int, f: int) -> float:
    """Wigner 6j symbol ``{ja jb jc; jd je jf}`` on doubled labels."""
    triads = ((a, b, c), (a, e, f), (d, b, f), (d, e, c))
    if not all(triangle(*t) for t in triads):
        return 0.0
    return float(_wigner_6j(*(_half(x) for x in (a, b, c, d, e, f))))


@lru_cache(maxsize=None)
def wigner_9j(a: int, b: int, c: int,
              d: int, e: int, f: int,
              g: int, h: int, i: int) -> float:
    """Wigner 9j symbol with rows ``(a b c)``, ``(d e f)``, ``(g h i)``."""
    triads = ((a, b, c), (d, e, f), (g, h, i),
              (a, d, g), (b, e, h), (c, f, i))
    if not all(triangle(*t) for t in triads):
        return 0.0
    return float(_wigner_9j(*(_half(x) for x in (a, b, c, d, e, f, g, h, i))))


def recoupling_6j(j1: int, j2: int, j12: int, j3: int, J: int, j23: int) -> float:
    """
    Recoupling coefficient ``<(j1 j2)j12, j3; J | j1, (j2 j3)j23; J>``.

    Equal to ``(-1)**(j1+j2+j3+J) sqrt((2j12+1)(2j23+1)) {j1 j2 j12; j3 J j23}``.
    For fixed ``j1, j2, j3, J`` the coefficients form an orthogonal matrix
    indexed by ``j12`` and ``j23``.
    """
    value = wigner_6j(j1, j2, j12, j3, J, j23)
    if value == 0.0:
        return 0.0
    return phase(j1 + j2 + j3 + J) * math.sqrt((j12 + 1) * (j23 + 1)) * value


def recoupling_9j(j1: int, j2: int, j12: int,
                  j3: int, j4: int, j34: int,
                  j13: int, j24: int, J: int) -> float:
    """
    Recoupling coefficient ``<(j1 j2)j12,(j3 j4)j34; J | (j1 j3)j13,(j2 j4)j24; J>``.

    Equal to ``sqrt((2j12+1)(2j34+1)(2j13+1)(2j24+1))`` times the 9j symbol
    with rows ``(j1 j2 j12)``, ``(j3 j4 j34)``, ``(j13 j24 J)``.
    """
    value = wigner_9j(j1, j2, j12, j3, j4, j34, j13, j24, J)
    if value == 0.0:
        return 0.0
    return math.sqrt((j12 + 1) * (j34 + 1) * (j13 + 1) * (j24 + 1)) * value
