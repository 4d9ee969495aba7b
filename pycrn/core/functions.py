"""
Common non-mass-action rate functions.

These return plain sympy expressions, so they can be used both when building
reactions in Python and inside rate expressions of the network text format.
"""

import sympy as sp


def _expr(value):
    return sp.sympify(value)


def mm(X, v, K):
    """Michaelis-Menten rate: v * X / (X + K)."""
    X, v, K = _expr(X), _expr(v), _expr(K)
    return v * X / (X + K)


def mmr(X, v, K):
    """Repressive Michaelis-Menten rate: v * K / (X + K)."""
    X, v, K = _expr(X), _expr(v), _expr(K)
    return v * K / (X + K)


def hill(X, v, K, n):
    """Hill activation: v * X^n / (X^n + K^n)."""
    X, v, K, n = _expr(X), _expr(v), _expr(K), _expr(n)
    return v * X**n / (X**n + K**n)


def hillr(X, v, K, n):
    """Hill repression: v * K^n / (X^n + K^n)."""
    X, v, K, n = _expr(X), _expr(v), _expr(K), _expr(n)
    return v * K**n / (X**n + K**n)


RATE_FUNCTIONS = {
    "mm": mm,
    "mmr": mmr,
    "hill": hill,
    "hillr": hillr,
}
