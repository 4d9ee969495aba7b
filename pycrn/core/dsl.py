"""
Text format for reaction networks.

A network is written one reaction per line::

    # production and degradation
    @parameters p=1.0 d=0.2
    @species X=0
    (p, d), 0 <--> X
    k, 2X + Y --> Z
    hill(Z, v, K, n), 0 --> Y

Rates come first, then the reaction. ``-->``/``→`` is forward, ``<--``/``←``
backward and ``<-->``/``↔``/``⇌`` reversible (the rate is then a pair
``(forward, backward)``). The "fat" arrows ``=>``, ``<=``, ``<=>`` (and
``⇒``, ``⇐``, ``⇔``) use the rate verbatim instead of multiplying it by the
substrates. ``0`` or ``∅`` stands for nothing.

Names are resolved in two passes. The first collects declarations and every
reactant and product (those are species); the second parses the rates
against that registry, so any remaining name becomes a parameter unless the
network is strict, in which case it is an error.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import sympy as sp
from sympy.parsing.sympy_parser import parse_expr, standard_transformations, convert_xor

from .functions import RATE_FUNCTIONS
from .models import ReactionNetwork, Species, Parameter, t, TIME_NAME
from .reactions import MassActionReaction, RateLawReaction
from ..exceptions import DSLSyntaxError, NameCollisionError, UnresolvedSymbolError

logger = logging.getLogger(__name__)

_TRANSFORMATIONS = standard_transformations + (convert_xor,)

# (token, direction, only_use_rate), longest tokens first
_ARROWS = [
    ('<-->', 'both', False), ('<=>', 'both', True),
    ('-->', 'forward', False), ('<--', 'backward', False),
    ('=>', 'forward', True), ('<=', 'backward', True),
    ('↔', 'both', False), ('⇌', 'both', False), ('⇔', 'both', True),
    ('→', 'forward', False), ('⇒', 'forward', True),
    ('←', 'backward', False), ('⇐', 'backward', True),
]
_EMPTY_SIDES = {'', '0', '∅', 'nothing'}

_MATH_FUNCTIONS = {
    'exp': sp.exp, 'log': sp.log, 'sqrt': sp.sqrt, 'sin': sp.sin, 'cos': sp.cos,
    'tanh': sp.tanh, 'abs': sp.Abs, 'min': sp.Min, 'max': sp.Max,
}
_CALLABLES = dict(_MATH_FUNCTIONS, **RATE_FUNCTIONS)

_NAME_RE = re.compile(r'(?<![\w.])([^\W\d]\w*)')
_TERM_RE = re.compile(r'^(\d+)?\s*\*?\s*(.+?)\s*(\(\s*t\s*\))?$')
_DECL_RE = re.compile(r'([^\W\d]\w*)(?:\(\s*t\s*\))?\s*(?:=\s*([^\s,]+))?')
_TIME_CALL_RE = re.compile(r'(?<![\w.])([^\W\d]\w*)\s*\(\s*t\s*\)')


class _ReactionLine:
    def __init__(self, lineno, text, rate, lhs, rhs, direction, only_use_rate):
        self.lineno = lineno
        self.text = text
        self.rate = rate
        self.lhs = lhs
        self.rhs = rhs
        self.direction = direction
        self.only_use_rate = only_use_rate


def _split_top_level(text: str, sep: str = ',') -> List[str]:
    """Split on ``sep`` outside of parentheses."""
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in '([':
            depth += 1
        elif ch in ')]':
            depth -= 1
        if ch == sep and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(ch)
    parts.append(''.join(current))
    return parts


def _find_arrow(text: str) -> Optional[Tuple[int, str, str, bool]]:
    best = None
    for token, direction, only_rate in _ARROWS:
        pos = text.find(token)
        if pos >= 0 and (best is None or pos < best[0] or (pos == best[0] and len(token) > len(best[1]))):
            best = (pos, token, direction, only_rate)
    return best


def _parse_side(side: str, lineno: int, line: str) -> Dict[str, int]:
    side = side.strip()
    if side in _EMPTY_SIDES:
        return {}
    terms = {}
    for term in side.split('+'):
        term = term.strip()
        match = _TERM_RE.match(term)
        if not term or not match or not match.group(2).isidentifier():
            raise DSLSyntaxError(f"invalid reaction term '{term}'", lineno, line)
        stoich = int(match.group(1)) if match.group(1) else 1
        if stoich <= 0:
            raise DSLSyntaxError(f"stoichiometry of '{match.group(2)}' must be positive", lineno, line)
        name = match.group(2)
        terms[name] = terms.get(name, 0) + stoich
    return terms


def _parse_declaration(body: str, lineno: int, line: str) -> Dict[str, Optional[float]]:
    declared = {}
    for match in _DECL_RE.finditer(body):
        name, value = match.group(1), match.group(2)
        if value is None:
            declared[name] = None
            continue
        try:
            declared[name] = float(value)
        except ValueError:
            raise DSLSyntaxError(f"default value of '{name}' is not a number: {value!r}", lineno, line) from None
    if not declared:
        raise DSLSyntaxError("empty declaration", lineno, line)
    return declared


def _split_rate(rate: str, direction: str, lineno: int, line: str) -> List[str]:
    rate = rate.strip()
    is_tuple = False
    if rate.startswith('(') and rate.endswith(')'):
        inner = rate[1:-1]
        # Only a tuple if the opening parenthesis closes at the very end
        depth = 0
        closes_at_end = True
        for i, ch in enumerate(rate):
            depth += ch == '('
            depth -= ch == ')'
            if depth == 0 and i < len(rate) - 1:
                closes_at_end = False
                break
        pieces = _split_top_level(inner) if closes_at_end else [rate]
        is_tuple = len(pieces) > 1
    if direction == 'both':
        if not is_tuple or len(pieces) != 2:
            raise DSLSyntaxError("a reversible reaction needs a pair of rates '(forward, backward)'", lineno, line)
        return [p.strip() for p in pieces]
    if is_tuple:
        raise DSLSyntaxError("a single-direction reaction takes a single rate", lineno, line)
    return [rate]


def _scan(text: str):
    """First pass: declarations and reaction structure."""
    declared_species: Dict[str, Optional[float]] = {}
    declared_params: Dict[str, Optional[float]] = {}
    reaction_lines: List[_ReactionLine] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split('#', 1)[0].strip()
        if not line:
            continue
        if line.startswith('@'):
            directive, _, body = line.partition(' ')
            if directive == '@species':
                target = declared_species
            elif directive == '@parameters':
                target = declared_params
            else:
                raise DSLSyntaxError(f"unknown directive '{directive}'", lineno, raw)
            for name, value in _parse_declaration(body, lineno, raw).items():
                if name in target:
                    raise NameCollisionError(f"line {lineno}: '{name}' is declared twice")
                target[name] = value
            continue

        pieces = _split_top_level(line)
        if len(pieces) != 2:
            raise DSLSyntaxError("expected 'rate, reaction'", lineno, raw)
        rate, reaction = pieces
        arrow = _find_arrow(reaction)
        if arrow is None:
            raise DSLSyntaxError("no reaction arrow found", lineno, raw)
        pos, token, direction, only_rate = arrow
        lhs = _parse_side(reaction[:pos], lineno, raw)
        rhs = _parse_side(reaction[pos + len(token):], lineno, raw)
        rates = _split_rate(rate, direction, lineno, raw)
        reaction_lines.append(_ReactionLine(lineno, raw, rates, lhs, rhs, direction, only_rate))
    return declared_species, declared_params, reaction_lines


def _parse_rate(rate: str, local_dict: dict, inferred: Dict[str, sp.Symbol],
                species_names, strict: bool, rline: _ReactionLine) -> sp.Expr:
    """Second pass: resolve every name in a rate expression."""
    # X(t) is the same as X for species
    rate = _TIME_CALL_RE.sub(lambda m: m.group(1) if m.group(1) in species_names else m.group(0), rate)
    for match in _NAME_RE.finditer(rate):
        name = match.group(1)
        following = rate[match.end():].lstrip()
        if following.startswith('('):
            if name not in _CALLABLES:
                raise DSLSyntaxError(f"unknown function '{name}'", rline.lineno, rline.text)
            continue
        if name in local_dict:
            continue
        if strict:
            raise UnresolvedSymbolError(
                f"line {rline.lineno}: '{name}' is neither a declared species nor a declared parameter"
            )
        inferred[name] = sp.Symbol(name)
        local_dict[name] = inferred[name]
        logger.debug("line %d: inferred parameter '%s'", rline.lineno, name)
    try:
        expr = parse_expr(rate, local_dict=local_dict, transformations=_TRANSFORMATIONS)
    except (SyntaxError, TypeError, ValueError, sp.SympifyError) as exc:
        raise DSLSyntaxError(f"cannot parse rate '{rate}': {exc}", rline.lineno, rline.text) from exc
    return sp.sympify(expr)


def parse_network(text: str, name: str = 'network', strict: bool = False,
                  combinatoric_ratelaws: bool = False) -> ReactionNetwork:
    """
    Build a :class:`ReactionNetwork` from network text.

    Args:
        text (str): The network definition (see module docstring).
        name (str): Name of the network.
        strict (bool): Every species and parameter must be declared with
            ``@species``/``@parameters``.
        combinatoric_ratelaws (bool): See :class:`ReactionNetwork`.

    Returns:
        ReactionNetwork: The parsed network.
    """
    declared_species, declared_params, reaction_lines = _scan(text)

    for entity in list(declared_species) + list(declared_params):
        if entity == TIME_NAME:
            raise NameCollisionError(f"'{TIME_NAME}' is reserved for time and cannot be declared")
    both = set(declared_species) & set(declared_params)
    if both:
        raise NameCollisionError(f"declared both as species and parameter: {', '.join(sorted(both))}")

    # Species: declared first, then reactants and products in order of appearance
    species_order = list(declared_species)
    for rline in reaction_lines:
        for sp_name in list(rline.lhs) + list(rline.rhs):
            if sp_name == TIME_NAME:
                raise NameCollisionError(f"line {rline.lineno}: '{TIME_NAME}' cannot be a species")
            if sp_name in declared_params:
                raise NameCollisionError(
                    f"line {rline.lineno}: '{sp_name}' is declared as a parameter but used as a species"
                )
            if sp_name not in species_order:
                if strict:
                    raise UnresolvedSymbolError(f"line {rline.lineno}: species '{sp_name}' has not been declared")
                species_order.append(sp_name)

    species_objs = {}
    for sp_name in species_order:
        default = declared_species.get(sp_name)
        species_objs[sp_name] = Species(sp_name, initial_condition=0.0 if default is None else default)
    param_objs = {p_name: Parameter(p_name, default_value=v) for p_name, v in declared_params.items()}

    local_dict = {TIME_NAME: t}
    local_dict.update(_CALLABLES)
    local_dict.update({n: s.symbol for n, s in species_objs.items()})
    local_dict.update({n: p.symbol for n, p in param_objs.items()})

    inferred: Dict[str, sp.Symbol] = {}
    reactions = []
    for rline in reaction_lines:
        rates = [
            _parse_rate(r, local_dict, inferred, species_objs, strict, rline)
            for r in rline.rate
        ]
        lhs = {species_objs[n]: c for n, c in rline.lhs.items()}
        rhs = {species_objs[n]: c for n, c in rline.rhs.items()}
        cls = RateLawReaction if rline.only_use_rate else MassActionReaction
        if rline.direction in ('forward', 'both'):
            reactions.append(cls(f"r{len(reactions) + 1}", lhs, rhs, rates[0]))
        if rline.direction == 'backward':
            reactions.append(cls(f"r{len(reactions) + 1}", rhs, lhs, rates[0]))
        if rline.direction == 'both':
            reactions.append(cls(f"r{len(reactions) + 1}", rhs, lhs, rates[1]))

    network = ReactionNetwork(name, strict=strict, combinatoric_ratelaws=combinatoric_ratelaws)
    for s in species_objs.values():
        network.add_species(s)
    for p in param_objs.values():
        network.add_parameter(p)
    for p_name in inferred:
        network.add_parameter(Parameter(p_name))
    network.add_reactions(reactions)
    logger.debug("Parsed %r", network)
    return network


reaction_network = parse_network


def load_network(path, **kwargs) -> ReactionNetwork:
    """Parse a network text file; the name defaults to the file stem."""
    path = Path(path)
    kwargs.setdefault('name', path.stem)
    return parse_network(path.read_text(encoding='utf-8'), **kwargs)
