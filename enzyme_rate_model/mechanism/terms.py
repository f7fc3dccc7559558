"""Binding-polynomial term layout shared by the equation builders and the removal-code lattice.

A layout lists every removable term of a general rate equation, the parameters each
term owns, and the removal choices that are legal for it. The builders read the
layout to know which binding terms to evaluate; the lattice reads the same layout
to enumerate removal codes, so both always agree on which terms exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from itertools import combinations
from typing import Sequence


class TermChoice(IntEnum):
    PRESENT = 0
    ZERO = 1
    INFINITE = 2
    TIED = 3


PRESENT = TermChoice.PRESENT
ZERO = TermChoice.ZERO
INFINITE = TermChoice.INFINITE
TIED = TermChoice.TIED


@dataclass(frozen=True)
class BindingTerm:
    name: str
    kind: str
    params: tuple[str, ...]
    choices: tuple[int, ...]
    metabs: tuple[str, ...] = ()
    numerator: bool = False


@dataclass(frozen=True)
class TermLayout:
    family: str
    metab_names: tuple[str, ...]
    param_names: tuple[str, ...]
    always_free: tuple[str, ...]
    terms: tuple[BindingTerm, ...]

    @property
    def term_names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.terms)

    def term_index(self, name: str) -> int:
        for i, term in enumerate(self.terms):
            if term.name == name:
                return i
        raise KeyError(f"unknown term: {name}")


def forced_params(term: BindingTerm, choice: int) -> tuple[str, ...]:
    """Parameters of `term` that are not fitted under `choice`."""
    c = int(choice)
    if c == PRESENT:
        return ()
    if term.kind == "K_pair":
        if c == ZERO:
            return term.params
        if c in (INFINITE, TIED):
            return term.params[1:]
    elif term.kind in {"K", "Vmax_i", "L", "alpha"}:
        if c in (ZERO, TIED, INFINITE):
            return term.params
    raise ValueError(f"unsupported choice {c} for term {term.name} ({term.kind})")


def free_count(term: BindingTerm, choice: int) -> int:
    return len(term.params) - len(forced_params(term, choice))


def _k_name(metabs: Sequence[str]) -> str:
    return "K_" + "_".join(metabs)


def qssa_layout(
    substrates: Sequence[str],
    products: Sequence[str],
    regulators: Sequence[str] = (),
    *,
    max_binding_order: int | None = None,
) -> TermLayout:
    metab_names = tuple(list(substrates) + list(products) + list(regulators))
    order = len(metab_names) if max_binding_order is None else int(max_binding_order)
    if order < 1:
        raise ValueError("max_binding_order must be >= 1")

    numerator_sets = {tuple(substrates), tuple(products)}
    subsets: list[tuple[str, ...]] = []
    for size in range(1, len(metab_names) + 1):
        for combo in combinations(metab_names, size):
            if size <= order or combo in numerator_sets:
                subsets.append(combo)

    terms: list[BindingTerm] = []
    for combo in subsets:
        numerator = combo in numerator_sets
        if len(combo) == 1:
            choices = (PRESENT,) if numerator else (PRESENT, ZERO)
        else:
            choices = (PRESENT, TIED) if numerator else (PRESENT, ZERO, TIED)
        name = _k_name(combo)
        terms.append(
            BindingTerm(
                name=name,
                kind="K",
                params=(name,),
                choices=tuple(int(c) for c in choices),
                metabs=combo,
                numerator=numerator,
            )
        )

    param_names = ("Vmax",) + tuple(t.params[0] for t in terms)
    return TermLayout(
        family="qssa",
        metab_names=metab_names,
        param_names=param_names,
        always_free=("Vmax",),
        terms=tuple(terms),
    )


def mwc_layout(
    substrates: Sequence[str],
    products: Sequence[str],
    regulators: Sequence[str] = (),
    cat_regulators: Sequence[str] = (),
) -> TermLayout:
    metab_names: list[str] = []
    for name in list(substrates) + list(products) + list(cat_regulators) + list(regulators):
        if name not in metab_names:
            metab_names.append(name)

    terms: list[BindingTerm] = [
        BindingTerm(name="Vmax_i", kind="Vmax_i", params=("Vmax_i",), choices=(PRESENT, ZERO, TIED)),
        BindingTerm(name="L", kind="L", params=("L",), choices=(PRESENT, ZERO)),
    ]
    # active/inactive constants of one ligand form a single term so they move together
    for metab in list(substrates) + list(products):
        terms.append(
            BindingTerm(
                name=f"K_{metab}_cat",
                kind="K_pair",
                params=(f"K_a_{metab}_cat", f"K_i_{metab}_cat"),
                choices=(PRESENT, INFINITE, TIED),
                metabs=(metab,),
                numerator=True,
            )
        )
    for metab in cat_regulators:
        terms.append(
            BindingTerm(
                name=f"K_{metab}_cat",
                kind="K_pair",
                params=(f"K_a_{metab}_cat", f"K_i_{metab}_cat"),
                choices=(PRESENT, ZERO, INFINITE, TIED),
                metabs=(metab,),
            )
        )
    for metab in regulators:
        terms.append(
            BindingTerm(
                name=f"K_{metab}_reg",
                kind="K_pair",
                params=(f"K_a_{metab}_reg", f"K_i_{metab}_reg"),
                choices=(PRESENT, ZERO, INFINITE, TIED),
                metabs=(metab,),
            )
        )
    for s in substrates:
        for p in products:
            terms.append(
                BindingTerm(
                    name=f"alpha_{s}_{p}",
                    kind="alpha",
                    params=(f"alpha_{s}_{p}",),
                    choices=(PRESENT, ZERO),
                    metabs=(s, p),
                )
            )

    param_names: list[str] = ["Vmax_a"]
    for term in terms:
        param_names.extend(term.params)
    return TermLayout(
        family="mwc",
        metab_names=tuple(metab_names),
        param_names=tuple(param_names),
        always_free=("Vmax_a",),
        terms=tuple(terms),
    )
