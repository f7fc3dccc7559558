"""Removal-code lattice.

A removal code holds one :class:`TermChoice` per term of a :class:`TermLayout`.
Its complexity is the number of parameters it leaves free. Stepwise selection
moves through the lattice one free parameter at a time: reverse selection
removes one, forward selection restores one.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Sequence

from enzyme_rate_model.mechanism.terms import PRESENT, TIED, BindingTerm, TermChoice, TermLayout, free_count
from enzyme_rate_model.selection.param_subset import free_param_names
from enzyme_rate_model.types import CandidateModel

Code = tuple[int, ...]


def _single_term_index(layout: TermLayout) -> dict[str, int]:
    out: dict[str, int] = {}
    for i, term in enumerate(layout.terms):
        if term.kind == "K" and len(term.metabs) == 1:
            out[term.metabs[0]] = i
    return out


def _tie_sources_present(layout: TermLayout, code: Sequence[int], term: BindingTerm, singles: dict[str, int]) -> bool:
    # a QSSA tie is the product of the term's single-metabolite constants, which must all be fitted
    for metab in term.metabs:
        idx = singles.get(metab)
        if idx is None or idx >= len(code) or int(code[idx]) != PRESENT:
            return False
    return True


def _choice_allowed(
    layout: TermLayout,
    code: Sequence[int],
    term: BindingTerm,
    choice: int,
    singles: dict[str, int],
) -> bool:
    if int(choice) not in term.choices:
        return False
    if term.kind == "K" and int(choice) == TIED and len(term.metabs) > 1:
        return _tie_sources_present(layout, code, term, singles)
    return True


def full_code(layout: TermLayout) -> Code:
    return tuple(int(PRESENT) for _ in layout.terms)


def code_complexity(layout: TermLayout, code: Sequence[int]) -> int:
    if len(code) != len(layout.terms):
        raise ValueError(f"removal code length {len(code)} does not match {len(layout.terms)} terms")
    return len(layout.always_free) + sum(free_count(term, int(c)) for term, c in zip(layout.terms, code))


def max_complexity(layout: TermLayout) -> int:
    return len(layout.param_names)


def is_valid_code(layout: TermLayout, code: Sequence[int]) -> bool:
    if len(code) != len(layout.terms):
        return False
    singles = _single_term_index(layout)
    for term, choice in zip(layout.terms, code):
        if not _choice_allowed(layout, code, term, int(choice), singles):
            return False
    return True


def _iter_codes(layout: TermLayout, num_params: int) -> Iterator[Code]:
    terms = layout.terms
    n = len(terms)
    singles = _single_term_index(layout)
    target = int(num_params) - len(layout.always_free)

    suffix_min = [0] * (n + 1)
    suffix_max = [0] * (n + 1)
    for i in range(n - 1, -1, -1):
        counts = [free_count(terms[i], c) for c in terms[i].choices]
        suffix_min[i] = suffix_min[i + 1] + min(counts)
        suffix_max[i] = suffix_max[i + 1] + max(counts)

    code: list[int] = []

    def _walk(i: int, remaining: int) -> Iterator[Code]:
        if remaining < suffix_min[i] or remaining > suffix_max[i]:
            return
        if i == n:
            yield tuple(code)
            return
        term = terms[i]
        for choice in term.choices:
            if not _choice_allowed(layout, code, term, choice, singles):
                continue
            code.append(int(choice))
            yield from _walk(i + 1, remaining - free_count(term, choice))
            code.pop()

    yield from _walk(0, target)


def codes_at_complexity(layout: TermLayout, num_params: int) -> list[Code]:
    """All valid codes leaving exactly ``num_params`` free parameters (sorted)."""
    if num_params < len(layout.always_free) or num_params > max_complexity(layout):
        return []
    return sorted(_iter_codes(layout, num_params))


def min_complexity(layout: TermLayout) -> int:
    for k in range(len(layout.always_free), max_complexity(layout) + 1):
        if next(_iter_codes(layout, k), None) is not None:
            return k
    raise ValueError("layout admits no valid removal code")


def _step_codes(
    layout: TermLayout,
    previous_codes: Iterable[Sequence[int]],
    num_params: int,
    delta: int,
) -> list[Code]:
    out: set[Code] = set()
    for parent_raw in previous_codes:
        parent = tuple(int(c) for c in parent_raw)
        if len(parent) != len(layout.terms):
            raise ValueError(f"removal code length {len(parent)} does not match {len(layout.terms)} terms")
        if code_complexity(layout, parent) + delta != num_params:
            continue
        for i, term in enumerate(layout.terms):
            current = free_count(term, parent[i])
            for choice in term.choices:
                if free_count(term, choice) != current + delta:
                    continue
                child = parent[:i] + (int(choice),) + parent[i + 1 :]
                if child in out or not is_valid_code(layout, child):
                    continue
                out.add(child)
    return sorted(out)


def reverse_selection_next_codes(layout: TermLayout, previous_codes: Iterable[Sequence[int]], num_params: int) -> list[Code]:
    """Codes with ``num_params`` free parameters, one fewer than a code in ``previous_codes``."""
    return _step_codes(layout, previous_codes, num_params, -1)


def forward_selection_next_codes(layout: TermLayout, previous_codes: Iterable[Sequence[int]], num_params: int) -> list[Code]:
    """Codes with ``num_params`` free parameters, one more than a code in ``previous_codes``."""
    return _step_codes(layout, previous_codes, num_params, +1)


def describe_code(layout: TermLayout, code: Sequence[int]) -> dict[str, str]:
    return {term.name: TermChoice(int(c)).name for term, c in zip(layout.terms, code)}


def code_to_str(code: Sequence[int]) -> str:
    return ",".join(str(int(c)) for c in code)


def parse_code(raw: str, layout: TermLayout) -> Code:
    tokens = [t.strip() for t in str(raw).replace(";", ",").split(",") if t.strip()]
    try:
        code = tuple(int(t) for t in tokens)
    except ValueError as exc:
        raise ValueError(f"invalid removal code: {raw!r}") from exc
    if not is_valid_code(layout, code):
        raise ValueError(f"removal code {raw!r} is not valid for this rate equation")
    return code


def candidate_model(layout: TermLayout, code: Sequence[int]) -> CandidateModel:
    key = tuple(int(c) for c in code)
    return CandidateModel(
        code=key,
        free_params=free_param_names(layout, key),
        complexity=code_complexity(layout, key),
    )
