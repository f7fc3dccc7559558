"""General QSSA rate equation.

    Rate = Vmax / K_S * (prod(S) - prod(P) / Keq) / Z
    Z    = 1 + sum_terms prod(metabolites in term) / K_term

where ``K_S`` is the constant of the term binding all substrates. The reverse
maximal rate follows from the Haldane relation, so it never appears as a
parameter. Binding terms come from :func:`qssa_layout`.
"""

from __future__ import annotations

from typing import Any, Mapping

from enzyme_rate_model.mechanism.equation import (
    RateEquation,
    metab_list,
    product_of,
    resolve_keq,
    validate_spec_keywords,
)
from enzyme_rate_model.mechanism.terms import TermLayout, qssa_layout

QSSA_KEYWORDS = ("substrates", "products", "regulators", "Keq", "rate_equation_name", "max_binding_order")


class QSSARateLaw:
    def __init__(self, layout: TermLayout, substrates: list[str], products: list[str]) -> None:
        self.substrates = tuple(substrates)
        self.products = tuple(products)
        self.numerator_param = "K_" + "_".join(self.substrates)
        self.z_terms = tuple((term.params[0], term.metabs) for term in layout.terms)

    def __call__(self, metabs: Mapping[str, Any], params: Mapping[str, float], keq: float) -> Any:
        forward = product_of([metabs[m] for m in self.substrates])
        reverse = product_of([metabs[m] for m in self.products])
        z: Any = 1.0
        for param, members in self.z_terms:
            z = z + product_of([metabs[m] for m in members]) / params[param]
        return params["Vmax"] / params[self.numerator_param] * (forward - reverse / keq) / z


def _parse_qssa_spec(spec: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(spec or {})
    validate_spec_keywords(data, QSSA_KEYWORDS, "qssa")
    substrates = metab_list(data, "substrates", lo=1, hi=3, family="qssa")
    products = metab_list(data, "products", lo=1, hi=3, family="qssa")
    regulators = metab_list(data, "regulators", lo=0, hi=2, family="qssa")
    all_names = substrates + products + regulators
    if len(set(all_names)) != len(all_names):
        raise ValueError(f"qssa: metabolite names must be unique: {all_names}")
    max_order = data.get("max_binding_order")
    return {
        "substrates": substrates,
        "products": products,
        "regulators": regulators,
        "Keq": resolve_keq(data, "qssa"),
        "rate_equation_name": str(data.get("rate_equation_name") or "rate_equation"),
        "max_binding_order": None if max_order is None else int(max_order),
    }


def generate_qssa_metab_names(spec: Mapping[str, Any]) -> tuple[str, ...]:
    parsed = _parse_qssa_spec(spec)
    return tuple(parsed["substrates"] + parsed["products"] + parsed["regulators"])


def generate_qssa_param_names(spec: Mapping[str, Any]) -> tuple[str, ...]:
    parsed = _parse_qssa_spec(spec)
    layout = qssa_layout(
        parsed["substrates"],
        parsed["products"],
        parsed["regulators"],
        max_binding_order=parsed["max_binding_order"],
    )
    return layout.param_names


def build_qssa_rate_equation(spec: Mapping[str, Any]) -> RateEquation:
    parsed = _parse_qssa_spec(spec)
    layout = qssa_layout(
        parsed["substrates"],
        parsed["products"],
        parsed["regulators"],
        max_binding_order=parsed["max_binding_order"],
    )
    return RateEquation(
        rate_law=QSSARateLaw(layout, parsed["substrates"], parsed["products"]),
        metab_names=layout.metab_names,
        param_names=layout.param_names,
        keq=parsed["Keq"],
        name=parsed["rate_equation_name"],
        layout=layout,
    )
