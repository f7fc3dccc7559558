"""General MWC rate equation with paired active (a) and inactive (i) states.

    Z_s,cat = prod(1 + S/K_s,S) + prod(1 + P/K_s,P) - 1
              + sum(C/K_s,C) + sum(alpha_S_P * S/K_s,S * P/K_s,P)
    Z_s,reg = prod(1 + R/K_s,R)
    N_s     = Vmax_s / prod(K_s,S) * (prod(S) - prod(P) / Keq)

    Rate = (N_a Z_a,cat^(n-1) Z_a,reg^n + L N_i Z_i,cat^(n-1) Z_i,reg^n)
           / (Z_a,cat^n Z_a,reg^n + L Z_i,cat^n Z_i,reg^n)

with ``n`` the oligomeric state, ``C`` ligands competing for the catalytic site
and ``R`` allosteric regulators.
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
from enzyme_rate_model.mechanism.terms import mwc_layout

MWC_KEYWORDS = (
    "substrates",
    "products",
    "regulators",
    "cat_regulators",
    "oligomeric_state",
    "Keq",
    "rate_equation_name",
)


class MWCRateLaw:
    def __init__(
        self,
        substrates: list[str],
        products: list[str],
        regulators: list[str],
        cat_regulators: list[str],
        oligomeric_state: int,
    ) -> None:
        self.substrates = tuple(substrates)
        self.products = tuple(products)
        self.regulators = tuple(regulators)
        self.cat_regulators = tuple(cat_regulators)
        self.n = int(oligomeric_state)

    def _state_terms(self, state: str, metabs: Mapping[str, Any], params: Mapping[str, float], keq: float) -> tuple[Any, Any, Any]:
        s_ratio = {m: metabs[m] / params[f"K_{state}_{m}_cat"] for m in self.substrates}
        p_ratio = {m: metabs[m] / params[f"K_{state}_{m}_cat"] for m in self.products}

        z_cat = product_of([1.0 + v for v in s_ratio.values()]) + product_of([1.0 + v for v in p_ratio.values()]) - 1.0
        for m in self.cat_regulators:
            z_cat = z_cat + metabs[m] / params[f"K_{state}_{m}_cat"]
        for s in self.substrates:
            for p in self.products:
                z_cat = z_cat + params[f"alpha_{s}_{p}"] * s_ratio[s] * p_ratio[p]

        z_reg: Any = 1.0
        for m in self.regulators:
            z_reg = z_reg * (1.0 + metabs[m] / params[f"K_{state}_{m}_reg"])

        k_s = product_of([params[f"K_{state}_{m}_cat"] for m in self.substrates])
        driving = product_of([metabs[m] for m in self.substrates]) - product_of([metabs[m] for m in self.products]) / keq
        vmax = params["Vmax_a"] if state == "a" else params["Vmax_i"]
        numerator = vmax / k_s * driving
        return numerator, z_cat, z_reg

    def __call__(self, metabs: Mapping[str, Any], params: Mapping[str, float], keq: float) -> Any:
        n = self.n
        num_a, z_a_cat, z_a_reg = self._state_terms("a", metabs, params, keq)
        num_i, z_i_cat, z_i_reg = self._state_terms("i", metabs, params, keq)
        L = params["L"]
        top = num_a * z_a_cat ** (n - 1) * z_a_reg**n + L * num_i * z_i_cat ** (n - 1) * z_i_reg**n
        bottom = z_a_cat**n * z_a_reg**n + L * z_i_cat**n * z_i_reg**n
        return top / bottom


def _parse_mwc_spec(spec: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(spec or {})
    validate_spec_keywords(data, MWC_KEYWORDS, "mwc")
    substrates = metab_list(data, "substrates", lo=1, hi=3, family="mwc")
    products = metab_list(data, "products", lo=1, hi=3, family="mwc")
    regulators = metab_list(data, "regulators", lo=0, hi=4, family="mwc")
    cat_regulators = metab_list(data, "cat_regulators", lo=0, hi=2, family="mwc")
    cat_site = substrates + products + cat_regulators
    if len(set(cat_site)) != len(cat_site):
        raise ValueError(f"mwc: catalytic-site ligand names must be unique: {cat_site}")
    if len(set(regulators)) != len(regulators):
        raise ValueError(f"mwc: regulator names must be unique: {regulators}")
    if set(regulators) & set(substrates + products):
        raise ValueError("mwc: a substrate or product cannot also be an allosteric regulator")
    try:
        n = int(data.get("oligomeric_state", 4))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"mwc: invalid oligomeric_state: {data.get('oligomeric_state')!r}") from exc
    if n < 1:
        raise ValueError(f"mwc: oligomeric_state must be >= 1, got {n}")
    return {
        "substrates": substrates,
        "products": products,
        "regulators": regulators,
        "cat_regulators": cat_regulators,
        "oligomeric_state": n,
        "Keq": resolve_keq(data, "mwc"),
        "rate_equation_name": str(data.get("rate_equation_name") or "rate_equation"),
    }


def generate_mwc_metab_names(spec: Mapping[str, Any]) -> tuple[str, ...]:
    parsed = _parse_mwc_spec(spec)
    return mwc_layout(parsed["substrates"], parsed["products"], parsed["regulators"], parsed["cat_regulators"]).metab_names


def generate_mwc_param_names(spec: Mapping[str, Any]) -> tuple[str, ...]:
    parsed = _parse_mwc_spec(spec)
    return mwc_layout(parsed["substrates"], parsed["products"], parsed["regulators"], parsed["cat_regulators"]).param_names


def build_mwc_rate_equation(spec: Mapping[str, Any]) -> RateEquation:
    parsed = _parse_mwc_spec(spec)
    layout = mwc_layout(parsed["substrates"], parsed["products"], parsed["regulators"], parsed["cat_regulators"])
    return RateEquation(
        rate_law=MWCRateLaw(
            parsed["substrates"],
            parsed["products"],
            parsed["regulators"],
            parsed["cat_regulators"],
            parsed["oligomeric_state"],
        ),
        metab_names=layout.metab_names,
        param_names=layout.param_names,
        keq=parsed["Keq"],
        name=parsed["rate_equation_name"],
        layout=layout,
    )
