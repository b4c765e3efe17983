
"""
Joint-Table Simulation Scaffold (Python)
========================================

Simulate categorical-covariate data from a known joint distribution and check that
empirical estimates converge to their theoretical values.

Overview
--------
Two categorical variables are modelled:

- S: a three-level covariate, S in {1, 2, 3}
- D: a binary covariate, D in {0, 1}

A fixed joint table P(S=s, D=d) over the six (S, D) cells and a fixed table of
conditional means E[Y | S=s, D=d] fully define the generative model:

    (S, D) ~ Categorical(joint table)
    Y | S, D ~ Normal(E[Y | S, D], spread²)

The module:

1. **Derives the theory** analytically: P(S), P(D), P(D | S), E[Y] and E[Y | S]
2. **Draws a synthetic sample** from the generative model with an explicit random stream
3. **Summarises the sample**: empirical P(S), P(D), E[Y | D, S] and mean(Y)
4. **Compares** empirical estimates with theory, with sampling standard errors
5. **Fits a linear model** Y ~ D + S as a regression diagnostic

Mathematical Framework
----------------------
With p(s, d) the joint table and μ(s, d) the conditional means:

    P(S=s)       = Σ_d p(s, d)
    P(D=d | S=s) = p(s, d) / P(S=s)
    E[Y]         = Σ_{s,d} p(s, d) μ(s, d)
    E[Y | S=s]   = Σ_d p(s, d) μ(s, d) / P(S=s)

Tables are keyed by ``Cell(s, d)`` rather than by position, so a table cannot be
silently misread by swapping row and column order.

Usage Example
-------------
>>> theory = compute_theory(DEFAULT_JOINT_TABLE, DEFAULT_MEAN_TABLE)
>>> round(theory.e_y, 2)
6.96
>>> df = generate_sample(n=50_000, spread=1.0, seed=2026)
>>> summary = summarize_sample(df)
>>> print(compare_to_theory(theory, summary, spread=1.0))

>>> # Full run with report
>>> results, theory, df, summary, comparison, model = run_demo(n=50_000, seed=2026)
>>> print(format_report(theory, summary, model))

Dependencies
------------
- numpy: Random number generation and arithmetic
- pandas: Dataset representation and aggregation
- statsmodels: Ordinary least squares fit for the regression diagnostic
- patsy: Formula interface for building design matrices

Notes
-----
The default conditional-mean table encodes E[Y | S=1, D=1] = 0. This is the value
the table has always carried; treat the tables as supplied configuration and pass
different ones through the ``joint`` and ``means`` arguments where needed.
"""

import logging
import math
from dataclasses import dataclass
from numbers import Integral
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from patsy import dmatrices

logger = logging.getLogger(__name__)

# -----------------
# Levels and tables
# -----------------

S_LEVELS: Tuple[int, ...] = (1, 2, 3)
D_LEVELS: Tuple[int, ...] = (0, 1)

PROB_TOL = 1e-9


class Cell(NamedTuple):
    """One (S, D) category pair. Plain ``(s, d)`` tuples hash and compare equal."""
    s: int
    d: int


# Canonical cell order; the sampler draws category indices over this sequence.
CELLS: Tuple[Cell, ...] = tuple(Cell(s, d) for d in D_LEVELS for s in S_LEVELS)

DEFAULT_JOINT_TABLE: Mapping[Cell, float] = MappingProxyType({
    Cell(1, 0): 0.36,
    Cell(2, 0): 0.12,
    Cell(3, 0): 0.12,
    Cell(1, 1): 0.08,
    Cell(2, 1): 0.12,
    Cell(3, 1): 0.20,
})

DEFAULT_MEAN_TABLE: Mapping[Cell, float] = MappingProxyType({
    Cell(1, 0): 4.0,
    Cell(2, 0): 6.0,
    Cell(3, 0): 10.0,
    Cell(1, 1): 0.0,
    Cell(2, 1): 10.0,
    Cell(3, 1): 12.0,
})


def _check_cells(table: Mapping[Any, float], name: str) -> Dict[Cell, float]:
    keys = {Cell(*key) if isinstance(key, tuple) and len(key) == 2 else key for key in table}
    missing = [c for c in CELLS if c not in keys]
    unknown = [k for k in keys if k not in CELLS]
    if missing:
        raise ValueError(f"{name} is missing entries for (S, D) pairs: {[tuple(c) for c in missing]}")
    if unknown:
        raise ValueError(f"{name} has entries for unknown (S, D) pairs: {unknown}")

    out = {}
    for cell in CELLS:
        value = float(table[cell])
        if not math.isfinite(value):
            raise ValueError(f"{name} entry for (S={cell.s}, D={cell.d}) is not finite: {value}")
        out[cell] = value
    return out


def validate_joint_table(table: Mapping[Any, float]) -> Dict[Cell, float]:
    """
    Check a joint probability table over the six (S, D) cells.

    Parameters
    ----------
    table : Mapping
        Probabilities keyed by ``Cell(s, d)`` (or equivalent ``(s, d)`` tuples).

    Returns
    -------
    Dict[Cell, float]
        A plain copy of the table keyed by ``Cell``.

    Raises
    ------
    ValueError
        If a cell is missing or unknown, a probability is non-finite or outside
        [0, 1], or the probabilities do not sum to 1 within ``PROB_TOL``.
    """
    out = _check_cells(table, "joint table")
    bad = [c for c, p in out.items() if p < 0.0 or p > 1.0]
    if bad:
        raise ValueError(
            "joint table probabilities must lie in [0, 1]; offending pairs: "
            + ", ".join(f"(S={c.s}, D={c.d}) = {out[c]}" for c in bad)
        )
    total = sum(out.values())
    if abs(total - 1.0) > PROB_TOL:
        raise ValueError(f"joint table probabilities sum to {total!r}, expected 1 (tolerance {PROB_TOL})")
    return out


def validate_mean_table(table: Mapping[Any, float]) -> Dict[Cell, float]:
    """Check a conditional-mean table has a finite entry for every (S, D) cell."""
    return _check_cells(table, "conditional-mean table")


def mean_table_from_matrix(matrix: Sequence[Sequence[float]]) -> Dict[Cell, float]:
    """
    Build a conditional-mean table from a 2 x 3 matrix.

    Rows are D = 0, 1 and columns are S = 1, 2, 3, matching the layout printed by
    ``table_to_frame``.

    Examples
    --------
    >>> table = mean_table_from_matrix([[4, 6, 10], [0, 10, 12]])
    >>> table[Cell(s=1, d=1)]
    0.0
    """
    arr = np.asarray(matrix, dtype=float)
    if arr.shape != (len(D_LEVELS), len(S_LEVELS)):
        raise ValueError(
            f"expected a {len(D_LEVELS)} x {len(S_LEVELS)} matrix (rows D, columns S), got shape {arr.shape}"
        )
    return validate_mean_table({
        Cell(s, d): arr[i, j] for i, d in enumerate(D_LEVELS) for j, s in enumerate(S_LEVELS)
    })


def table_to_frame(table: Mapping[Any, float]) -> pd.DataFrame:
    """Pivot a cell table into a DataFrame with rows D and columns S."""
    return pd.DataFrame(
        [[float(table[Cell(s, d)]) for s in S_LEVELS] for d in D_LEVELS],
        index=pd.Index(D_LEVELS, name="D"),
        columns=pd.Index(S_LEVELS, name="S"),
    )

# -----------------
# Configuration
# -----------------

@dataclass
class SimParams:
    """
    Run parameters for a single simulation.

    Attributes
    ----------
    n : int, default=50_000
        Number of records to draw. Large enough that empirical marginals sit within
        about 0.01 of theory.

    spread : float, default=1.0
        Standard deviation of every conditional Normal draw of Y. Must be > 0.

    seed : int, default=2026
        Seed for the run's private random stream.
    """
    n: int = 50_000
    spread: float = 1.0
    seed: Optional[int] = 2026

# -----------------
# Theory engine
# -----------------

@dataclass
class Theory:
    """
    Analytically derived quantities for a (joint table, mean table) pair.

    Attributes
    ----------
    p_s : pd.Series
        Marginal P(S), indexed by S.
    p_d : pd.Series
        Marginal P(D), indexed by D.
    p_d_given_s : pd.DataFrame
        Conditional P(D | S); rows S, columns D. Each row sums to 1.
    e_y : float
        Overall E[Y].
    e_y_given_s : pd.Series
        E[Y | S], indexed by S.
    mean_matrix : pd.DataFrame
        The conditional-mean table, rows D and columns S.
    """
    p_s: pd.Series
    p_d: pd.Series
    p_d_given_s: pd.DataFrame
    e_y: float
    e_y_given_s: pd.Series
    mean_matrix: pd.DataFrame


def compute_theory(joint: Mapping[Any, float] = DEFAULT_JOINT_TABLE,
                   means: Mapping[Any, float] = DEFAULT_MEAN_TABLE) -> Theory:
    """
    Derive marginals and conditional expectations from the joint and mean tables.

    Pure function: inputs are validated and copied, never modified, and repeated
    calls on the same tables return equal results.

    Parameters
    ----------
    joint : Mapping
        Joint probabilities P(S=s, D=d) keyed by ``Cell``.
    means : Mapping
        Conditional means E[Y | S=s, D=d] keyed by ``Cell``.

    Returns
    -------
    Theory
        P(S), P(D), P(D | S), E[Y], E[Y | S] and the mean matrix.

    Raises
    ------
    ValueError
        If either table is malformed, or P(S=s) is zero for some level, in which
        case P(D | S=s) and E[Y | S=s] are undefined.

    Examples
    --------
    >>> theory = compute_theory()
    >>> theory.p_s.round(2).tolist()
    [0.44, 0.24, 0.32]
    >>> round(theory.e_y_given_s[1], 4)
    3.2727
    """
    joint = validate_joint_table(joint)
    means = validate_mean_table(means)

    p_s = pd.Series({s: sum(joint[Cell(s, d)] for d in D_LEVELS) for s in S_LEVELS}, name="P(S)")
    p_s.index.name = "S"
    p_d = pd.Series({d: sum(joint[Cell(s, d)] for s in S_LEVELS) for d in D_LEVELS}, name="P(D)")
    p_d.index.name = "D"

    zero = [s for s in S_LEVELS if p_s[s] <= 0.0]
    if zero:
        raise ValueError(f"P(S={zero[0]}) is zero; P(D | S) and E[Y | S] are undefined for that level")

    p_d_given_s = pd.DataFrame(
        [[joint[Cell(s, d)] / p_s[s] for d in D_LEVELS] for s in S_LEVELS],
        index=pd.Index(S_LEVELS, name="S"),
        columns=pd.Index(D_LEVELS, name="D"),
    )

    e_y = float(sum(joint[c] * means[c] for c in CELLS))
    e_y_given_s = pd.Series(
        {s: sum(joint[Cell(s, d)] * means[Cell(s, d)] for d in D_LEVELS) / p_s[s] for s in S_LEVELS},
        name="E[Y|S]",
    )
    e_y_given_s.index.name = "S"

    return Theory(
        p_s=p_s,
        p_d=p_d,
        p_d_given_s=p_d_given_s,
        e_y=e_y,
        e_y_given_s=e_y_given_s,
        mean_matrix=table_to_frame(means),
    )

# -----------------
# Sampler
# -----------------

def generate_sample(n: int = 5000,
                    spread: float = 1.0,
                    seed: Optional[int] = None,
                    rng: Optional[np.random.Generator] = None,
                    joint: Mapping[Any, float] = DEFAULT_JOINT_TABLE,
                    means: Mapping[Any, float] = DEFAULT_MEAN_TABLE) -> pd.DataFrame:
    """
    Draw n independent (S, D, Y) records from the generative model.

    All n category indices are drawn first, in one batch, with the joint table as
    selection weights. Y is then drawn for each record, in record order, from
    Normal(E[Y | S, D], spread²).

    Parameters
    ----------
    n : int, default=5000
        Number of records. Must be a positive integer.
    spread : float, default=1.0
        Common standard deviation of the conditional draws of Y. Must be > 0.
    seed : int, optional
        Seed for a private ``np.random.default_rng`` stream. Same seed, n, spread
        and tables give an identical dataset.
    rng : np.random.Generator, optional
        Explicit random stream to draw from instead of a seed. The generator is
        advanced by the draws.
    joint, means : Mapping
        Joint probability and conditional-mean tables keyed by ``Cell``.

    Returns
    -------
    pd.DataFrame
        Columns S and D (categoricals over the full level sets) and Y (float).

    Raises
    ------
    ValueError
        On n <= 0 or non-integer n, spread <= 0 or non-finite, both ``seed`` and
        ``rng`` given, or malformed tables.
    """
    if isinstance(n, bool) or not isinstance(n, Integral) or n <= 0:
        raise ValueError(f"n must be a positive integer, got {n!r}")
    spread = float(spread)
    if not math.isfinite(spread) or spread <= 0.0:
        raise ValueError(f"spread must be a finite positive number, got {spread!r}")
    if seed is not None and rng is not None:
        raise ValueError("pass either seed or rng, not both")

    joint = validate_joint_table(joint)
    means = validate_mean_table(means)
    if rng is None:
        rng = np.random.default_rng(seed)

    probs = np.array([joint[c] for c in CELLS])
    mu = np.array([means[c] for c in CELLS])
    s_of = np.array([c.s for c in CELLS])
    d_of = np.array([c.d for c in CELLS])

    idx = rng.choice(len(CELLS), size=int(n), replace=True, p=probs)
    y = rng.normal(loc=mu[idx], scale=spread)
    logger.debug("drew %d records (spread=%s, seed=%s)", n, spread, seed)

    return pd.DataFrame({
        "S": pd.Categorical(s_of[idx], categories=list(S_LEVELS)),
        "D": pd.Categorical(d_of[idx], categories=list(D_LEVELS)),
        "Y": y,
    })


def simulate(params: SimParams,
             joint: Mapping[Any, float] = DEFAULT_JOINT_TABLE,
             means: Mapping[Any, float] = DEFAULT_MEAN_TABLE) -> pd.DataFrame:
    """
    Draw the dataset described by a ``SimParams`` configuration.

    Examples
    --------
    >>> df = simulate(SimParams(n=1000, spread=2.0, seed=5))
    >>> len(df)
    1000
    """
    return generate_sample(n=params.n, spread=params.spread, seed=params.seed, joint=joint, means=means)

# -----------------
# Empirical summary
# -----------------

@dataclass
class EmpiricalSummary:
    """Sample statistics matching the quantities in ``Theory``."""
    n: int
    p_s: pd.Series
    p_d: pd.Series
    group_means: pd.DataFrame
    mean_y: float


def summarize_sample(df: pd.DataFrame) -> EmpiricalSummary:
    """
    Aggregate a sampled dataset into empirical marginals and group means.

    Parameters
    ----------
    df : pd.DataFrame
        Dataset with columns S, D and Y, as returned by ``generate_sample``.

    Returns
    -------
    EmpiricalSummary
        - p_s / p_d: count per level divided by n, over every level (unseen levels
          report 0)
        - group_means: indexed by (D, S) for all six pairs, with columns ``n`` and
          ``mean_Y``; ``mean_Y`` is NaN for pairs with no observations
        - mean_y: overall mean of Y

    Notes
    -----
    Empty groups are expected at small n, so they surface as NaN rather than as
    an error.
    """
    missing = [c for c in ("S", "D", "Y") if c not in df.columns]
    if missing:
        raise ValueError(f"dataset is missing columns: {missing}")

    n = len(df)
    s_codes = df["S"].astype(int)
    d_codes = df["D"].astype(int)
    y = df["Y"].astype(float)

    p_s = s_codes.value_counts().reindex(list(S_LEVELS), fill_value=0) / n
    p_s.index.name = "S"
    p_s.name = "P(S)"
    p_d = d_codes.value_counts().reindex(list(D_LEVELS), fill_value=0) / n
    p_d.index.name = "D"
    p_d.name = "P(D)"

    grouped = (
        pd.DataFrame({"D": d_codes.to_numpy(), "S": s_codes.to_numpy(), "Y": y.to_numpy()})
        .groupby(["D", "S"])["Y"]
        .agg(["size", "mean"])
        .reindex(pd.MultiIndex.from_product([D_LEVELS, S_LEVELS], names=["D", "S"]))
    )
    group_means = pd.DataFrame({
        "n": grouped["size"].fillna(0).astype(int),
        "mean_Y": grouped["mean"].astype(float),
    })

    return EmpiricalSummary(
        n=n,
        p_s=p_s,
        p_d=p_d,
        group_means=group_means,
        mean_y=float(y.mean()) if n else float("nan"),
    )

# -----------------
# Theory vs. sample
# -----------------

def compare_to_theory(theory: Theory, summary: EmpiricalSummary, spread: Optional[float] = None) -> pd.DataFrame:
    """
    Line up empirical estimates against theory, one row per statistic.

    Parameters
    ----------
    theory : Theory
        Output of ``compute_theory``.
    summary : EmpiricalSummary
        Output of ``summarize_sample``.
    spread : float, optional
        Standard deviation used to generate Y. Needed for the standard errors of
        the Y means; without it those are NaN.

    Returns
    -------
    pd.DataFrame
        Indexed by statistic name (``P(S=1)``, ``P(D=0)``, ``E[Y|D=0,S=1]``, ...,
        ``E[Y]``) with columns ``theory``, ``empirical``, ``abs_diff`` and
        ``std_error``.

    Notes
    -----
    Standard errors are the sampling SDs implied by the theory:

    - proportions: sqrt(p(1-p)/n)
    - group means: spread / sqrt(n_group)
    - overall mean: sqrt(Var(Y)/n), Var(Y) = Σ p(s,d)(μ(s,d) - E[Y])² + spread²

    so ``abs_diff / std_error`` should stay within a few units and shrink in
    absolute terms as 1/sqrt(n).
    """
    n = summary.n
    sd = float("nan") if spread is None else float(spread)
    rows: List[Dict[str, Any]] = []

    def add(name, expected, observed, se):
        rows.append({
            "statistic": name,
            "theory": float(expected),
            "empirical": float(observed),
            "abs_diff": abs(float(observed) - float(expected)),
            "std_error": float(se),
        })

    for s in S_LEVELS:
        p = theory.p_s[s]
        add(f"P(S={s})", p, summary.p_s[s], math.sqrt(p * (1 - p) / n) if n else float("nan"))
    for d in D_LEVELS:
        p = theory.p_d[d]
        add(f"P(D={d})", p, summary.p_d[d], math.sqrt(p * (1 - p) / n) if n else float("nan"))

    for d in D_LEVELS:
        for s in S_LEVELS:
            count = summary.group_means.loc[(d, s), "n"]
            se = sd / math.sqrt(count) if count else float("nan")
            add(f"E[Y|D={d},S={s}]", theory.mean_matrix.loc[d, s], summary.group_means.loc[(d, s), "mean_Y"], se)

    between = sum(
        theory.p_s[s] * theory.p_d_given_s.loc[s, d] * (theory.mean_matrix.loc[d, s] - theory.e_y) ** 2
        for s in S_LEVELS for d in D_LEVELS
    )
    add("E[Y]", theory.e_y, summary.mean_y, math.sqrt((between + sd ** 2) / n) if n else float("nan"))

    return pd.DataFrame(rows).set_index("statistic")

# -----------------
# Regression diagnostic
# -----------------

def fit_linear_model(df: pd.DataFrame, formula: str = "Y ~ C(D) + C(S)") -> Any:
    """
    Fit an ordinary least squares model to the sampled data.

    The default formula treats D and S as categorical main effects. The model is
    additive, so it does not recover the cell means exactly when the mean table
    has an interaction.

    Parameters
    ----------
    df : pd.DataFrame
        Dataset with columns S, D and Y.
    formula : str
        Model formula in patsy syntax.

    Returns
    -------
    fitted model object
        statsmodels ``RegressionResults``; call ``.summary()`` for the table.
    """
    y, X = dmatrices(formula, data=df, return_type="dataframe")
    return sm.OLS(y, X).fit()

# -----------------
# Report
# -----------------

def format_report(theory: Theory, summary: EmpiricalSummary, model: Any = None) -> str:
    """
    Render the theory, empirical summary and optional regression as plain text.

    When the model has fewer than two observations or no residual degrees of
    freedom, statsmodels cannot build its summary table, so the regression
    section carries a one-line notice instead.
    """
    sections = [
        ("Theoretical marginal P(S):", theory.p_s.to_string()),
        ("Theoretical P(D | S):", theory.p_d_given_s.to_string()),
        ("E[Y | D,S] matrix (rows D; cols S):", theory.mean_matrix.to_string()),
        ("Theoretical overall E[Y]:", f"{theory.e_y:.6g}"),
        ("Theoretical E[Y | S]:", theory.e_y_given_s.to_string()),
        ("Empirical marginal P(S) (from simulation):", summary.p_s.to_string()),
        ("Empirical marginal P(D):", summary.p_d.to_string()),
        ("Empirical E[Y | D, S]:", summary.group_means.to_string()),
        ("Empirical overall mean(Y):", f"{summary.mean_y:.6g}"),
    ]
    if model is not None:
        if model.nobs < 2 or model.df_resid <= 0:
            body = f"regression summary unavailable (n={int(model.nobs)}, residual df={model.df_resid:g})"
        else:
            body = str(model.summary())
        sections.append(("Linear model Y ~ D + S:", body))
    return "\n\n".join(f"{title}\n{body}" for title, body in sections)

# -----------------
# Demo / single-run analysis
# -----------------

def run_demo(n: int = 50_000, spread: float = 1.0, seed: Optional[int] = 2026,
             joint: Mapping[Any, float] = DEFAULT_JOINT_TABLE,
             means: Mapping[Any, float] = DEFAULT_MEAN_TABLE
             ) -> Tuple[Dict[str, float], Theory, pd.DataFrame, EmpiricalSummary, pd.DataFrame, Any]:
    """
    Run theory, sampling, summary, comparison and regression in one pass.

    Returns
    -------
    tuple
        results : Dict[str, float]
            Headline numbers: sizes, E[Y] theory vs sample, and the largest absolute
            and standardised deviations across all compared statistics.
        theory : Theory
        df : pd.DataFrame
            The sampled dataset.
        summary : EmpiricalSummary
        comparison : pd.DataFrame
            Output of ``compare_to_theory``.
        model : fitted OLS results

    Examples
    --------
    >>> results, theory, df, summary, comparison, model = run_demo(n=20_000, seed=1)
    >>> results["n"]
    20000
    """
    params = SimParams(n=n, spread=spread, seed=seed)
    logger.info("running simulation with n=%d spread=%s seed=%s", params.n, params.spread, params.seed)

    theory = compute_theory(joint, means)
    df = simulate(params, joint=joint, means=means)
    summary = summarize_sample(df)
    comparison = compare_to_theory(theory, summary, spread=params.spread)
    model = fit_linear_model(df)

    z = comparison["abs_diff"] / comparison["std_error"]
    results = {
        "n": int(summary.n),
        "spread": float(params.spread),
        "theoretical_EY": float(theory.e_y),
        "empirical_mean_Y": float(summary.mean_y),
        "max_abs_diff_P_S": float(comparison.loc[[f"P(S={s})" for s in S_LEVELS], "abs_diff"].max()),
        "max_abs_diff_P_D": float(comparison.loc[[f"P(D={d})" for d in D_LEVELS], "abs_diff"].max()),
        "max_abs_z": float(z.max()),
        "empty_groups": int((summary.group_means["n"] == 0).sum()),
        "ols_r2": float(model.rsquared),
    }
    logger.info("E[Y] theory=%.4f sample=%.4f, max |z|=%.2f",
                results["theoretical_EY"], results["empirical_mean_Y"], results["max_abs_z"])
    return results, theory, df, summary, comparison, model


# -----------------
# Main execution
# -----------------

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    params = SimParams()
    results, theory, df, summary, comparison, model = run_demo(
        n=params.n, spread=params.spread, seed=params.seed
    )

    print(format_report(theory, summary, model))

    print("\n" + "Theory vs. Simulation" + "\n" + "-" * 21)
    print(comparison.to_string(float_format=lambda v: f"{v:.4f}"))
    print(f"\nLargest |P(S)| deviation: {results['max_abs_diff_P_S']:.4f}")
    print(f"Largest |P(D)| deviation: {results['max_abs_diff_P_D']:.4f}")
    print(f"Largest standardised deviation: {results['max_abs_z']:.2f}")
