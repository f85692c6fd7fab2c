# ------------------------------------------------------------------------------
# Kinship pipeline driven by config.yaml.
# - Reads survival / fertility tables (CSV or RDS) from data_dir, plus optional
#   male rates, stage transitions and cause-specific hazards.
# - Runs model.kin() once with the [model] / [output] settings.
# - Writes kin_full.csv and kin_summary.csv to results_dir.
# ------------------------------------------------------------------------------


from __future__ import annotations
import os
import sys
import numpy as np
import pandas as pd

from data_loaders import (
    _load_config,
    read_rate_table,
    read_stage_transitions,
    read_cause_hazards,
)
from fertility import birth_female_from_srb, fertility_plausibility
from helpers import _coerce_list, _coerce_int_list
from model import kin
from mortality import life_expectancy

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
CONFIG_PATH = os.path.join(ROOT_DIR, "config.yaml")


def _data_path(paths: dict, fname):
    if not fname:
        return None
    return fname if os.path.isabs(fname) else os.path.join(paths["data_dir"], fname)


def _optional_table(paths: dict, fname, reader, *args):
    path = _data_path(paths, fname)
    if path is None:
        return None
    if not os.path.exists(path):
        print(f"[data] {os.path.basename(path)} not found at {path}; skipping.")
        return None
    return reader(path, *args)


def _columns_by_period(x):
    """Yield (label, vector) per period of a Series or ages x years DataFrame."""
    if isinstance(x, pd.DataFrame):
        for c in x.columns:
            yield c, x[c].to_numpy(dtype=float)
    else:
        yield None, np.asarray(x, dtype=float)


def _diagnostics(cfg: dict, px, fx, sex_label: str) -> None:
    diag = cfg.get("diagnostics", {})
    if bool(diag.get("life_expectancy", True)) and px is not None:
        for label, p in _columns_by_period(px):
            where = f" ({label})" if label is not None else ""
            who = f" {sex_label}" if sex_label else ""
            print(f"[mortality] e0{where}{who}: {life_expectancy(p):.2f}")
    if bool(diag.get("fertility_plausibility", True)) and fx is not None:
        ages = fx.index.to_numpy()
        for label, f in _columns_by_period(fx):
            fertility_plausibility(f, ages, period=label)


def _hazards_on_grid(h, n_ages: int):
    if h is None:
        return None
    return h.reindex(columns=range(n_ages), fill_value=0.0)


def run_pipeline(cfg: dict, paths: dict) -> dict:
    """
    Load inputs named in cfg["filenames"], run the kinship model and write the
    result tables. Returns {"kin_full": path or None, "kin_summary": path}.
    """
    files = cfg["filenames"]
    mcfg = cfg["model"]
    ocfg = cfg["output"]

    px = read_rate_table(_data_path(paths, files["px"]))
    fx = read_rate_table(_data_path(paths, files["fx"]))
    pm = _optional_table(paths, files.get("pm"), read_rate_table)
    fm = _optional_table(paths, files.get("fm"), read_rate_table)
    n_ages = len(px.index)
    print(f"[data] survival ages 0..{n_ages - 1}; "
          f"{px.shape[1] if isinstance(px, pd.DataFrame) else 1} period(s).")

    tx = _optional_table(paths, files.get("transitions"), read_stage_transitions, n_ages)
    tx_m = _optional_table(paths, files.get("transitions_m"), read_stage_transitions, n_ages)
    hz = _hazards_on_grid(_optional_table(paths, files.get("cause_hazards"), read_cause_hazards), n_ages)
    hz_m = _hazards_on_grid(_optional_table(paths, files.get("cause_hazards_m"), read_cause_hazards), n_ages)
    if tx is not None:
        print(f"[stages] age-stage model with {tx.shape[1]} stages.")
    if hz is not None:
        print(f"[causes] deaths split by {len(hz.index)} causes: {', '.join(hz.index)}")

    _diagnostics(cfg, px, fx, "female" if mcfg["sex"] == "two-sex" else "")
    if pm is not None or fm is not None:
        _diagnostics(cfg, pm, fm, "male")

    birth_female = mcfg.get("birth_female")
    if birth_female is None and mcfg.get("srb") is not None:
        birth_female = birth_female_from_srb(mcfg["srb"])

    years = _coerce_int_list(mcfg.get("years"))
    if years is not None and len(years) == 2 and years[1] - years[0] > 1:
        years = list(range(years[0], years[1] + 1))

    result = kin(
        px, fx,
        pm=pm, fm=fm,
        transitions=tx, transitions_m=tx_m,
        sex=mcfg["sex"],
        time_invariant=bool(mcfg["time_invariant"]),
        sex_focal=mcfg["sex_focal"],
        birth_female=birth_female,
        approximation=mcfg.get("approximation"),
        cause_hazards=hz, cause_hazards_m=hz_m,
        output_kin=_coerce_list(ocfg.get("kin")),
        output_year=_coerce_int_list(ocfg.get("year")),
        output_cohort=_coerce_int_list(ocfg.get("cohort")),
        summary_only=bool(ocfg.get("summary_only", False)),
        edge_policy=mcfg.get("edge_policy", "hold"),
        years=years,
        stages=_coerce_list(mcfg.get("stages")),
        progress=bool(ocfg.get("progress", True)),
    )
    v = result.variant
    print(f"[model] {v.sex_mode}, {v.time_mode}, {v.stage_mode}"
          f"{', ' + v.approximation if v.approximation else ''}.")

    os.makedirs(paths["results_dir"], exist_ok=True)
    out = {"kin_full": None, "kin_summary": os.path.join(paths["results_dir"], files["kin_summary"])}
    writes = [("kin_summary", result.kin_summary)]
    if result.kin_full is not None:
        out["kin_full"] = os.path.join(paths["results_dir"], files["kin_full"])
        writes.append(("kin_full", result.kin_full))
    for key, df in writes:
        df.to_csv(out[key], index=False)
    print(f"[output] {len(result.kin_summary)} summary rows"
          f"{'' if result.kin_full is None else f', {len(result.kin_full)} full rows'}"
          f" saved in {paths['results_dir']}")
    return out


def main(config_path: str = CONFIG_PATH) -> dict:
    cfg, paths = _load_config(ROOT_DIR, config_path)
    return run_pipeline(cfg, paths)


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else CONFIG_PATH)
