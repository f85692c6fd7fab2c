# src/data_loaders.py
import os
import yaml
import pyreadr
import pandas as pd
import numpy as np

from helpers import _age_index, _find_col


def return_default_config():
    """
    Returns the default configuration dictionary
    """
    return {
        "paths": {
            "data_dir": "./data",
            "results_dir": "./results",
        },
        "diagnostics": {
            "fertility_plausibility": True,
            "life_expectancy": True,
        },
        "model": {
            "sex": "one-sex",
            "time_invariant": True,
            "sex_focal": "f",
            "birth_female": None,
            "srb": None,
            "approximation": None,
            "edge_policy": "hold",
            "years": None,
            "stages": None,
        },
        "output": {
            "kin": None,
            "year": None,
            "cohort": None,
            "summary_only": False,
            "progress": True,
        },
        "filenames": {
            "px": "px.csv", "fx": "fx.csv",
            "pm": None, "fm": None,
            "transitions": None, "transitions_m": None,
            "cause_hazards": None, "cause_hazards_m": None,
            "kin_full": "kin_full.csv", "kin_summary": "kin_summary.csv",
        },
    }

def _resolve(ROOT_DIR, p):
    """
    Resolve path p relative to ROOT_DIR if not absolute.
    """
    return os.path.abspath(os.path.join(ROOT_DIR, p))

def _deep_merge(dst, src):
    """
    Recursively merge src into dst
    """
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v

def _load_config(ROOT_DIR: str, path: str):
    """
    Load YAML config if present; otherwise use defaults for both config and paths.
    Returns (cfg, PATHS)
    """
    cfg = return_default_config()
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as fh:
            user = yaml.safe_load(fh) or {}
        _deep_merge(cfg, user)
    else:
        print(f"[config] No config file at {path}; using built-in defaults.")

    PATHS = {
        "data_dir": _resolve(ROOT_DIR, cfg["paths"]["data_dir"]),
        "results_dir": _resolve(ROOT_DIR, cfg["paths"]["results_dir"]),
    }
    return cfg, PATHS

# ------------------------------- rate tables --------------------------------

def read_rds_file(file_path: str) -> pd.DataFrame:
    """
    Reads an RDS file and returns its contents as a pandas DataFrame.
    """
    try:
        result = pyreadr.read_r(file_path)
        return result[None]
    except Exception as e:
        raise RuntimeError(f"Failed to read {file_path}: {e}")

def _read_table(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")
    ext = os.path.splitext(path)[1].lower()
    if ext == ".rds":
        return read_rds_file(path)
    if ext in (".csv", ".txt"):
        return pd.read_csv(path)
    raise ValueError(f"Unsupported rate table format '{ext}' for {path} (use .csv or .rds).")

def read_rate_table(path: str):
    """
    Read an age-indexed rate table.

    Layouts
    -------
    - wide : an 'age' column plus one column per year (or a single value column);
             RDS matrices keep ages in the row names.
    - long : 'age', 'year' and one value column; pivoted to wide.

    Returns
    -------
    pd.Series (one value column) or pd.DataFrame (ages x years), indexed by age.
    """
    df = _read_table(path)
    age_col = _find_col(df, ["age"])
    year_col = _find_col(df, ["year"])

    if age_col is not None and year_col is not None:
        value_cols = [c for c in df.columns if c not in (age_col, year_col)]
        if len(value_cols) != 1:
            raise ValueError(f"Long rate table {path} needs exactly one value column, got {value_cols}.")
        wide = df.pivot_table(index=age_col, columns=year_col, values=value_cols[0], aggfunc="sum")
        wide.columns = [int(float(c)) for c in wide.columns]
        wide.index = pd.Index(_age_index(wide.index))
        return wide.sort_index()

    if age_col is not None:
        df = df.set_index(age_col)
    df.index = pd.Index(_age_index(df.index))
    df = df.apply(pd.to_numeric, errors="coerce")
    if df.shape[1] == 1:
        return df.iloc[:, 0].astype(float)
    return df.astype(float)

def read_stage_transitions(path: str, n_ages: int) -> np.ndarray:
    """
    Read stage transitions from a long table with columns age, from, to, value.

    Returns
    -------
    (ages, stages, stages) array; entry [a, to, from].
    """
    df = _read_table(path)
    age_col = _find_col(df, ["age"])
    from_col = _find_col(df, ["from"])
    to_col = _find_col(df, ["to"])
    if age_col is None or from_col is None or to_col is None:
        raise KeyError(f"{path} needs 'age', 'from' and 'to' columns.")
    value_cols = [c for c in df.columns if c not in (age_col, from_col, to_col)]
    if len(value_cols) != 1:
        raise ValueError(f"{path} needs exactly one value column, got {value_cols}.")
    stages = sorted(set(df[from_col]) | set(df[to_col]))
    pos = {s: i for i, s in enumerate(stages)}
    out = np.zeros((n_ages, len(stages), len(stages)))
    ages = _age_index(df[age_col])
    for a, s_from, s_to, v in zip(ages, df[from_col], df[to_col], df[value_cols[0]]):
        out[a, pos[s_to], pos[s_from]] += float(v)
    return out

def read_cause_hazards(path: str) -> pd.DataFrame:
    """
    Read cause-specific hazards with columns age, cause, value.

    Returns
    -------
    DataFrame (causes x ages), index = cause names.
    """
    df = _read_table(path)
    age_col = _find_col(df, ["age"])
    cause_col = _find_col(df, ["cause"])
    if age_col is None or cause_col is None:
        raise KeyError(f"{path} needs 'age' and 'cause' columns.")
    value_cols = [c for c in df.columns if c not in (age_col, cause_col)]
    if len(value_cols) != 1:
        raise ValueError(f"{path} needs exactly one value column, got {value_cols}.")
    df = df.assign(**{age_col: _age_index(df[age_col])})
    wide = df.pivot_table(index=cause_col, columns=age_col, values=value_cols[0],
                          aggfunc="sum", fill_value=0.0)
    wide.index = wide.index.astype(str)
    return wide.sort_index(axis=1)
