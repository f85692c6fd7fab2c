"""
Tests for main_compute.py: the config-driven kinship pipeline.
Inputs are written to a temporary data_dir; outputs are read back from results_dir.
"""

import os
import sys

import numpy as np
import pandas as pd
import pytest
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from data_loaders import return_default_config, _deep_merge
from errors import KinConfigError
from main_compute import main, run_pipeline

PX = [0.98, 0.97, 0.95, 0.93, 0.9, 0.85, 0.8, 0.6, 0.0]
FX = [0.0, 0.0, 0.3, 0.5, 0.4, 0.2, 0.0, 0.0, 0.0]


def _write_rates(data_dir, wide=False):
    os.makedirs(data_dir, exist_ok=True)
    ages = list(range(len(PX)))
    if wide:
        pd.DataFrame({'age': ages, '2000': PX, '2001': PX}).to_csv(os.path.join(data_dir, 'px.csv'), index=False)
        pd.DataFrame({'age': ages, '2000': FX, '2001': FX}).to_csv(os.path.join(data_dir, 'fx.csv'), index=False)
    else:
        pd.DataFrame({'age': ages, 'px': PX}).to_csv(os.path.join(data_dir, 'px.csv'), index=False)
        pd.DataFrame({'age': ages, 'fx': FX}).to_csv(os.path.join(data_dir, 'fx.csv'), index=False)


def _setup(tmp_path, overrides=None, wide=False):
    cfg = return_default_config()
    _deep_merge(cfg, overrides or {})
    paths = {'data_dir': str(tmp_path / 'data'), 'results_dir': str(tmp_path / 'results')}
    _write_rates(paths['data_dir'], wide=wide)
    return cfg, paths


# ======================= TESTS =======================

class TestRunPipeline:
    """Test end-to-end runs"""

    def test_writes_both_tables(self, tmp_path):
        """Test that the full and summary tables are written"""
        cfg, paths = _setup(tmp_path, {'output': {'kin': ['d', 'm'], 'progress': False}})
        out = run_pipeline(cfg, paths)
        assert os.path.exists(out['kin_full'])
        assert os.path.exists(out['kin_summary'])
        summary = pd.read_csv(out['kin_summary'])
        assert set(summary['kin']) == {'d', 'm'}
        assert len(summary) == 2 * len(PX)

    def test_summary_only(self, tmp_path):
        """Test that summary_only skips the full table"""
        cfg, paths = _setup(tmp_path, {'output': {'kin': 'd', 'summary_only': True, 'progress': False}})
        out = run_pipeline(cfg, paths)
        assert out['kin_full'] is None
        assert not os.path.exists(os.path.join(paths['results_dir'], 'kin_full.csv'))

    def test_time_varying_year(self, tmp_path):
        """Test a time-varying run restricted to one year"""
        cfg, paths = _setup(tmp_path, {
            'model': {'time_invariant': False},
            'output': {'kin': ['m'], 'year': 2001, 'progress': False},
        }, wide=True)
        out = run_pipeline(cfg, paths)
        summary = pd.read_csv(out['kin_summary'])
        assert set(summary['year']) == {2001}
        assert (summary['cohort'] == 2001 - summary['age_focal']).all()

    def test_two_sex_androgynous(self, tmp_path):
        """Test a two-sex run from female rates only"""
        cfg, paths = _setup(tmp_path, {
            'model': {'sex': 'two-sex', 'approximation': 'androgynous', 'srb': 1.05},
            'output': {'kin': ['d'], 'progress': False},
        })
        out = run_pipeline(cfg, paths)
        summary = pd.read_csv(out['kin_summary'])
        assert set(summary['sex_kin']) == {'f', 'm'}

    def test_cause_hazards(self, tmp_path):
        """Test that cause-specific deaths add up to all deaths"""
        cfg, paths = _setup(tmp_path, {
            'filenames': {'cause_hazards': 'hz.csv'},
            'output': {'kin': ['m'], 'progress': False},
        })
        ages = list(range(len(PX)))
        pd.DataFrame({
            'age': ages * 2,
            'cause': ['flu'] * len(ages) + ['other'] * len(ages),
            'hazard': [0.01] * len(ages) + [0.02] * len(ages),
        }).to_csv(os.path.join(paths['data_dir'], 'hz.csv'), index=False)
        out = run_pipeline(cfg, paths)
        summary = pd.read_csv(out['kin_summary'])
        np.testing.assert_allclose(
            summary['count_cum_dead_flu'] + summary['count_cum_dead_other'],
            summary['count_cum_dead'],
        )

    def test_missing_optional_table_skipped(self, tmp_path, capsys):
        """Test that a missing optional table is skipped with a notice"""
        cfg, paths = _setup(tmp_path, {
            'filenames': {'cause_hazards': 'absent.csv'},
            'output': {'kin': ['d'], 'progress': False},
        })
        run_pipeline(cfg, paths)
        assert 'skipping' in capsys.readouterr().out

    def test_config_errors_propagate(self, tmp_path):
        """Test that configuration errors reach the caller"""
        cfg, paths = _setup(tmp_path, {'output': {'kin': ['uncles'], 'progress': False}})
        with pytest.raises(KinConfigError):
            run_pipeline(cfg, paths)

    def test_status_lines(self, tmp_path, capsys):
        """Test the printed status lines"""
        cfg, paths = _setup(tmp_path, {'output': {'kin': ['d'], 'progress': False}})
        run_pipeline(cfg, paths)
        printed = capsys.readouterr().out
        assert '[model] one-sex, time-invariant, age.' in printed
        assert '[output]' in printed

    def test_tables_written_without_progress_bar(self, tmp_path, capsys):
        """Test that writing both tables draws no progress bar"""
        cfg, paths = _setup(tmp_path, {'output': {'kin': ['d'], 'progress': False}})
        out = run_pipeline(cfg, paths)
        assert os.path.exists(out['kin_full'])
        assert 'Writing tables' not in capsys.readouterr().err


class TestMain:
    """Test config loading from a YAML file"""

    def test_main_reads_yaml(self, tmp_path, monkeypatch):
        """Test running the pipeline from a YAML config"""
        import main_compute
        monkeypatch.setattr(main_compute, 'ROOT_DIR', str(tmp_path))
        _write_rates(str(tmp_path / 'data'))
        config_path = tmp_path / 'config.yaml'
        with open(config_path, 'w', encoding='utf-8') as fh:
            yaml.safe_dump({'output': {'kin': ['gm'], 'progress': False}}, fh)
        out = main(str(config_path))
        summary = pd.read_csv(out['kin_summary'])
        assert set(summary['kin']) == {'gm'}
        assert out['kin_summary'].startswith(str(tmp_path))
