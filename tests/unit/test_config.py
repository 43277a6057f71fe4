"""
Unit tests for configuration loading.

Tests defaults, YAML loading, environment overrides, validation, and the
factories built from a config.
"""

import os
import sys

import pytest
import yaml

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../src"))

from classifier_benchmark.config import DEFAULT_SEARCH_SPACES, BenchmarkConfig, load_config
from classifier_benchmark.exceptions import InvalidParameterSpaceError
from classifier_benchmark.resampling import Holdout, KFoldCV
from classifier_benchmark.tuning import IntegerRange

REPO_CONFIG = os.path.join(os.path.dirname(__file__), "../../config/benchmark.yaml")


def _write(tmp_path, options):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(options))
    return str(path)


class TestDefaults:
    """Tests for BenchmarkConfig defaults and validation."""

    def test_defaults(self):
        config = load_config(env={})

        assert config.folds == 5
        assert config.trial_budget == 20
        assert config.seed == 42
        assert config.target_metric == "auc"
        assert config.max_workers == 1
        assert config.unit_timeout is None
        assert config.other_bucket == ".other"
        assert "featureless" in config.learners

    def test_repository_config_loads(self):
        config = load_config(REPO_CONFIG, env={})

        assert config.direction == "maximize"
        assert set(config.search_spaces) == set(DEFAULT_SEARCH_SPACES)

    @pytest.mark.parametrize(
        "options",
        [
            {"folds": 1},
            {"trial_budget": -1},
            {"max_workers": 0},
            {"unit_timeout": 0},
            {"holdout_ratio": 1.5},
            {"target_metric": "f7"},
            {"target_metric": "fpr", "direction": "maximize"},
            {"learners": ["svm"]},
        ],
    )
    def test_invalid_values(self, options):
        with pytest.raises(ValueError):
            BenchmarkConfig(**options)

    def test_malformed_space_rejected(self):
        with pytest.raises(InvalidParameterSpaceError):
            BenchmarkConfig(search_spaces={"log_reg": {"C": {"lower": 10.0, "upper": 0.1}}})


class TestLoadConfig:
    """Tests for load_config."""

    def test_file_values(self, tmp_path):
        path = _write(tmp_path, {"folds": 3, "target_metric": "mcc", "stratify": True})
        config = load_config(path, env={})

        assert config.folds == 3
        assert config.target_metric == "mcc"
        assert config.stratify is True

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(tmp_path, {"n_folds": 3})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(path, env={})

    def test_file_spaces_merge_with_defaults(self, tmp_path):
        path = _write(tmp_path, {"search_spaces": {"decision_tree": {"max_depth": {"lower": 2, "upper": 3}}}})
        config = load_config(path, env={})

        assert config.search_space("decision_tree").params == {"max_depth": IntegerRange(2, 3)}
        assert config.search_spaces["random_forest"] == DEFAULT_SEARCH_SPACES["random_forest"]

    def test_env_overrides_file(self, tmp_path):
        path = _write(tmp_path, {"seed": 1, "folds": 3})
        config = load_config(path, env={"BENCHMARK_SEED": "99", "BENCHMARK_MAX_WORKERS": "4"})

        assert config.seed == 99
        assert config.max_workers == 4
        assert config.folds == 3

    def test_bad_env_value(self):
        with pytest.raises(ValueError, match="BENCHMARK_FOLDS"):
            load_config(env={"BENCHMARK_FOLDS": "five"})

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path), env={}).folds == 5


class TestFactories:
    """Tests for objects built from a config."""

    def test_kfold_by_default(self):
        resampling = BenchmarkConfig(folds=4, seed=7).make_resampling()

        assert isinstance(resampling, KFoldCV)
        assert resampling.folds == 4
        assert resampling.seed == 7

    def test_holdout_when_ratio_set(self):
        resampling = BenchmarkConfig(holdout_ratio=0.75).make_resampling()

        assert isinstance(resampling, Holdout)
        assert resampling.ratio == 0.75

    def test_runner_and_tuner(self):
        config = BenchmarkConfig(seed=5, max_workers=3, unit_timeout=2.0)

        runner = config.make_runner()
        tuner = config.make_tuner()

        assert (runner.seed, runner.max_workers, runner.unit_timeout) == (5, 3, 2.0)
        assert (tuner.seed, tuner.max_workers) == (5, 3)

    def test_unknown_search_space(self):
        with pytest.raises(KeyError):
            BenchmarkConfig().search_space("featureless")
