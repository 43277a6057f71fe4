"""
Unit tests for preprocessing steps and pipelines.

Tests each step's fit/apply contract, leak-freedom of learned state, and the
canonical step ordering.
"""

import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../src"))

from classifier_benchmark.exceptions import IncompatiblePipelineError, SchemaMismatchError
from classifier_benchmark.preprocessing import (
    CategoricalEncoding,
    CategoricalImputation,
    ConstantColumnRemoval,
    NumericImputation,
    PreprocessingPipeline,
    SchemaAlignment,
    standard_steps,
)


@pytest.fixture
def train():
    return pd.DataFrame(
        {
            "fare": [8.0, 12.0, np.nan, 10.0],
            "carrier": ["AA", "BB", None, "AA"],
            "constant": [1, 1, 1, 1],
        }
    )


class TestSchemaAlignment:
    """Tests for SchemaAlignment."""

    def test_unseen_value_goes_to_other_bucket(self, train):
        step = SchemaAlignment(other_bucket="other")
        state = step.fit(train)

        test = pd.DataFrame({"fare": [1.0, 2.0], "carrier": ["ZZ", "AA"], "constant": [1, 1]})
        out = step.apply(test, state)

        assert list(out["carrier"]) == ["other", "AA"]

    def test_missing_values_left_alone(self, train):
        step = SchemaAlignment(other_bucket="other")
        state = step.fit(train)

        out = step.apply(pd.DataFrame({"carrier": [None, "BB"]}), state)

        assert pd.isna(out["carrier"].iloc[0])
        assert out["carrier"].iloc[1] == "BB"

    def test_unseen_value_without_bucket_raises(self, train):
        step = SchemaAlignment(other_bucket=None)
        state = step.fit(train)

        with pytest.raises(SchemaMismatchError, match="carrier"):
            step.apply(pd.DataFrame({"carrier": ["ZZ"]}), state)

    def test_missing_column_raises(self, train):
        step = SchemaAlignment()
        state = step.fit(train)

        with pytest.raises(SchemaMismatchError, match="missing"):
            step.apply(pd.DataFrame({"fare": [1.0]}), state)

    def test_numeric_columns_not_tracked(self, train):
        state = SchemaAlignment().fit(train)
        assert set(state) == {"carrier"}

    def test_input_not_mutated(self, train):
        step = SchemaAlignment(other_bucket="other")
        state = step.fit(train)
        test = pd.DataFrame({"carrier": ["ZZ"]})

        step.apply(test, state)

        assert test["carrier"].iloc[0] == "ZZ"


class TestConstantColumnRemoval:
    """Tests for ConstantColumnRemoval."""

    def test_drops_constant_column(self, train):
        step = ConstantColumnRemoval()
        state = step.fit(train)

        assert state == ["constant"]
        assert "constant" not in step.apply(train, state).columns

    def test_drop_reapplied_regardless_of_test_variance(self, train):
        step = ConstantColumnRemoval()
        state = step.fit(train)

        test = pd.DataFrame({"fare": [1.0, 2.0], "carrier": ["AA", "BB"], "constant": [5, 7]})

        assert list(step.apply(test, state).columns) == ["fare", "carrier"]

    def test_all_missing_column_is_constant(self):
        table = pd.DataFrame({"a": [np.nan, np.nan], "b": [1.0, 2.0]})
        assert ConstantColumnRemoval().fit(table) == ["a"]


class TestCategoricalImputation:
    """Tests for CategoricalImputation."""

    def test_fill_value_drawn_from_observed(self, train):
        state = CategoricalImputation().fit(train, random_state=3)
        assert state["carrier"] in {"AA", "BB"}

    def test_same_seed_same_draw(self, train):
        step = CategoricalImputation()
        assert step.fit(train, random_state=11) == step.fit(train, random_state=11)

    def test_fill_value_reused_at_predict_time(self, train):
        step = CategoricalImputation()
        state = step.fit(train, random_state=5)

        test = pd.DataFrame({"carrier": [None, None, None, "CC"]})
        out = step.apply(test, state)

        assert list(out["carrier"]) == [state["carrier"]] * 3 + ["CC"]

    def test_single_category_always_drawn(self):
        table = pd.DataFrame({"c": ["x", None, "x"]})
        for seed in range(10):
            assert CategoricalImputation().fit(table, random_state=seed) == {"c": "x"}

    def test_column_without_observations_skipped(self):
        table = pd.DataFrame({"c": pd.Series([None, None], dtype=object)})
        assert CategoricalImputation().fit(table, random_state=0) == {}


class TestNumericImputation:
    """Tests for NumericImputation."""

    def test_fills_with_training_mean(self, train):
        step = NumericImputation()
        state = step.fit(train)

        assert state["fare"] == pytest.approx(10.0)
        assert step.apply(train, state)["fare"].iloc[2] == pytest.approx(10.0)

    def test_no_test_statistics_leak(self):
        step = NumericImputation()
        state = step.fit(pd.DataFrame({"x": [5.0, 15.0, np.nan]}))

        test = pd.DataFrame({"x": [40.0, 60.0, np.nan, np.nan]})
        out = step.apply(test, state)

        assert list(out["x"]) == [40.0, 60.0, 10.0, 10.0]

    def test_categorical_columns_ignored(self, train):
        state = NumericImputation().fit(train)
        assert "carrier" not in state


class TestCategoricalEncoding:
    """Tests for CategoricalEncoding."""

    def test_one_hot_expansion(self):
        step = CategoricalEncoding()
        table = pd.DataFrame({"x": [1.0, 2.0, 3.0], "c": ["a", "b", "a"]})
        state = step.fit(table)

        out = step.apply(table, state)

        assert list(out.columns) == ["x", "c_a", "c_b"]
        assert list(out["c_a"]) == [1.0, 0.0, 1.0]

    def test_identical_expansion_at_predict_time(self):
        step = CategoricalEncoding()
        state = step.fit(pd.DataFrame({"c": ["a", "b", "c"]}))

        out = step.apply(pd.DataFrame({"c": ["b", "z"]}), state)

        assert list(out.columns) == ["c_a", "c_b", "c_c"]
        assert out.iloc[0].tolist() == [0.0, 1.0, 0.0]
        assert out.iloc[1].tolist() == [0.0, 0.0, 0.0]

    def test_numeric_only_table_passes_through(self):
        step = CategoricalEncoding()
        table = pd.DataFrame({"x": [1.0, 2.0]})
        state = step.fit(table)

        pd.testing.assert_frame_equal(step.apply(table, state), table)


class TestPreprocessingPipeline:
    """Tests for PreprocessingPipeline composition and fitting."""

    def test_out_of_order_steps_rejected(self):
        with pytest.raises(IncompatiblePipelineError, match="out of order"):
            PreprocessingPipeline([NumericImputation(), SchemaAlignment()])

    def test_duplicate_steps_rejected(self):
        with pytest.raises(IncompatiblePipelineError, match="Duplicate"):
            PreprocessingPipeline([NumericImputation(), NumericImputation()])

    def test_concatenation(self):
        left = PreprocessingPipeline([SchemaAlignment()])
        combined = left + [NumericImputation()]

        assert [s.name for s in combined] == ["schema_alignment", "impute_mean"]
        assert len(left) == 1

    def test_concatenating_pipelines(self):
        combined = PreprocessingPipeline([ConstantColumnRemoval()]) + PreprocessingPipeline(
            [CategoricalEncoding()]
        )
        assert len(combined) == 2
        assert combined.encodes_categorical

    def test_standard_steps_fit_and_transform(self, train):
        fitted = standard_steps().fit(train, random_state=1)

        test = pd.DataFrame({"fare": [np.nan], "carrier": ["ZZ"], "constant": [3]})
        out = fitted.transform(test)

        assert "constant" not in out.columns
        assert out["fare"].iloc[0] == pytest.approx(10.0)
        assert not out.isna().any().any()
        assert all(np.issubdtype(dtype, np.number) for dtype in out.dtypes)

    def test_standard_steps_without_encoding(self):
        steps = standard_steps(requires_numeric=False)
        assert not steps.encodes_categorical
        assert steps.imputes_numeric and steps.imputes_categorical

    def test_fitted_states_are_independent(self, train):
        pipeline = PreprocessingPipeline([NumericImputation()])

        first = pipeline.fit(train)
        second = pipeline.fit(pd.DataFrame({"fare": [100.0, np.nan], "carrier": ["A", "B"], "constant": [1, 1]}))

        assert first.states[0]["fare"] == pytest.approx(10.0)
        assert second.states[0]["fare"] == pytest.approx(100.0)
