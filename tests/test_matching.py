"""End-to-end tests for post-matching on a hand-built container."""

import logging

import numpy as np
import pytest

from MPM_v0_1.analysis import analyze_group, working_frame
from MPM_v0_1.exceptions import ConsistencyError, DataCoverageError, DomainError, StateError
from MPM_v0_1.matching import assemble_matches, match_group, one_hot_violations, post_matching
from MPM_v0_1.validation import MatchingOptions


def _stacked(container, group):
    return np.stack([container.imp[j] for j in group], axis=-1)


class TestPostMatching:

    def test_raw_imputations_violate_one_hot(self, container, group):
        assert len(one_hot_violations(container, [group])) == 4 * container.m

    @pytest.mark.parametrize("metric", ["manhattan", "euclidian", "mahalanobis", "residual"])
    @pytest.mark.parametrize("policy", [0, 1, 2])
    def test_output_is_one_hot(self, container, group, metric, policy):
        out = post_matching(container, [group], distance_metric=metric, selection_policy=policy, seed=1)
        assert one_hot_violations(out, [group]) == []

    def test_imputations_are_donor_patterns(self, container, group):
        out = post_matching(container, [group], seed=2)
        observed = {tuple(row) for row in container.data.iloc[:6, 1:4].to_numpy()}
        for row in _stacked(out, group).reshape(-1, len(group)):
            assert tuple(row) in observed

    def test_match_variable_restricts_donors(self, container, group):
        out = post_matching(container, [group], match_vars=[4], donors=3, seed=3)
        stacked = _stacked(out, group)
        # recipients 6 and 8 are in region 1 (levels a/b), 7 and 9 in region 2 (levels c/b)
        assert (stacked[[0, 2], :, 2] == 0).all()
        assert (stacked[[1, 3], :, 0] == 0).all()

    def test_match_variable_by_name(self, container, group):
        a = post_matching(container, [group], match_vars="region", seed=4)
        b = post_matching(container, [group], match_vars=[4], seed=4)
        np.testing.assert_array_equal(_stacked(a, group), _stacked(b, group))

    def test_same_seed_same_result(self, container, group):
        a = post_matching(container, [group], seed=5)
        b = post_matching(container, [group], seed=5)
        np.testing.assert_array_equal(_stacked(a, group), _stacked(b, group))

    def test_seed_accepts_generator(self, container, group):
        a = post_matching(container, [group], seed=np.random.default_rng(6))
        b = post_matching(container, [group], seed=np.random.default_rng(6))
        np.testing.assert_array_equal(_stacked(a, group), _stacked(b, group))

    def test_threads_do_not_change_result(self, container, group):
        a = post_matching(container, [group], seed=7, n_jobs=1)
        b = post_matching(container, [group], seed=7, n_jobs=3)
        np.testing.assert_array_equal(_stacked(a, group), _stacked(b, group))

    def test_input_is_not_modified(self, container, group):
        before = {j: v.copy() for j, v in container.imp.items()}
        post_matching(container, [group], seed=8)
        for j, v in before.items():
            np.testing.assert_array_equal(container.imp[j], v)

    def test_other_fields_unchanged(self, container, group):
        out = post_matching(container, [group], seed=9)
        assert out is not container
        np.testing.assert_array_equal(out.where, container.where)
        assert out.method == container.method
        assert out.visit_sequence == container.visit_sequence
        assert out.data.equals(container.data)

    def test_groups_default_to_detected(self, container, group):
        out = post_matching(container, seed=10)
        assert one_hot_violations(out, [group]) == []

    def test_weights(self, container, group):
        out = post_matching(container, [group], weights=[1, 2, 3], seed=11)
        assert one_hot_violations(out, [group]) == []

    def test_logs_summary(self, container, group, caplog):
        with caplog.at_level(logging.INFO, logger="MPM_v0_1.matching"):
            post_matching(container, [group], seed=12)
        assert "post_matching: 1 group(s)" in caplog.text


class TestPostMatchingErrors:

    def test_invalid_option_fails_before_matching(self, container, group):
        with pytest.raises(DomainError):
            post_matching(container, [group], donors=0)

    def test_invalid_group(self, container):
        with pytest.raises(ConsistencyError):
            post_matching(container, [[0, 1]])

    def test_uncovered_match_value(self, container, group):
        container.data.loc[9, "region"] = 3
        with pytest.raises(DataCoverageError):
            post_matching(container, [group], match_vars=[4])

    def test_single_pmm_column(self, container):
        with pytest.raises(StateError):
            post_matching(container, [1])

    def test_n_jobs(self, container, group):
        with pytest.raises(DomainError):
            post_matching(container, [group], n_jobs=0)

    def test_n_jobs_fails_before_analysis(self, container, group):
        container.data.loc[9, "region"] = 3
        with pytest.raises(DomainError):
            post_matching(container, [group], match_vars=[4], n_jobs=0)


def test_match_group_returns_donor_rows(container, group):
    elig = analyze_group(container, working_frame(container), group, match_var=4)
    frame = container.complete(0, only_unobserved=True)
    rec, chosen = match_group(frame, container, elig, None, MatchingOptions(), np.random.default_rng(0))
    np.testing.assert_array_equal(rec, [6, 7, 8, 9])
    assert set(chosen[[0, 2]].tolist()) <= {0, 1, 2}
    assert set(chosen[[1, 3]].tolist()) <= {3, 4, 5}


def test_assemble_matches_writes_one_column(container, group):
    imp = {j: container.imp[j].astype(float) for j in group}
    assemble_matches(imp, group, container.where, np.array([6, 9]), np.array([3, 0]), container.data, k=1)
    # row 6 <- donor 3 (level c), row 9 <- donor 0 (level a)
    np.testing.assert_array_equal([imp[j][0, 1] for j in group], [0.0, 0.0, 1.0])
    np.testing.assert_array_equal([imp[j][3, 1] for j in group], [1.0, 0.0, 0.0])
    # untouched rows and imputations
    np.testing.assert_array_equal([imp[j][1, 1] for j in group], [0.0, 1.0, 1.0])
    np.testing.assert_array_equal([imp[j][0, 0] for j in group], [0.0, 1.0, 1.0])
