import numpy as np
import pytest

from diff_rmap.core.types import SamplingSpace
from diff_rmap.reachability.sample_set import SampleSet


def test_reachable_samples_come_first():
    samples = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.5], [0.2, -0.3, 0.1], [2.0, 2.0, -1.0]]
    sample_set = SampleSet.from_samples("SE2", samples, [True, False, True, False])
    assert sample_set.sampling_space == SamplingSpace.SE2
    assert len(sample_set) == 4
    assert sample_set.num_reachable == 2
    assert [r.is_reachable for r in sample_set.samples] == [True, True, False, False]
    assert np.allclose(sample_set.samples[1].position, [0.2, -0.3, 0.1])
    # unreachable samples fill from the back
    assert np.allclose(sample_set.samples[3].position, [1.0, 0.0, 0.5])
    assert np.allclose(sample_set.samples[2].position, [2.0, 2.0, -1.0])


def test_bounds_cover_samples():
    sample_set = SampleSet.from_samples("R2", [[0.0, 1.0], [-2.0, 0.5], [1.0, -1.0]], [True, True, False])
    assert np.allclose(sample_set.sample_min, [-2.0, -1.0])
    assert np.allclose(sample_set.sample_max, [1.0, 1.0])


def test_training_data():
    sample_set = SampleSet.from_samples("SO2", [[0.0], [np.pi / 2]], [False, True])
    inputs, labels = sample_set.training_data()
    assert inputs.shape == (2, 2)
    assert np.allclose(labels, [1.0, -1.0])
    assert np.allclose(inputs[0], [0.0, 1.0])
    assert np.allclose(inputs[1], [1.0, 0.0])


def test_empty_set():
    sample_set = SampleSet.from_samples("SE3", np.zeros((0, 7)), [])
    inputs, labels = sample_set.training_data()
    assert inputs.shape == (0, 7)
    assert labels.shape == (0,)


def test_mismatched_flags_rejected():
    with pytest.raises(ValueError):
        SampleSet.from_samples("R2", [[0.0, 0.0]], [True, False])
