import logging
import dataclasses
import pytest
import numpy as np
import SimpleITK as sitk

from vessel_tracing import (ScalarVolume, TraceConfig, CenterlineResult, trace_centerline,
                            generate_mask, physical_to_index, rasterize_tube, InvalidInputError,
                            InvalidParametersError, NoPathFoundError, SearchLimitExceededError)
from vessel_tracing.tracer import compute_tangents

from conftest import (TUBE_RADIUS, TUBE_AXIS, STRAIGHT_START, STRAIGHT_END, ARC_TUBE_RADIUS,
                      distance_to_arc)


class TestStraightTube:
    def test_centerline_stays_on_axis(self, straight_tube_result):
        points = straight_tube_result.points
        offset = np.hypot(points[:, 0] - TUBE_AXIS[0], points[:, 1] - TUBE_AXIS[1])

        assert offset.max() < 1.0

    def test_endpoints_match_seed_voxels(self, straight_tube_result):
        np.testing.assert_allclose(straight_tube_result.points[0], STRAIGHT_START)
        np.testing.assert_allclose(straight_tube_result.points[-1], STRAIGHT_END)

    def test_length(self, straight_tube_result):
        assert straight_tube_result.total_length_mm == pytest.approx(40.0, abs=1.0)

    def test_radii(self, straight_tube_result):
        radii = straight_tube_result.radii

        assert len(radii) == len(straight_tube_result.points)
        assert np.all(np.abs(radii - TUBE_RADIUS) < 1.0)
        assert abs(straight_tube_result.mean_radius_mm - TUBE_RADIUS) < 1.0

    def test_voxel_path_is_connected(self, straight_tube_result):
        path = np.asarray(straight_tube_result.voxel_path)
        steps = np.diff(path, axis=0)

        assert tuple(path[0]) == (25, 25, 5)
        assert tuple(path[-1]) == (25, 25, 45)
        assert np.all(np.abs(steps) <= 1)
        assert np.all(np.any(steps != 0, axis=1))

    def test_smoothed_point_count(self, straight_tube_result):
        subdivisions = TraceConfig().subdivisions
        n_raw = len(straight_tube_result.voxel_path)

        assert len(straight_tube_result) == n_raw + subdivisions * (n_raw - 1)

    def test_result_is_immutable(self, straight_tube_result):
        with pytest.raises(ValueError):
            straight_tube_result.points[0, 0] = 0.0
        with pytest.raises(ValueError):
            straight_tube_result.radii[0] = 0.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            straight_tube_result.total_length_mm = 1.0


def test_trace_is_deterministic(straight_tube, straight_tube_result):
    again = trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END)

    np.testing.assert_array_equal(again.points, straight_tube_result.points)
    np.testing.assert_array_equal(again.radii, straight_tube_result.radii)
    assert again.voxel_path == straight_tube_result.voxel_path


def test_sitk_input_matches_array_input(straight_tube_array, straight_tube_result):
    image = sitk.GetImageFromArray(straight_tube_array.astype(np.float32))

    result = trace_centerline(image, STRAIGHT_START, STRAIGHT_END)

    np.testing.assert_allclose(result.points, straight_tube_result.points)
    np.testing.assert_allclose(result.radii, straight_tube_result.radii)


def test_dark_blood_tube(straight_tube_array):
    volume = ScalarVolume(200.0 - straight_tube_array)
    config = TraceConfig(bright_vessels=False)

    result = trace_centerline(volume, STRAIGHT_START, STRAIGHT_END, config)

    offset = np.hypot(result.points[:, 0] - TUBE_AXIS[0], result.points[:, 1] - TUBE_AXIS[1])
    assert offset.max() < 1.0
    assert abs(result.mean_radius_mm - TUBE_RADIUS) < 1.0


def test_curved_tube(curved_tube):
    volume, start, end = curved_tube
    config = TraceConfig(initial_radius_mm=ARC_TUBE_RADIUS)

    result = trace_centerline(volume, start, end, config)

    assert distance_to_arc(result.points).max() < 2.0 * np.sqrt(3.0)
    # Quarter circle of radius 35
    assert result.total_length_mm == pytest.approx(35.0 * np.pi / 2, rel=0.15)
    assert np.all(result.radii > 1.0)
    assert np.all(result.radii < ARC_TUBE_RADIUS + 1.0)


def test_start_outside_volume_rejected(straight_tube):
    with pytest.raises(InvalidParametersError):
        trace_centerline(straight_tube, (60.0, 25.0, 25.0), STRAIGHT_END)
    with pytest.raises(InvalidParametersError):
        trace_centerline(straight_tube, STRAIGHT_START, (25.0, 25.0, -3.0))


def test_invalid_config_rejected(straight_tube):
    with pytest.raises(InvalidParametersError):
        trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END, TraceConfig(cost_exponent=0.0))
    with pytest.raises(InvalidParametersError):
        trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END, TraceConfig(initial_radius_mm=-1.0))


def test_missing_volume_rejected():
    with pytest.raises(InvalidInputError):
        trace_centerline(None, (0.0, 0.0, 0.0), (1.0, 1.0, 1.0))


def test_uniform_volume_rejected():
    volume = ScalarVolume(np.full((10, 10, 10), 7.0))

    with pytest.raises(InvalidInputError):
        trace_centerline(volume, (1.0, 1.0, 1.0), (8.0, 8.0, 8.0))


def test_iteration_cap_reports_no_path(straight_tube):
    config = TraceConfig(max_iterations=5)

    with pytest.raises(NoPathFoundError) as excinfo:
        trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END, config)

    assert isinstance(excinfo.value, SearchLimitExceededError)


def test_progress_logging(straight_tube, caplog):
    with caplog.at_level(logging.INFO, logger="vessel_tracing"):
        trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END)

    assert "Step 1: Building cost map" in caplog.text
    assert "Step 2: Searching minimum-cost path" in caplog.text
    assert "Step 4: Estimating local radius" in caplog.text


def test_failure_is_logged(straight_tube, caplog):
    with caplog.at_level(logging.ERROR, logger="vessel_tracing"):
        with pytest.raises(NoPathFoundError):
            trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END,
                             TraceConfig(max_iterations=1))

    assert "Centerline tracing failed" in caplog.text


class TestGenerateMask:
    def test_override_radius(self, straight_tube, straight_tube_result):
        mask = generate_mask(straight_tube_result, 5.0, straight_tube)
        reference = rasterize_tube([STRAIGHT_START, STRAIGHT_END], [5.0, 5.0], straight_tube.geometry)

        assert mask.geometry == straight_tube.geometry
        assert abs(mask.foreground_count - reference.foreground_count) <= 0.01 * reference.foreground_count

    def test_estimated_radii(self, straight_tube, straight_tube_result):
        """Flat-ended tube volume matches pi r^2 L of the traced length."""
        mask = generate_mask(straight_tube_result, None, straight_tube)
        expected = np.pi * TUBE_RADIUS ** 2 * straight_tube_result.total_length_mm

        assert abs(mask.foreground_count - expected) / expected < 0.15

    def test_sitk_reference_geometry(self, straight_tube, straight_tube_result):
        image = straight_tube.to_sitk()

        from_image = generate_mask(straight_tube_result, 3.0, image)
        from_volume = generate_mask(straight_tube_result, 3.0, straight_tube)

        np.testing.assert_array_equal(from_image.array, from_volume.array)

    def test_worker_count_does_not_change_result(self, straight_tube, straight_tube_result):
        single = generate_mask(straight_tube_result, None, straight_tube, num_workers=1)
        threaded = generate_mask(straight_tube_result, None, straight_tube, num_workers=3)

        np.testing.assert_array_equal(single.array, threaded.array)

    @pytest.mark.parametrize("override", [0.0, float("nan")])
    def test_invalid_override_rejected(self, straight_tube, straight_tube_result, override):
        with pytest.raises(InvalidParametersError):
            generate_mask(straight_tube_result, override, straight_tube)

    def test_empty_centerline_rejected(self, straight_tube):
        empty = CenterlineResult(points=np.zeros((0, 3)), radii=np.zeros(0))

        with pytest.raises(InvalidInputError):
            generate_mask(empty, 2.0, straight_tube)

    def test_missing_reference_rejected(self, straight_tube_result):
        with pytest.raises(InvalidInputError):
            generate_mask(straight_tube_result, 2.0, None)


def test_physical_to_index(straight_tube):
    assert physical_to_index(straight_tube, (10.2, 20.7, 30.0)) == (10, 21, 30)
    assert physical_to_index(straight_tube, (50.0, 0.0, 0.0)) is None
    assert physical_to_index(None, (0.0, 0.0, 0.0)) is None


def test_compute_tangents():
    points = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])

    tangents = compute_tangents(points)

    np.testing.assert_allclose(np.linalg.norm(tangents, axis=1), 1.0)
    np.testing.assert_allclose(tangents[:, 0], 1.0)

    single = compute_tangents([[3.0, 3.0, 3.0]])
    np.testing.assert_allclose(single, [[0.0, 0.0, 1.0]])
