import os
import pstats

import numpy as np
import pytest
from PIL import Image

import edge_detection
from canny_detection import detect_edges, new_grid
from edge_detection import (build_parser, edge_detection_pipeline, is_valid_ratio, load_grid,
                            main, pixel_distribution, profiled_detect_edges, save_grid)


@pytest.fixture
def step_image(tmp_path):
    intensity = np.zeros((16, 16), dtype=np.uint8)
    intensity[:, 8:] = 50
    path = tmp_path / "step.png"
    Image.fromarray(intensity).save(path)
    return str(path)


def test_load_grid_returns_intensity_and_alpha(tmp_path):
    rgba = np.zeros((4, 6, 4), dtype=np.uint8)
    rgba[..., :3] = 200
    rgba[..., 3] = 128
    path = tmp_path / "rgba.png"
    Image.fromarray(rgba).save(path)

    grid = load_grid(str(path))
    assert grid.shape == (4, 6, 2)
    assert grid.dtype == np.uint8
    assert np.all(grid[..., 0] == 200)
    assert np.all(grid[..., 1] == 128)


def test_load_grid_opaque_for_grayscale(step_image):
    grid = load_grid(step_image)
    assert grid.shape == (16, 16, 2)
    assert np.all(grid[..., 1] == 255)
    assert grid[0, 0, 0] == 0
    assert grid[0, 15, 0] == 50


def test_save_grid_png_keeps_intensity(tmp_path):
    grid = np.zeros((3, 5, 2), dtype=np.uint8)
    grid[1, 2, 0] = 255
    grid[..., 1] = 255
    path = tmp_path / "edges.png"
    save_grid(grid, str(path))

    with Image.open(path) as img:
        assert img.mode == "L"
        np.testing.assert_array_equal(np.array(img), grid[..., 0])


def test_save_grid_jpeg(tmp_path):
    grid = np.zeros((8, 8, 2), dtype=np.uint8)
    path = tmp_path / "edges.jpg"
    save_grid(grid, str(path))
    with Image.open(path) as img:
        assert img.format == "JPEG"
        assert img.size == (8, 8)


def test_pixel_distribution():
    grid = np.zeros((2, 3, 2), dtype=np.uint8)
    grid[0, 0, 0] = 255
    assert pixel_distribution(grid) == {0: 5, 255: 1}


@pytest.mark.parametrize("value,expected", [(0.0, True), (1.0, True), (0.5, True),
                                            (-0.01, False), (1.01, False)])
def test_is_valid_ratio(value, expected):
    assert is_valid_ratio(value) is expected


def test_parser_defaults():
    args = build_parser().parse_args(["--input", "in.png"])
    assert args.output == "out.jpg"
    assert args.blur is True
    assert args.min_ratio == 0.2
    assert args.max_ratio == 0.6
    assert args.profile is False
    assert build_parser().parse_args(["--input", "in.png", "--no-blur"]).blur is False


def test_parser_requires_input():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_pipeline_returns_edges_and_time(step_image, tmp_path):
    output = tmp_path / "edges.png"
    edges, exe_time = edge_detection_pipeline(step_image, str(output), blur=False)
    assert edges.shape == (16, 16, 2)
    assert exe_time >= 0
    assert output.exists()
    assert set(np.unique(edges[..., 0])) == {0, 255}
    assert np.all(edges[:, 7:9, 0] == 255)


def test_pipeline_without_output_writes_nothing(step_image, tmp_path):
    edges, _ = edge_detection_pipeline(step_image)
    assert edges.shape == (16, 16, 2)
    assert sorted(os.listdir(tmp_path)) == ["step.png"]


def test_main_rejects_invalid_ratio(step_image, tmp_path):
    output = tmp_path / "out.png"
    assert main(["--input", step_image, "--output", str(output), "--max", "1.5"]) == 1
    assert not output.exists()


def test_main_writes_output(step_image, tmp_path):
    output = tmp_path / "out.png"
    assert main(["--input", step_image, "--output", str(output), "--no-blur"]) == 0
    with Image.open(output) as img:
        assert img.size == (16, 16)


def test_main_profile_writes_profiles(step_image, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["--input", step_image, "--output", "out.png", "--profile"]) == 0
    assert (tmp_path / edge_detection.CPU_PROFILE_PATH).exists()
    assert (tmp_path / edge_detection.MEM_PROFILE_PATH).exists()


def profiled_function_names(path):
    return {funcname for _, _, funcname in pstats.Stats(str(path)).stats}


def test_profile_covers_detection_only(step_image, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    edges, _ = edge_detection_pipeline(step_image, str(tmp_path / "out.png"), profile=True)

    names = profiled_function_names(tmp_path / edge_detection.CPU_PROFILE_PATH)
    assert "detect_edges" in names
    assert "load_grid" not in names
    assert "save_grid" not in names
    assert set(np.unique(edges[..., 0])) <= {0, 255}


def test_profiled_detect_edges_matches_detect_edges(tmp_path):
    grid = new_grid(np.tile(np.repeat([0, 50], 4), (8, 1)))
    cpu_path = tmp_path / "cpu.prof"
    mem_path = tmp_path / "mem.txt"

    edges = profiled_detect_edges(grid, cpu_profile_path=str(cpu_path), mem_profile_path=str(mem_path))

    np.testing.assert_array_equal(edges, detect_edges(grid))
    assert "detect_edges" in profiled_function_names(cpu_path)
    assert mem_path.exists()
