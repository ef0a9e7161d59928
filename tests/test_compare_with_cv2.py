import os

import numpy as np
import pytest
from PIL import Image

from canny_detection import detect_edges
from compare_with_cv2 import (RESOLUTIONS, benchmark_methods, canny_pipeline, compare_methods, edge_agreement,
                              main, opencv_pipeline, plot_results)
from crop_datasets import SIZES, size_folder_name


@pytest.fixture
def square_image(tmp_path):
    intensity = np.zeros((32, 32), dtype=np.uint8)
    intensity[8:24, 8:24] = 220
    path = tmp_path / "square.png"
    Image.fromarray(intensity).save(path)
    return str(path), intensity


def test_opencv_pipeline_shapes(square_image):
    _, gray = square_image
    blurred, gradient, edges = opencv_pipeline(gray)
    assert blurred.shape == gradient.shape == edges.shape == gray.shape
    assert edges.max() == 255


def test_canny_pipeline_shapes(square_image):
    _, gray = square_image
    blurred, magnitudes, edges = canny_pipeline(gray)
    assert blurred.shape == magnitudes.shape == edges.shape == gray.shape
    assert set(np.unique(edges)) <= {0, 255}


def test_canny_pipeline_edges_match_detect_edges(square_image):
    _, gray = square_image
    _, _, edges = canny_pipeline(gray)
    np.testing.assert_array_equal(edges, detect_edges(gray, blur=True)[..., 0])


def test_resolutions_follow_crop_sizes():
    assert RESOLUTIONS == [size_folder_name(size) for size in SIZES]
    assert RESOLUTIONS[0] == "128x128"


def test_edge_agreement():
    a = np.array([[0, 255], [255, 0]])
    b = np.array([[0, 255], [0, 0]])
    assert edge_agreement(a, a) == 1.0
    assert edge_agreement(a, b) == 0.75


def test_benchmark_methods(square_image):
    path, _ = square_image
    timings = benchmark_methods(path, repeats=2)
    assert set(timings) == {"canny_min", "canny_max", "canny_mean", "cv_min", "cv_max", "cv_mean"}
    assert timings["canny_min"] <= timings["canny_mean"] <= timings["canny_max"]
    assert timings["cv_min"] <= timings["cv_mean"] <= timings["cv_max"]


def test_compare_methods_saves_figure(square_image, tmp_path):
    path, _ = square_image
    figure = compare_methods(path, str(tmp_path / "figures"), "32x32")
    assert os.path.exists(figure)


def test_plot_results(tmp_path):
    results = [
        {"resolution": "128x128", "canny_min": 0.1, "canny_max": 0.3, "canny_mean": 0.2,
         "cv_min": 0.01, "cv_max": 0.03, "cv_mean": 0.02},
        {"resolution": "256x256", "canny_min": 0.4, "canny_max": 0.6, "canny_mean": 0.5,
         "cv_min": 0.02, "cv_max": 0.04, "cv_mean": 0.03},
    ]
    output = plot_results(results, str(tmp_path / "runtime.png"))
    assert os.path.exists(output)


def test_main_over_dataset_folders(tmp_path):
    folder = tmp_path / "dataset" / "128x128"
    folder.mkdir(parents=True)
    intensity = np.zeros((128, 128), dtype=np.uint8)
    intensity[32:96, 32:96] = 180
    Image.fromarray(intensity).save(folder / "img.png")
    output_dir = tmp_path / "results"

    assert main(["--dataset", str(tmp_path / "dataset"), "--output-dir", str(output_dir),
                 "--repeats", "1"]) == 0
    assert (output_dir / "comparison_128x128.png").exists()
    assert (output_dir / "runtime_comparison.png").exists()
