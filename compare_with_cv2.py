import argparse
import logging
import os
import time

import cv2
import matplotlib.pyplot as plt
import numpy as np

from canny_detection import (DEFAULT_KERNEL_SIZE, DEFAULT_MAX_RATIO, DEFAULT_MIN_RATIO, as_grid,
                             detect_edges, gaussian_blur, sobel)
from crop_datasets import SIZES, size_folder_name
from edge_detection import load_grid

logger = logging.getLogger("compare_with_cv2")

RESOLUTIONS = [size_folder_name(size) for size in SIZES]
OPENCV_LOW = 100
OPENCV_HIGH = 200

# (timing key prefix, label, plot colour)
BENCHMARK_METHODS = (("canny", "Canny (NumPy)", "blue"), ("cv", "OpenCV", "orange"))


def opencv_pipeline(gray, low=OPENCV_LOW, high=OPENCV_HIGH):
    """
    Apply OpenCV's Gaussian blur, Sobel gradient magnitude and Canny edges
    to a grayscale uint8 image.
    """
    blurred = cv2.GaussianBlur(gray, (DEFAULT_KERNEL_SIZE, DEFAULT_KERNEL_SIZE), 1.4)

    grad_x = cv2.Sobel(blurred, cv2.CV_64F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(blurred, cv2.CV_64F, 0, 1, ksize=3)
    gradient_magnitude = cv2.magnitude(grad_x, grad_y)

    edges = cv2.Canny(blurred, low, high)
    return blurred, gradient_magnitude, edges


def canny_pipeline(pixels, min_ratio=DEFAULT_MIN_RATIO, max_ratio=DEFAULT_MAX_RATIO):
    """Same stages as opencv_pipeline(), computed with canny_detection."""
    grid = as_grid(pixels)
    blurred = gaussian_blur(grid)
    magnitudes, _ = sobel(blurred)
    edges = detect_edges(blurred, blur=False, min_ratio=min_ratio, max_ratio=max_ratio)
    return blurred[..., 0], magnitudes[..., 0], edges[..., 0]


def edge_agreement(edges_a, edges_b):
    """Fraction of pixels on which two binary edge maps agree."""
    return float(np.mean((edges_a > 0) == (edges_b > 0)))


def benchmark_methods(image_path, repeats=5):
    """Min, max and mean run time of both pipelines on one image."""
    pixels = load_grid(image_path)
    gray = np.ascontiguousarray(pixels[..., 0])

    canny_times = []
    for _ in range(repeats):
        start = time.time()
        detect_edges(pixels)
        canny_times.append(time.time() - start)

    cv_times = []
    for _ in range(repeats):
        start = time.time()
        opencv_pipeline(gray)
        cv_times.append(time.time() - start)

    return {
        "canny_min": min(canny_times), "canny_max": max(canny_times), "canny_mean": float(np.mean(canny_times)),
        "cv_min": min(cv_times), "cv_max": max(cv_times), "cv_mean": float(np.mean(cv_times)),
    }


def compare_methods(image_path, output_dir, resolution):
    """Save a side-by-side figure of both pipelines' stages for one image."""
    pixels = load_grid(image_path)
    gray = np.ascontiguousarray(pixels[..., 0])

    start = time.time()
    blurred, magnitudes, edges = canny_pipeline(pixels)
    canny_time = time.time() - start

    start = time.time()
    blurred_cv, gradient_cv, edges_cv = opencv_pipeline(gray)
    cv_time = time.time() - start

    stages = ("Grayscale", "Gaussian Blur", "Gradient Magnitude", "Edges")
    rows = (("Canny", (gray, blurred, magnitudes, edges)),
            ("OpenCV", (gray, blurred_cv, gradient_cv, edges_cv)))

    fig, axes = plt.subplots(len(rows), len(stages), figsize=(15, 10))
    fig.suptitle(f"Resolution: {resolution}", fontsize=14)
    for row_axes, (method, images) in zip(axes, rows):
        for ax, stage, image in zip(row_axes, stages, images):
            ax.set_title(f"{method} - {stage}")
            ax.imshow(image, cmap='gray')
            ax.axis('off')

    fig.tight_layout()
    os.makedirs(output_dir, exist_ok=True)
    figure_path = os.path.join(output_dir, f"comparison_{resolution}.png")
    fig.savefig(figure_path)
    plt.close(fig)

    logger.info(f"Resolution: {resolution}")
    logger.info(f"Canny Execution Time: {canny_time:.4f} seconds")
    logger.info(f"OpenCV Execution Time: {cv_time:.4f} seconds")
    logger.info(f"Edge agreement: {edge_agreement(edges, edges_cv):.3f}")
    return figure_path


def plot_results(results, output_path="runtime_comparison.png"):
    """Mean run time per resolution, shaded between min and max."""
    resolutions = [r['resolution'] for r in results]

    fig, ax = plt.subplots(figsize=(10, 6))
    for key, label, color in BENCHMARK_METHODS:
        means = [r[f"{key}_mean"] for r in results]
        ax.plot(resolutions, means, label=f"{label} Mean Time", color=color, marker='o', linewidth=2)
        ax.fill_between(resolutions, [r[f"{key}_min"] for r in results],
                        [r[f"{key}_max"] for r in results], color=color, alpha=0.2)

    ax.set_xlabel("Resolution")
    ax.set_ylabel("Execution Time (seconds)")
    ax.set_title(" vs ".join(label for _, label, _ in BENCHMARK_METHODS) + " Execution Time")
    ax.legend()
    ax.grid(True)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path


def main(argv=None):
    parser = argparse.ArgumentParser(description="Benchmark canny_detection against OpenCV.")
    parser.add_argument("--dataset", default="./cropped_datasets", help="folder of <W>x<H> subfolders")
    parser.add_argument("--output-dir", default="./comparison_results")
    parser.add_argument("--repeats", type=int, default=5)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    results = []
    for resolution in RESOLUTIONS:
        img_dir = os.path.join(args.dataset, resolution)
        if not os.path.isdir(img_dir):
            logger.warning(f"Skipping {resolution}: {img_dir} not found")
            continue
        img_file = sorted(os.listdir(img_dir))[0]  # one image per resolution
        img_path = os.path.join(img_dir, img_file)

        timings = benchmark_methods(img_path, args.repeats)
        timings['resolution'] = resolution
        results.append(timings)
        compare_methods(img_path, args.output_dir, resolution)
        logger.info(f"Resolution {resolution} -> Canny: {timings['canny_mean']:.4f}s, "
                    f"OpenCV: {timings['cv_mean']:.4f}s")

    if results:
        plot_results(results, os.path.join(args.output_dir, "runtime_comparison.png"))
    return 0


if __name__ == "__main__":
    main()
