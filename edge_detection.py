import argparse
import cProfile
import logging
import os
import sys
import time
import tracemalloc

import numpy as np
from PIL import Image

from canny_detection import DEFAULT_MAX_RATIO, DEFAULT_MIN_RATIO, detect_edges

logger = logging.getLogger("edge_detection")

JPEG_QUALITY = 95
CPU_PROFILE_PATH = "cpu_profile"
MEM_PROFILE_PATH = "mem_profile"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def load_grid(path):
    """Decode an image file into a (H, W, 2) grid of (intensity, alpha)."""
    with Image.open(path) as img:
        return np.array(img.convert("LA"), dtype=np.uint8)


def save_grid(grid, path):
    """Encode the intensity channel of a grid as an 8-bit grayscale image."""
    img = Image.fromarray(np.ascontiguousarray(grid[..., 0], dtype=np.uint8))
    if os.path.splitext(path)[1].lower() in (".jpg", ".jpeg"):
        img.save(path, quality=JPEG_QUALITY)
    else:
        img.save(path)


def pixel_distribution(grid):
    unique_values, counts = np.unique(grid[..., 0], return_counts=True)
    return {int(value): int(count) for value, count in zip(unique_values, counts)}


def is_valid_ratio(value):
    return 0.0 <= value <= 1.0


def edge_detection_pipeline(image_path, output_path=None, blur=True,
                            min_ratio=DEFAULT_MIN_RATIO, max_ratio=DEFAULT_MAX_RATIO, profile=False):
    """
    Load an image, run Canny edge detection and optionally save the result.

    With `profile`, only the detection itself runs under the profilers;
    decoding and encoding stay outside.
    Returns the edge grid and the detection time in seconds.
    """
    pixels = load_grid(image_path)
    height, width = pixels.shape[:2]
    logger.info(f"Loaded {image_path} ({width}x{height})")

    start = time.time()
    detect = profiled_detect_edges if profile else detect_edges
    edges = detect(pixels, blur=blur, min_ratio=min_ratio, max_ratio=max_ratio)
    exe_time = time.time() - start

    if output_path is not None:
        save_grid(edges, output_path)
        logger.info(f"Edges saved -> {output_path}")
    return edges, exe_time


def profiled_detect_edges(pixels, blur=True, min_ratio=DEFAULT_MIN_RATIO, max_ratio=DEFAULT_MAX_RATIO,
                          cpu_profile_path=CPU_PROFILE_PATH, mem_profile_path=MEM_PROFILE_PATH):
    """detect_edges() under cProfile and tracemalloc."""
    profiler = cProfile.Profile()
    tracemalloc.start()
    profiler.enable()
    try:
        edges = detect_edges(pixels, blur=blur, min_ratio=min_ratio, max_ratio=max_ratio)
    finally:
        profiler.disable()
        snapshot = tracemalloc.take_snapshot()
        tracemalloc.stop()

    profiler.dump_stats(cpu_profile_path)
    with open(mem_profile_path, "w") as f:
        for stat in snapshot.statistics("lineno")[:25]:
            f.write(f"{stat}\n")
    logger.info(f"CPU profile -> {cpu_profile_path}, memory profile -> {mem_profile_path}")
    return edges


def build_parser():
    parser = argparse.ArgumentParser(description="Canny edge detection on grayscale images.")
    parser.add_argument("--input", required=True, help="path to input file")
    parser.add_argument("--output", default="out.jpg", help="path to output file (default: out.jpg)")
    parser.add_argument("--blur", action=argparse.BooleanOptionalAction, default=True,
                        help="perform gaussian blur before edge detection (default: on)")
    parser.add_argument("--min", dest="min_ratio", type=float, default=DEFAULT_MIN_RATIO,
                        help=f"ratio of lower threshold (default: {DEFAULT_MIN_RATIO})")
    parser.add_argument("--max", dest="max_ratio", type=float, default=DEFAULT_MAX_RATIO,
                        help=f"ratio of upper threshold (default: {DEFAULT_MAX_RATIO})")
    parser.add_argument("--profile", action="store_true", help="do cpu/mem profile on the main logic")
    parser.add_argument("--verbose", action="store_true", help="log per-stage details")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    if not is_valid_ratio(args.min_ratio) or not is_valid_ratio(args.max_ratio):
        logger.error("Invalid value for threshold ratio given, exiting.")
        return 1

    edges, exe_time = edge_detection_pipeline(args.input, args.output, args.blur,
                                              args.min_ratio, args.max_ratio, profile=args.profile)

    logger.info(f"Canny edge detection completed in {exe_time:.4f} seconds")
    logger.info(f"Pixel value distribution: {pixel_distribution(edges)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
