import logging
import time
from collections import namedtuple

import numpy as np
from scipy.special import comb

logger = logging.getLogger(__name__)

STRONG_EDGE = 255
NO_EDGE = 0
OPAQUE = 255

DEFAULT_KERNEL_SIZE = 5
DEFAULT_MIN_RATIO = 0.2
DEFAULT_MAX_RATIO = 0.6

HORIZONTAL = "horizontal"
VERTICAL = "vertical"

Point = namedtuple("Point", ["x", "y"])


def _read_only(values):
    kernel = np.array(values, dtype=np.float64)
    kernel.setflags(write=False)
    return kernel


SOBEL_X = _read_only([
    [1, 0, -1],
    [2, 0, -2],
    [1, 0, -1],
])
SOBEL_Y = _read_only([
    [ 1,  2,  1],
    [ 0,  0,  0],
    [-1, -2, -1],
])

# (lower, upper, first neighbour (dy, dx), second neighbour (dy, dx))
# lower bound inclusive, upper bound exclusive except for the last bucket
GRADIENT_BUCKETS = (
    (-90.0, -67.5, (-1, 0), (1, 0)),
    (-67.5, -22.5, (-1, 1), (1, -1)),
    (-22.5, 22.5, (0, 1), (0, -1)),
    (22.5, 67.5, (1, 1), (-1, -1)),
    (67.5, 90.0, (1, 0), (-1, 0)),
)


# ---------------------------------------------------------------------------
# Grid helpers
# ---------------------------------------------------------------------------

def as_grid(pixels):
    """
    Return a (height, width, 2) uint8 grid of (intensity, alpha) pairs.

    A 2D intensity array gains a fully opaque alpha channel. The result is
    always a fresh copy.
    """
    pixels = np.asarray(pixels)
    if pixels.ndim == 2:
        grid = new_grid(pixels)
    elif pixels.ndim == 3 and pixels.shape[2] == 2:
        grid = pixels.astype(np.uint8, copy=True)
    else:
        raise ValueError(f"grid must have shape (H, W) or (H, W, 2), got {pixels.shape}")
    if grid.shape[0] == 0 or grid.shape[1] == 0:
        raise ValueError("grid must not be empty")
    return grid


def new_grid(intensity):
    """Build a grid from an intensity plane; every pixel gets alpha 255."""
    intensity = np.asarray(intensity)
    grid = np.empty(intensity.shape + (2,), dtype=np.uint8)
    grid[..., 0] = intensity
    grid[..., 1] = OPAQUE
    return grid


def to_uint8(values):
    """Truncate toward zero, then wrap modulo 256 like an integer byte conversion."""
    return np.trunc(values).astype(np.int64).astype(np.uint8)


# ---------------------------------------------------------------------------
# Sampling grid accessor
# ---------------------------------------------------------------------------

def mirror_indices(length, size):
    """
    Index table of shape (length, size): row `pos` lists the indices read by
    a window of `size` centred on `pos`, mirrored back into [0, length).
    """
    if size % 2 == 0 or size < 1:
        raise ValueError(f"window size must be a positive odd number, got {size}")
    padding = size // 2
    positions = np.arange(length)[:, None]
    offsets = positions + np.arange(-padding, padding + 1)[None, :]

    mirrored = np.where(offsets < 0, positions - offsets, offsets)
    mirrored = np.where(offsets >= length, positions - (offsets - length + 1), mirrored)
    if mirrored.size and (mirrored.min() < 0 or mirrored.max() >= length):
        raise ValueError(f"axis of length {length} is too small for a window of size {size}")
    return mirrored


def surrounding_pixels(grid, y, x, size):
    """Window of `size` x `size` intensities centred on (y, x)."""
    height, width = grid.shape[:2]
    rows = mirror_indices(height, size)[y]
    cols = mirror_indices(width, size)[x]
    return grid[rows[:, None], cols[None, :], 0].astype(np.float64)


def pixel_vector(grid, y, x, size, direction):
    """Horizontal or vertical run of `size` intensities centred on (y, x)."""
    height, width = grid.shape[:2]
    if direction == HORIZONTAL:
        return grid[y, mirror_indices(width, size)[x], 0].astype(np.float64)
    if direction == VERTICAL:
        return grid[mirror_indices(height, size)[y], x, 0].astype(np.float64)
    raise ValueError(f"unknown direction: {direction!r}")


def surrounding_pixel_matrices(grid, size):
    """surrounding_pixels() for every pixel at once, shape (H, W, size, size)."""
    height, width = grid.shape[:2]
    rows = mirror_indices(height, size)
    cols = mirror_indices(width, size)
    intensity = grid[..., 0].astype(np.float64)
    return intensity[rows[:, None, :, None], cols[None, :, None, :]]


def pixel_vectors(grid, size, direction):
    """pixel_vector() for every pixel at once, shape (H, W, size)."""
    height, width = grid.shape[:2]
    intensity = grid[..., 0].astype(np.float64)
    if direction == HORIZONTAL:
        cols = mirror_indices(width, size)
        return intensity[:, cols]
    if direction == VERTICAL:
        rows = mirror_indices(height, size)
        return np.transpose(intensity[rows, :], (0, 2, 1))
    raise ValueError(f"unknown direction: {direction!r}")


# ---------------------------------------------------------------------------
# Convolution
# ---------------------------------------------------------------------------

def convolve(pane, kernel):
    """
    Sum of elementwise products between `pane` and `kernel`.

    `pane` may carry leading batch axes (one window per pixel); its trailing
    axes must match the kernel's shape. Returns a float for a single window
    and an array of responses otherwise.
    """
    pane = np.asarray(pane, dtype=np.float64)
    kernel = np.asarray(kernel, dtype=np.float64)
    if pane.ndim < kernel.ndim or pane.shape[pane.ndim - kernel.ndim:] != kernel.shape:
        raise ValueError(
            f"invalid dimensions for convolution: {pane.shape} against kernel {kernel.shape}"
        )
    response = np.tensordot(pane, kernel, axes=kernel.ndim)
    if response.ndim == 0:
        return float(response)
    return response


# ---------------------------------------------------------------------------
# Gaussian blur
# ---------------------------------------------------------------------------

def gaussian_kernel(kernel_size=DEFAULT_KERNEL_SIZE):
    """Normalized binomial weights, row `kernel_size - 1` of Pascal's triangle."""
    if kernel_size % 2 == 0 or kernel_size < 1:
        raise ValueError(f"size of kernel must be odd, got {kernel_size}")
    row = [comb(kernel_size - 1, k, exact=True) for k in range(kernel_size)]
    kernel = np.array(row, dtype=np.float64)
    return _read_only(kernel / kernel.sum())


def gaussian_blur(grid, kernel_size=DEFAULT_KERNEL_SIZE):
    """
    Smooth the grid with two 1D binomial passes.

    The horizontal and vertical responses are combined as sqrt(h^2 + v^2)
    rather than applied one after the other, so a flat field of value v
    comes out as int(v * sqrt(2)) modulo 256.
    """
    kernel = gaussian_kernel(kernel_size)
    horizontal = convolve(pixel_vectors(grid, kernel_size, HORIZONTAL), kernel)
    vertical = convolve(pixel_vectors(grid, kernel_size, VERTICAL), kernel)
    return new_grid(to_uint8(np.sqrt(horizontal * horizontal + vertical * vertical)))


# ---------------------------------------------------------------------------
# Intensity gradient
# ---------------------------------------------------------------------------

def gradient_direction(gx, gy):
    """atan(gy / gx) in degrees; 0 wherever either response is exactly 0."""
    gx = np.asarray(gx, dtype=np.float64)
    gy = np.asarray(gy, dtype=np.float64)
    degenerate = (gx == 0) | (gy == 0)
    ratio = np.divide(gy, gx, out=np.zeros(np.broadcast(gx, gy).shape), where=~degenerate)
    return np.where(degenerate, 0.0, np.arctan(ratio)) * (180 / np.pi)


def sobel(grid):
    """Return the gradient magnitude grid and the co-indexed direction field."""
    panes = surrounding_pixel_matrices(grid, 3)
    gx = convolve(panes, SOBEL_X)
    gy = convolve(panes, SOBEL_Y)

    magnitudes = new_grid(to_uint8(np.sqrt(gx * gx + gy * gy)))
    directions = gradient_direction(gx, gy)
    return magnitudes, directions


# ---------------------------------------------------------------------------
# Non-maximum suppression
# ---------------------------------------------------------------------------

def gradient_neighbours(directions):
    """
    Neighbour coordinates along the gradient for every pixel.

    Returns (p_y, p_x, q_y, q_x). A coordinate that would leave the grid is
    clamped back to the centre pixel's coordinate on that axis.
    """
    directions = np.asarray(directions, dtype=np.float64)
    height, width = directions.shape
    offsets = np.zeros((4,) + directions.shape, dtype=np.int64)
    assigned = np.zeros(directions.shape, dtype=bool)

    last = len(GRADIENT_BUCKETS) - 1
    for i, (lower, upper, (p_dy, p_dx), (q_dy, q_dx)) in enumerate(GRADIENT_BUCKETS):
        below_upper = directions <= upper if i == last else directions < upper
        mask = (directions >= lower) & below_upper
        offsets[:, mask] = np.array([p_dy, p_dx, q_dy, q_dx])[:, None]
        assigned |= mask

    if not assigned.all():
        bad = directions[~assigned][0]
        raise ValueError(f"invalid value for direction {bad}, out of range [-90, 90]")

    ys, xs = np.indices((height, width))
    p_y, p_x, q_y, q_x = ys + offsets[0], xs + offsets[1], ys + offsets[2], xs + offsets[3]
    p_y = np.where((p_y < 0) | (p_y >= height), ys, p_y)
    p_x = np.where((p_x < 0) | (p_x >= width), xs, p_x)
    q_y = np.where((q_y < 0) | (q_y >= height), ys, q_y)
    q_x = np.where((q_x < 0) | (q_x >= width), xs, q_x)
    return p_y, p_x, q_y, q_x


def non_maximum_suppression(magnitudes, directions):
    directions = np.asarray(directions)
    if magnitudes.shape[:2] != directions.shape:
        raise ValueError(
            f"dimensions of pixel and direction array must match: "
            f"{magnitudes.shape[:2]} != {directions.shape}"
        )
    p_y, p_x, q_y, q_x = gradient_neighbours(directions)
    intensity = magnitudes[..., 0]
    suppressed = (intensity[p_y, p_x] > intensity) | (intensity[q_y, q_x] > intensity)

    result = magnitudes.copy()
    result[suppressed] = (NO_EDGE, OPAQUE)
    return result


# ---------------------------------------------------------------------------
# Double threshold
# ---------------------------------------------------------------------------

def max_pixel_value(grid):
    return int(grid[..., 0].max())


def _points(mask):
    ys, xs = np.nonzero(mask)
    return {Point(int(x), int(y)) for y, x in zip(ys, xs)}


def double_threshold(grid, high, low):
    """
    Split pixels into strong and weak coordinate sets.

    Pixels that are neither (including values exactly equal to a threshold)
    have their intensity zeroed in place.
    """
    values = grid[..., 0].astype(np.float64)
    strong = values > high
    weak = (high > values) & (values > low)
    grid[~(strong | weak), 0] = NO_EDGE
    return _points(strong), _points(weak)


# ---------------------------------------------------------------------------
# Hysteresis
# ---------------------------------------------------------------------------

def adjacent_pixels(grid, x, y):
    """8-connected neighbours of (x, y) that lie inside the grid."""
    height, width = grid.shape[:2]
    return {
        Point(j, i)
        for i in range(max(0, y - 1), min(height, y + 2))
        for j in range(max(0, x - 1), min(width, x + 2))
        if (i, j) != (y, x)
    }


def edge_tracking(grid, strong, weak):
    """
    Promote weak points touching a strong point, in a single pass.

    Every weak point is checked against the strong set as it stood when the
    pass began, so points promoted here do not promote their own weak
    neighbours. Each weak pixel is zeroed in the grid; promotions only land
    in `strong`. Returns the set of promoted points.
    """
    promoted = {
        point for point in weak
        if not strong.isdisjoint(adjacent_pixels(grid, point.x, point.y))
    }
    for point in weak:
        grid[point.y, point.x, 0] = NO_EDGE
    strong |= promoted
    return promoted


def paint_edges(grid, strong):
    """Set every strong point to full intensity."""
    if strong:
        xs, ys = zip(*strong)
        grid[list(ys), list(xs), 0] = STRONG_EDGE
    return grid


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def detect_edges(pixels, blur=True, min_ratio=DEFAULT_MIN_RATIO, max_ratio=DEFAULT_MAX_RATIO):
    """
    Run Canny edge detection on a grayscale grid.

    Args:
        pixels: (H, W, 2) grid of (intensity, alpha) or an (H, W) intensity array.
        blur: apply the Gaussian blur stage first.
        min_ratio: lower threshold as a fraction of the strongest magnitude.
        max_ratio: upper threshold as a fraction of the strongest magnitude.

    Returns:
        A new (H, W, 2) grid whose intensities are only 0 or 255.

    Raises:
        ValueError: if the grid is too small for the mirrored windows. Each
            axis needs at least 2 pixels for the 3x3 gradient window, and at
            least 3 pixels when blurring with the 5-tap kernel.
    """
    grid = as_grid(pixels)
    height, width = grid.shape[:2]
    start = time.time()

    if blur:
        grid = gaussian_blur(grid, DEFAULT_KERNEL_SIZE)
    magnitudes, directions = sobel(grid)
    grid = non_maximum_suppression(magnitudes, directions)

    strongest = max_pixel_value(grid)
    high = max_ratio * strongest
    low = min_ratio * strongest
    strong, weak = double_threshold(grid, high, low)
    promoted = edge_tracking(grid, strong, weak)
    paint_edges(grid, strong)

    logger.debug(
        "%dx%d: max magnitude %d, high %.2f, low %.2f, %d strong (%d promoted of %d weak) in %.4fs",
        width, height, strongest, high, low, len(strong), len(promoted), len(weak),
        time.time() - start,
    )
    return grid
