#!/usr/bin/env python3

"""
slicterm - SLIC-Quantized Half-Block Terminal Art

Copyright (C) 2025 Adnan Valdes

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program. If not, see <https://www.gnu.org/licenses/>.
"""
import argparse
import functools
import logging
import os
import sys
import time

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Tuple

import cv2
import numpy as np
from PIL import Image
from skimage import color as skcolor
from skimage.segmentation import slic


# Canny bounds derived from the Otsu threshold (high = t * scale, low = high * ratio)
EDGE_HIGH_SCALE = 0.4
EDGE_LOW_RATIO = 0.5

# SLIC spatial-vs-color tradeoff
SLIC_COMPACTNESS = 10.0

# Terminal rows kept free for the shell prompt
RESERVED_ROWS = 2

# Lower half block: foreground paints the bottom sample, background the top one
HALF_BLOCK = "▄"

ANSI_FOREGROUND = "\x1b[38;2;{};{};{}m"
ANSI_BACKGROUND = "\x1b[48;2;{};{};{}m"
ANSI_RESET = "\x1b[0m"


logger = logging.getLogger(__name__)


class SlictermError(Exception):
    """Base class for fatal rendering errors."""


class ImageLoadError(SlictermError, ValueError):
    """The input image is missing, unreadable or cannot be decoded."""


class TerminalSizeError(SlictermError):
    """The terminal size could not be determined or leaves no room to draw."""


class QuantizationError(SlictermError, ValueError):
    """Superpixel clustering rejected its parameters."""


def log_method(log_time: bool = False):
    """
    Decorator to log start and end of a method call.
    If log_time=True, it also logs duration.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            logger.info(f"Starting '{func.__name__}'...")
            start = time.time() if log_time else None
            result = func(self, *args, **kwargs)
            if log_time:
                duration = time.time() - start
                logger.info(f"Finished '{func.__name__}' in {duration:.2f} seconds.")
            else:
                logger.info(f"Finished '{func.__name__}'.")
            return result

        return wrapper

    return decorator


def log_step(msg_or_func):
    """
    Decorator factory to log a custom message before a method call.
    The message may be a callable receiving the instance and the call arguments.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            msg = (
                msg_or_func(self, *args, **kwargs)
                if callable(msg_or_func)
                else msg_or_func
            )
            logger.info(f"Starting: {msg}")
            result = func(self, *args, **kwargs)
            logger.info(f"Finished: {msg}")
            return result

        return wrapper

    return decorator


# Histogram and threshold selection


def compute_histogram(gray: np.ndarray) -> np.ndarray:
    """
    Counts luma occurrences of an 8-bit single-channel image, one bucket per value 0-255.
    The buckets always sum to the number of pixels in the image.
    """
    if gray.dtype != np.uint8:
        raise ValueError(f"Expected uint8 grayscale image, got {gray.dtype}")
    return np.bincount(gray.ravel(), minlength=256).astype(np.int64)


def otsu_threshold(hist: np.ndarray) -> int:
    """
    Picks the split point that maximizes the between-class variance of a 256-bucket histogram.

    Candidates run from 1 to 254; a split leaving either class empty is skipped. The first
    (lowest) maximizing split wins. The result is never 0 because Canny needs a positive bound.
    """
    hist = np.asarray(hist, dtype=np.float64)
    if hist.shape != (256,):
        raise ValueError(f"Expected a 256-bucket histogram, got shape {hist.shape}")

    total = hist.sum()
    if total <= 0:
        raise ValueError("Histogram is empty.")

    cumulative_count = np.cumsum(hist)
    cumulative_sum = np.cumsum(hist * np.arange(256))
    sum_total = cumulative_sum[-1]

    max_sigma = 0.0
    threshold = 0
    for t in range(1, 255):
        count0 = cumulative_count[t - 1]
        w0 = count0 / total
        w1 = 1.0 - w0
        if w0 == 0.0 or w1 == 0.0:
            continue

        sum0 = cumulative_sum[t - 1]
        u0 = sum0 / count0
        u1 = (sum_total - sum0) / (total - count0)

        sigma = w0 * w1 * (u1 - u0) ** 2
        if sigma > max_sigma:
            max_sigma = sigma
            threshold = t

    return max(1, threshold)


# Edge overlay


def edge_thresholds(threshold: int) -> Tuple[float, float]:
    """Canny (low, high) hysteresis bounds for an Otsu threshold."""
    high = threshold * EDGE_HIGH_SCALE
    return high * EDGE_LOW_RATIO, high


def edge_overlay(gray: np.ndarray, threshold: int | None = None) -> np.ndarray:
    """
    Traces edges with OpenCV's Canny detector using bounds derived from the Otsu threshold
    and returns an RGBA mask: opaque black on edge pixels, fully transparent elsewhere.
    """
    if threshold is None:
        threshold = otsu_threshold(compute_histogram(gray))

    low, high = edge_thresholds(threshold)
    edges = cv2.Canny(gray, low, high)
    logger.debug(
        f"Canny bounds ({low:.1f}, {high:.1f}) marked {np.count_nonzero(edges)} edge pixels"
    )

    overlay = np.zeros((*gray.shape, 4), dtype=np.uint8)
    overlay[edges == 255, 3] = 255
    return overlay


def composite_overlay(img: np.ndarray, overlay: np.ndarray) -> np.ndarray:
    """Alpha-composites an RGBA overlay on top of an RGB image, returning a new image."""
    if img.shape[:2] != overlay.shape[:2]:
        raise ValueError(
            f"Overlay shape {overlay.shape[:2]} does not match image shape {img.shape[:2]}"
        )

    alpha = overlay[..., 3:].astype(np.float32) / 255
    blended = img.astype(np.float32) * (1 - alpha) + overlay[..., :3] * alpha
    return np.rint(blended).astype(np.uint8)


# Color-space conversion


def rgb_to_lab(img: np.ndarray) -> np.ndarray:
    """
    Converts an 8-bit RGB image to CIE Lab (D65) one pixel at a time.
    Shape and pixel order are preserved, so a sample's position still gives its (x, y).
    """
    if img.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image, got {img.dtype}")
    return skcolor.rgb2lab(img)


def lab_to_rgb(lab: np.ndarray) -> np.ndarray:
    rgb = skcolor.lab2rgb(lab)
    return np.rint(np.clip(rgb, 0, 1) * 255).astype(np.uint8)


# Superpixel quantization


def compute_superpixels(
    lab: np.ndarray, n_segments: int, compactness: float = SLIC_COMPACTNESS
) -> np.ndarray:
    """
    Uses the skimage implementation of SLIC (Simple Linear Iterative Clustering) on Lab samples
    to split the image into spatially compact, color-consistent segments.
    Labels are renumbered to 0..n-1 so every pixel carries exactly one dense label.
    """
    h, w = lab.shape[:2]
    if h == 0 or w == 0:
        raise QuantizationError(f"Cannot cluster a degenerate {w}x{h} image.")
    if n_segments < 1:
        raise QuantizationError(f"Cluster count must be positive, got {n_segments}.")

    if n_segments > h * w:
        logger.warning(
            f"Requested {n_segments} clusters for {h * w} pixels, using {h * w} instead."
        )
        n_segments = h * w

    if n_segments == 1:
        return np.zeros((h, w), dtype=np.int64)

    # slic rescales intensities to [0, 1]; do it here so compactness stays in Lab units
    samples = lab - lab.min()
    span = np.ptp(lab)
    if span > 0:
        samples /= span
        compactness /= span

    try:
        segments = slic(
            samples,
            n_segments=n_segments,
            compactness=compactness,
            convert2lab=False,
            start_label=0,
            channel_axis=-1,
        )
    except ValueError as e:
        raise QuantizationError(f"SLIC failed for {n_segments} clusters: {e}") from e

    _, dense = np.unique(segments, return_inverse=True)
    return dense.reshape(h, w)


def mean_colors(img: np.ndarray, segments: np.ndarray) -> np.ndarray:
    """
    Replaces every pixel with the average original RGB color of its segment.
    """
    h, w = segments.shape
    n_segments = segments.max() + 1
    flat_rgb = img.reshape(-1, 3).astype(np.float64)
    flat_segments = segments.ravel()

    counts = np.bincount(flat_segments, minlength=n_segments)
    sums = np.vstack(
        [
            np.bincount(flat_segments, weights=flat_rgb[:, i], minlength=n_segments)
            for i in range(3)
        ]
    ).T
    means = np.zeros_like(sums)
    valid = counts > 0
    means[valid] = sums[valid] / counts[valid, None]

    palette = np.rint(means).astype(np.uint8)
    return palette[flat_segments].reshape(h, w, 3)


def quantize_colors(
    img: np.ndarray, n_segments: int, compactness: float = SLIC_COMPACTNESS
) -> Tuple[np.ndarray, np.ndarray]:
    """Clusters the image in Lab space and returns (quantized image, label map)."""
    segments = compute_superpixels(rgb_to_lab(img), n_segments, compactness)
    return mean_colors(img, segments), segments


# Terminal grid planning


@dataclass(frozen=True)
class GridPlan:
    """Character-cell layout; each cell shows two vertically stacked samples."""

    columns: int
    rows: int
    unit_width: int
    unit_height: int

    @property
    def sample_rows(self) -> int:
        return self.rows * 2

    @property
    def cluster_count(self) -> int:
        return self.columns * self.rows * 2


def plan_grid(columns: int, rows: int, width: int, height: int) -> GridPlan:
    """
    Fits the image into a columns x rows terminal at two samples per cell, keeping its
    aspect ratio. The constrained axis is kept and the other one shrunk, rounding down
    with truncating integer division. Each axis keeps at least one cell.
    """
    if min(columns, rows, width, height) <= 0:
        raise ValueError(
            f"Grid dimensions must be positive: terminal {columns}x{rows}, image {width}x{height}"
        )

    if rows * 2 * width < columns * height:
        columns = rows * 2 * width // height
    else:
        rows = columns * height // width // 2

    columns, rows = max(1, columns), max(1, rows)
    return GridPlan(
        columns=columns,
        rows=rows,
        unit_width=width // columns,
        unit_height=height // (rows * 2),
    )


def query_terminal_size(stream: IO[str] | None = None) -> Tuple[int, int]:
    """Returns the (columns, rows) of the terminal attached to the stream."""
    stream = stream if stream is not None else sys.stdout
    try:
        size = os.get_terminal_size(stream.fileno())
    except (OSError, ValueError) as e:
        raise TerminalSizeError(f"Unable to query terminal size: {e}") from e
    return size.columns, size.lines


# Rendering


def sample_grid(img: np.ndarray, plan: GridPlan) -> np.ndarray:
    """
    Point-samples the image at the center of every notional cell, giving an array of
    shape (plan.sample_rows, plan.columns, 3).
    """
    height, width = img.shape[:2]
    xs = plan.unit_width // 2 + np.arange(plan.columns) * width // plan.columns
    ys = plan.unit_height // 2 + np.arange(plan.sample_rows) * height // plan.sample_rows
    return img[ys[:, None], xs[None, :]]


def format_cell(foreground, background) -> str:
    fr, fg, fb = (int(c) for c in foreground)
    br, bg, bb = (int(c) for c in background)
    return (
        ANSI_FOREGROUND.format(fr, fg, fb)
        + ANSI_BACKGROUND.format(br, bg, bb)
        + HALF_BLOCK
    )


def write_cells(samples: np.ndarray, stream: IO[str]) -> None:
    """
    Writes the sampled grid as half-block glyphs, row-major. The even sample row becomes
    the background (top half), the following odd row the foreground (bottom half).
    Colors are reset after every row even if a write fails.
    """
    sample_rows, columns = samples.shape[:2]
    for row in range(0, sample_rows, 2):
        try:
            for col in range(columns):
                stream.write(format_cell(samples[row + 1, col], samples[row, col]))
        finally:
            stream.write(ANSI_RESET)
        stream.write("\n")
    stream.flush()


class SLICTerminalRenderer:
    def __init__(
        self,
        compactness: float = SLIC_COMPACTNESS,
        reserved_rows: int = RESERVED_ROWS,
        show_edges: bool = False,
        size: Tuple[int, int] | None = None,
    ) -> None:
        if compactness <= 0:
            raise ValueError("compactness must be positive")

        if reserved_rows < 0:
            raise ValueError("reserved_rows cannot be negative")

        if size is not None and min(size) <= 0:
            raise ValueError("terminal size must be positive in both axes")

        self.compactness = compactness
        self.reserved_rows = reserved_rows
        self.show_edges = show_edges
        self.size = size

    @log_method(log_time=True)
    def render(
        self,
        source: Path | Image.Image | str | None,
        stream: IO[str] | None = None,
    ) -> GridPlan:
        """
        This is the main user-facing method. It loads the image, fits a character grid to the
        terminal, quantizes colors into one superpixel per terminal sample, optionally draws
        Canny edges on top, then writes the half-block art to the stream.
        """
        stream = stream if stream is not None else sys.stdout

        image = self.load_image(source)
        height, width = image.shape[:2]

        columns, rows = self.terminal_size(stream)
        plan = self.plan(columns, rows, width, height)

        quantized, _ = self.quantize(image, plan.cluster_count)

        if self.show_edges:
            quantized = self._draw_edges(image, quantized)

        write_cells(sample_grid(quantized, plan), stream)
        return plan

    # Image I/O
    def load_image(self, source: Path | Image.Image | str | None) -> np.ndarray:
        """
        Reads an image from the given file source, converting it into a standard
        RGB numpy array with 8-bit color channels.
        It raises errors if the file is missing or cannot be decoded, so the rest
        of the pipeline starts with a valid image.

        Source parameter can be stdin ("-" or None), an Image, or a Path to an image file
        """

        if isinstance(source, Image.Image):
            return np.array(source.convert("RGB"))

        if isinstance(source, str):
            source = Path(source)

        if source is None or source == Path("-"):
            if sys.stdin.isatty():
                raise ImageLoadError("No input source provided and stdin is not piped.")
            source, source_name = sys.stdin.buffer, "stdin"
        else:

            if not source.exists():
                raise FileNotFoundError(f"File not found: {source}")
            source, source_name = source, str(source)

        try:
            with Image.open(source) as img:
                return np.array(img.convert("RGB"))
        except Exception as e:
            raise ImageLoadError(f"Failed to load image from {source_name}: {e}") from e

    def terminal_size(self, stream: IO[str]) -> Tuple[int, int]:
        """
        The usable (columns, rows) of the terminal, after keeping reserved_rows free.
        An explicit size given at construction skips the terminal query.
        """
        columns, rows = self.size if self.size is not None else query_terminal_size(stream)
        rows -= self.reserved_rows
        if columns <= 0 or rows <= 0:
            raise TerminalSizeError(
                f"Terminal of {columns}x{rows + self.reserved_rows} leaves no room to draw."
            )
        return columns, rows

    def plan(self, columns: int, rows: int, width: int, height: int) -> GridPlan:
        plan = plan_grid(columns, rows, width, height)
        logger.info(
            f"Grid of {plan.columns}x{plan.rows} cells for a {width}x{height} image "
            f"({plan.cluster_count} samples)."
        )
        return plan

    @log_step(
        lambda self, image, n_segments: f"Quantizing colors into {n_segments} superpixels..."
    )
    def quantize(self, image: np.ndarray, n_segments: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Converts the image to Lab, clusters it with SLIC into one superpixel per terminal
        sample, and paints each superpixel with its mean RGB color.
        """
        quantized, segments = quantize_colors(image, n_segments, self.compactness)
        logger.info(f"  {segments.max() + 1} superpixels for {segments.size} pixels")
        return quantized, segments

    @log_step("Overlaying Canny edges...")
    def _draw_edges(self, image: np.ndarray, quantized: np.ndarray) -> np.ndarray:
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        threshold = otsu_threshold(compute_histogram(gray))
        logger.info(f"  Otsu threshold: {threshold}")
        return composite_overlay(quantized, edge_overlay(gray, threshold))


def render_image(
    source: Path | Image.Image | str | None,
    stream: IO[str] | None = None,
    *,
    compactness: float = SLIC_COMPACTNESS,
    reserved_rows: int = RESERVED_ROWS,
    show_edges: bool = False,
    size: Tuple[int, int] | None = None,
) -> GridPlan:
    """
    Render an image file or loaded image as half-block art on a terminal stream.
    """
    renderer = SLICTerminalRenderer(
        compactness=compactness,
        reserved_rows=reserved_rows,
        show_edges=show_edges,
        size=size,
    )

    return renderer.render(source, stream)


def terminal_size_arg(value: str) -> Tuple[int, int]:
    try:
        columns, rows = (int(part) for part in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected COLSxROWS, got '{value}'")
    if columns <= 0 or rows <= 0:
        raise argparse.ArgumentTypeError(f"terminal size must be positive, got '{value}'")
    return columns, rows


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="slicterm - SLIC-quantized half-block terminal art",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("input", help="Input image path, or '-' to read from stdin")

    parser.add_argument(
        "--compactness",
        type=float,
        default=SLIC_COMPACTNESS,
        help="SLIC superpixel compactness parameter",
    )
    parser.add_argument(
        "-e",
        "--edges",
        action="store_true",
        help="Overlay Canny edges (Otsu-derived bounds) on the quantized image",
    )
    parser.add_argument(
        "-s",
        "--size",
        type=terminal_size_arg,
        metavar="COLSxROWS",
        help="Terminal size to render for instead of querying the terminal",
    )
    parser.add_argument(
        "-r",
        "--reserved-rows",
        type=int,
        default=RESERVED_ROWS,
        help="Terminal rows left free below the image",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log pipeline steps to stderr (-vv for debug output)",
    )

    args = parser.parse_args(argv)

    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(message)s")

    try:
        render_image(
            args.input,
            compactness=args.compactness,
            reserved_rows=args.reserved_rows,
            show_edges=args.edges,
            size=args.size,
        )
    except (SlictermError, OSError, ValueError) as e:
        logger.error(f"slicterm: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
