"""Tests for SLIC superpixel quantization."""

from __future__ import annotations

import numpy as np
import pytest

from slicterm import (
    QuantizationError,
    compute_superpixels,
    mean_colors,
    quantize_colors,
    rgb_to_lab,
)
from tests.conftest import RED, gradient_image, solid_image


class TestComputeSuperpixels:
    def test_every_pixel_labeled(self):
        img = gradient_image(30, 20)
        labels = compute_superpixels(rgb_to_lab(img), 12)
        assert labels.shape == (20, 30)
        assert np.issubdtype(labels.dtype, np.integer)
        unique = np.unique(labels)
        assert unique[0] == 0
        assert list(unique) == list(range(len(unique)))

    def test_deterministic(self):
        lab = rgb_to_lab(gradient_image(24, 16))
        first = compute_superpixels(lab, 8)
        second = compute_superpixels(lab, 8)
        assert np.array_equal(first, second)

    def test_cluster_count_not_dividing_pixels(self):
        lab = rgb_to_lab(gradient_image(17, 11))
        labels = compute_superpixels(lab, 7)
        assert labels.shape == (11, 17)
        assert labels.min() == 0

    def test_too_many_clusters_degrades(self):
        lab = rgb_to_lab(solid_image(1, 1))
        labels = compute_superpixels(lab, 2)
        assert labels.shape == (1, 1)
        assert labels[0, 0] == 0

    def test_degenerate_image(self):
        with pytest.raises(QuantizationError):
            compute_superpixels(np.zeros((0, 0, 3)), 4)

    def test_non_positive_cluster_count(self):
        lab = rgb_to_lab(gradient_image(8, 8))
        with pytest.raises(QuantizationError):
            compute_superpixels(lab, 0)


class TestMeanColors:
    def test_averages_original_colors(self):
        img = np.array(
            [[[10, 20, 30], [30, 40, 50]], [[0, 0, 0], [255, 255, 255]]], dtype=np.uint8
        )
        labels = np.array([[0, 0], [1, 1]])
        out = mean_colors(img, labels)
        assert out.dtype == np.uint8
        assert tuple(out[0, 0]) == tuple(out[0, 1]) == (20, 30, 40)
        assert tuple(out[1, 0]) == tuple(out[1, 1]) == (128, 128, 128)

    def test_single_label(self):
        img = gradient_image(6, 4)
        out = mean_colors(img, np.zeros((4, 6), dtype=np.int64))
        assert (out == out[0, 0]).all()


class TestQuantizeColors:
    def test_solid_red_stays_red(self):
        img = solid_image(4, 2)
        quantized, labels = quantize_colors(img, 4)
        assert quantized.shape == img.shape
        assert labels.shape == (2, 4)
        assert (quantized == RED).all()

    def test_same_dimensions(self):
        img = gradient_image(32, 18)
        quantized, labels = quantize_colors(img, 20)
        assert quantized.shape == img.shape
        assert quantized.dtype == np.uint8
        assert labels.shape == img.shape[:2]

    def test_reduces_color_count(self):
        img = gradient_image(32, 32)
        quantized, labels = quantize_colors(img, 16)
        colors = np.unique(quantized.reshape(-1, 3), axis=0)
        assert len(colors) <= labels.max() + 1
        assert len(colors) < len(np.unique(img.reshape(-1, 3), axis=0))
