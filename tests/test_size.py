"""
Tests for the Size algebra
==========================
"""

import pytest

from cucnn import Size


class TestSize:

    def test_arithmetic_is_elementwise(self):
        assert Size(4, 5) - Size(2, 3) + 1 == Size(3, 3)
        assert Size(4, 5) + Size(1, 2) == Size(5, 7)
        assert Size(7, 9) // 2 == Size(3, 4)
        assert Size(8, 9) // Size(2, 3) == Size(4, 3)

    def test_scalars_and_tuples_broadcast(self):
        assert Size(2, 3) + 1 == Size(3, 4)
        assert Size(2, 3) - (1, 2) == Size(1, 1)
        assert Size.of(5) == Size(5, 5)
        assert Size.of((2, 3)) == Size(2, 3)

    def test_min_and_area(self):
        assert Size(4, 2).min(Size(3, 5)) == Size(3, 2)
        assert Size(3, 4).area() == 12

    def test_clamped_drops_negative_components(self):
        assert (Size(2, 5) - Size(4, 2) + 1).clamped() == Size(0, 4)

    def test_str(self):
        assert str(Size(28, 14)) == "28x14"

    def test_of_rejects_bad_input(self):
        with pytest.raises((TypeError, ValueError)):
            Size.of((1, 2, 3))
