from collections import namedtuple
from numbers import Integral


class Size(namedtuple("Size", ["rows", "cols"])):
    """A 2D extent, (rows, cols), with element-wise arithmetic.

    The tuple operators are replaced so that ``Size(4, 4) - Size(2, 2) + 1`` reads the way the convolution size rules
    are written::

        >>> Size(4, 4) - Size(2, 2) + 1
        Size(rows=3, cols=3)
        >>> Size(5, 7) // 2
        Size(rows=2, cols=3)
        >>> (Size(2, 2) - Size(3, 1) + 1).clamped()
        Size(rows=0, cols=2)

    Scalars broadcast to both axes.
    """
    __slots__ = ()

    @classmethod
    def of(cls, value) -> "Size":
        """Coerces an int, a 2-sequence, or a Size into a Size."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Integral):
            return cls(int(value), int(value))
        rows, cols = value
        return cls(int(rows), int(cols))

    def __add__(self, other):
        other = Size.of(other)
        return Size(self.rows + other.rows, self.cols + other.cols)

    __radd__ = __add__

    def __sub__(self, other):
        other = Size.of(other)
        return Size(self.rows - other.rows, self.cols - other.cols)

    def __floordiv__(self, other):
        other = Size.of(other)
        return Size(self.rows // other.rows, self.cols // other.cols)

    def min(self, other) -> "Size":
        other = Size.of(other)
        return Size(min(self.rows, other.rows), min(self.cols, other.cols))

    def clamped(self) -> "Size":
        """Negative components become 0."""
        return Size(max(self.rows, 0), max(self.cols, 0))

    def area(self) -> int:
        return self.rows * self.cols

    def __str__(self) -> str:
        return f"{self.rows}x{self.cols}"
