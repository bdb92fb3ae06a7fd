"""Shared fixtures: a recording drawing surface and small rails."""

import random

import pytest

from rail_core import Direction, GridTransform, Rail


class RecordingSurface:
    """Drawing surface that records every call as (name, args)."""

    def __init__(self):
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name, args))

    def fill_color(self, h, s, b):
        self._record('fill_color', h, s, b)

    def draw_quad(self, points):
        self._record('draw_quad', tuple(points))

    def draw_rect(self, x, y, w, h):
        self._record('draw_rect', x, y, w, h)

    def push_transform(self):
        self._record('push_transform')

    def pop_transform(self):
        self._record('pop_transform')

    def translate(self, dx, dy):
        self._record('translate', dx, dy)

    def rotate(self, radians):
        self._record('rotate', radians)

    def scale(self, sx, sy):
        self._record('scale', sx, sy)

    def clear(self):
        self._record('clear')

    def set_background(self, h, s, b):
        self._record('set_background', h, s, b)

    def names(self):
        return [name for name, _ in self.calls]

    def quads(self):
        return [args[0] for name, args in self.calls if name == 'draw_quad']


@pytest.fixture()
def surface():
    return RecordingSurface()


@pytest.fixture()
def rng():
    return random.Random(12345)


@pytest.fixture()
def transform():
    return GridTransform(20, 6, 10)


@pytest.fixture()
def over_down_over(transform):
    rail = Rail((10, 255, 255), 0, transform)
    for d in (Direction.OVER, Direction.DOWN, Direction.OVER):
        rail.add_segment(d)
    return rail
