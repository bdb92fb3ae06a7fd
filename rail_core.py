import drawsvg as draw
import colorsys
import logging
import math
import os
import random
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from shapely.geometry import Polygon
from shapely.ops import unary_union
from shapely import affinity


logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS / LOGGING
# ============================================================================

class GeometryError(ValueError):
    pass


def _require(cond, msg):
    if not cond:
        raise GeometryError(msg)


LOG_LEVEL_ENV = 'RAILS_LOG_LEVEL'
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_default_logging(level=None):
    """Configure the root logger for the CLI and the preview app.

    The level comes from the argument, then from $RAILS_LOG_LEVEL, then
    defaults to INFO. Returns False without touching anything when the
    root logger already has handlers (Streamlit, pytest, a host script).
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, 'INFO')
    if isinstance(level, str):
        lvl = getattr(logging, level.upper(), None)
        _require(isinstance(lvl, int), 'unknown log level {!r}'.format(level))
    else:
        lvl = int(level)

    if logging.getLogger().handlers:
        return False
    logging.basicConfig(level=lvl, format=LOG_FORMAT)
    logger.debug('logging configured at %s', logging.getLevelName(lvl))
    return True


# ============================================================================
# CONFIGURATION
# ============================================================================

# Ranges used by make_bundle(). Tuples are inclusive (low, high) bounds.
DEFAULT_BUNDLE_PARAMS = {
    'grid_unit_pixels': (15, 75),
    'segment_grid_units': (1, 6),      # integer grid units per segment
    'thickness_divisor': (1.5, 15),    # thickness = grid_unit_pixels / divisor
    'rails_per_bundle': (5, 15),
    'speed': (5, 15),                  # px per frame
    'height_fraction': 0.25,           # max height = viewport rows * fraction
    'start_row_fraction': 0.9,         # max start row = viewport rows * fraction
    'jitter': {'kind': 'gaussian', 'scale': 0.05},
    'down_probability': 0.5,
    'flip_probability': 0.0,
}

DEFAULT_SCENE_PARAMS = {
    'frame_interval': 1000 / 60,   # time units per display refresh
    'spawn_interval': 50,
    'spawn_probability': 0.1,
    'prune_interval': 5000,
    'static_bundle_count': 8,
}


def make_params(defaults, overrides=None):
    """Merge overrides over a defaults dict. Unknown keys are rejected."""
    params = dict(defaults)
    if overrides:
        unknown = sorted(set(overrides) - set(defaults))
        _require(not unknown, 'unknown parameter(s): {}'.format(', '.join(unknown)))
        params.update(overrides)
    return params


# ============================================================================
# GRID
# ============================================================================

class Direction(Enum):
    OVER = 0
    DOWN = 1


GridPoint = namedtuple('GridPoint', ['i', 'j'])


@dataclass(frozen=True)
class GridTransform:
    """Per-bundle mapping between grid units and pixels."""
    grid_unit_pixels: float
    segment_grid_units: float
    rail_thickness_pixels: float

    def __post_init__(self):
        for name in ('grid_unit_pixels', 'segment_grid_units', 'rail_thickness_pixels'):
            value = getattr(self, name)
            _require(
                isinstance(value, (int, float)) and not isinstance(value, bool)
                and math.isfinite(value) and value > 0,
                '{} must be a positive finite number, got {!r}'.format(name, value))

    @property
    def step_pixels(self):
        return self.grid_unit_pixels * self.segment_grid_units

    def to_pixels(self, i):
        return i * self.grid_unit_pixels


def segments_to_span(viewport_width, transform):
    """Number of segments a path needs to cover viewport_width pixels."""
    return math.ceil(viewport_width / transform.grid_unit_pixels / transform.segment_grid_units)


# ============================================================================
# RAIL GEOMETRY
# ============================================================================

# Horizontal shear of the thickness side. tan(pi/8) is half the 45 degree
# turn, so OVER and DOWN quads share their bottom point at every vertex and
# both come out rail_thickness_pixels thick.
JOINER_SHEAR = math.tan(math.pi / 8)


def _clip_left(points, floor_x):
    """Clip a convex polygon to x >= floor_x, keeping the vertex order.

    Crossing points are interpolated from the inside end of each edge, so
    two polygons sharing an edge get the same crossing point.
    """
    out = []
    n = len(points)
    for k in range(n):
        p = points[k]
        q = points[(k + 1) % n]
        p_in = p[0] >= floor_x
        q_in = q[0] >= floor_x
        if p_in:
            out.append(p)
        if p_in != q_in:
            inside, outside = (p, q) if p_in else (q, p)
            f = (floor_x - inside[0]) / (outside[0] - inside[0])
            out.append((floor_x, inside[1] + f * (outside[1] - inside[1])))

    result = []
    for p in out:
        if not result or result[-1] != p:
            result.append(p)
    if len(result) > 1 and result[0] == result[-1]:
        result.pop()
    return result


class Rail:
    """A constant-thickness line travelling OVER or DOWN on the grid.

    Vertices are grid points; (0, 0) is the top left corner, i grows to the
    right and j grows downwards.
    """

    def __init__(self, color, start_j, transform):
        self.color = tuple(color)
        self.start_j = start_j
        self.transform = transform
        self.vertices = [GridPoint(0, start_j)]

    def __len__(self):
        return len(self.vertices) - 1

    def add_segment(self, direction):
        _require(isinstance(direction, Direction),
                 'direction must be a Direction, got {!r}'.format(direction))
        last = self.vertices[-1]
        seg = self.transform.segment_grid_units
        dj = seg if direction is Direction.DOWN else 0
        self.vertices.append(GridPoint(last.i + seg, last.j + dj))

    def pixel_point(self, k):
        v = self.vertices[k]
        return self.transform.to_pixels(v.i), self.transform.to_pixels(v.j)

    def quads(self, floor_x, ceiling_x):
        """Return the quads covering the part of the rail inside [floor_x, ceiling_x].

        Each quad is (top_start, top_end, bottom_end, bottom_start). The top
        edge lies on the path and is clamped to the window; the bottom edge
        is the top edge shifted by (-thickness * tan(pi/8), thickness) and
        cut off at floor_x. A segment whose thickness side crosses floor_x
        below its start vertex yields a quad plus a degenerate quad (a
        triangle with its last point repeated).
        """
        if ceiling_x <= floor_x:
            return []

        step = self.transform.step_pixels
        thickness = self.transform.rail_thickness_pixels
        shear = thickness * JOINER_SHEAR

        first = max(0, math.floor(floor_x / step))
        last = min(len(self.vertices) - 1, math.ceil(ceiling_x / step))

        quads = []
        for k in range(first, last):
            x0, y0 = self.pixel_point(k)
            x1, y1 = self.pixel_point(k + 1)
            slope = (y1 - y0) / (x1 - x0)
            if x0 < floor_x:
                y0 += (floor_x - x0) * slope
                x0 = floor_x
            if x1 > ceiling_x:
                y1 -= (x1 - ceiling_x) * slope
                x1 = ceiling_x
            if x1 <= x0:
                continue
            points = _clip_left([
                (x0, y0),
                (x1, y1),
                (x1 - shear, y1 + thickness),
                (x0 - shear, y0 + thickness),
            ], floor_x)
            if len(points) == 5:
                # vertex within `shear` of the floor: split the pentagon
                quads.append(tuple(points[:4]))
                quads.append((points[0], points[3], points[4], points[4]))
            elif len(points) == 4:
                quads.append(tuple(points))
            else:
                quads.append((points[0], points[1], points[2], points[2]))
        return quads

    def draw(self, surface, floor_x, ceiling_x):
        """Draw the visible part of the rail. Returns the number of quads drawn."""
        quads = self.quads(floor_x, ceiling_x)
        if not quads:
            return 0
        surface.fill_color(*self.color)
        for quad in quads:
            surface.draw_quad(quad)
        return len(quads)

    def ribbon(self, floor_x, ceiling_x):
        """Return the visible footprint as a Shapely geometry, or None."""
        quads = self.quads(floor_x, ceiling_x)
        if not quads:
            return None
        return unary_union([Polygon(q) for q in quads])


# ============================================================================
# BUNDLES
# ============================================================================

def _jitter(rng, jitter):
    kind = jitter.get('kind', 'gaussian')
    scale = jitter.get('scale', 0.05)
    if kind == 'gaussian':
        return rng.gauss(0, scale)
    elif kind == 'uniform':
        return rng.uniform(-scale, scale)
    elif kind == 'none':
        return 0.0
    raise GeometryError('unknown jitter kind: {!r}'.format(kind))


class RailBundle:
    """Rails sharing one path, vertically offset, scrolling as a unit."""

    def __init__(self, start_row, height, speed, transform, rng=None,
                 spawn_frame=0, flip_vertical=False, flip_horizontal=False,
                 color=None, jitter=None, rail_count=None):
        _require(height > 0, 'bundle height must be positive, got {!r}'.format(height))
        _require(speed > 0, 'bundle speed must be positive, got {!r}'.format(speed))
        if rng is None:
            rng = random
        if rail_count is None:
            rail_count = rng.randint(*DEFAULT_BUNDLE_PARAMS['rails_per_bundle'])
        _require(rail_count >= 1, 'a bundle needs at least one rail')
        if color is None:
            color = (rng.uniform(0, 255), 255, 255)
        if jitter is None:
            jitter = DEFAULT_BUNDLE_PARAMS['jitter']

        self.transform = transform
        self.height = height
        self.speed = speed
        self.spawn_frame = spawn_frame
        self.flip_vertical = flip_vertical
        self.flip_horizontal = flip_horizontal
        self.done = False

        self.rails = []
        for k in range(rail_count):
            start_j = start_row + k / rail_count * height + _jitter(rng, jitter)
            self.rails.append(Rail(color, start_j, transform))

    @property
    def path_length(self):
        return len(self.rails[0])

    def add_segment(self, direction):
        # Every rail gets the same call so the paths stay congruent
        for rail in self.rails:
            rail.add_segment(direction)

    def extend(self, count, rng=None, down_probability=0.5):
        """Append count random segments to the shared path."""
        if rng is None:
            rng = random
        for _ in range(count):
            self.add_segment(Direction.DOWN if rng.random() < down_probability else Direction.OVER)

    def window(self, frame, viewport_width, animating=True):
        """Return (floor, ceiling) in path pixels for the given frame."""
        if not animating:
            return 0, viewport_width
        ceiling = (frame - self.spawn_frame) * self.speed
        return ceiling - viewport_width, ceiling

    def _visible_window(self, frame, viewport_width, animating):
        if self.done:
            return None
        floor_x, ceiling_x = self.window(frame, viewport_width, animating)
        if floor_x > viewport_width:
            self.done = True
            logger.debug('Bundle spawned at frame %d scrolled off at frame %d',
                         self.spawn_frame, frame)
            return None
        return max(0, floor_x), min(ceiling_x, viewport_width)

    def draw(self, surface, frame, viewport_width, viewport_height, animating=True):
        visible = self._visible_window(frame, viewport_width, animating)
        if visible is None:
            return
        floor_x, ceiling_x = visible

        surface.push_transform()
        if self.flip_vertical:
            surface.translate(0, viewport_height)
            surface.scale(1, -1)
        if self.flip_horizontal:
            surface.translate(viewport_width, 0)
            surface.scale(-1, 1)
        for rail in self.rails:
            rail.draw(surface, floor_x, ceiling_x)
        surface.pop_transform()

    def ribbons(self, frame, viewport_width, viewport_height, animating=True):
        """Return [(color, geometry), ...] for the visible rails, flips applied."""
        visible = self._visible_window(frame, viewport_width, animating)
        if visible is None:
            return []
        floor_x, ceiling_x = visible

        result = []
        for rail in self.rails:
            geom = rail.ribbon(floor_x, ceiling_x)
            if geom is None:
                continue
            if self.flip_vertical:
                geom = affinity.scale(geom, xfact=1, yfact=-1, origin=(0, viewport_height / 2.0))
            if self.flip_horizontal:
                geom = affinity.scale(geom, xfact=-1, yfact=1, origin=(viewport_width / 2.0, 0))
            result.append((rail.color, geom))
        return result


def make_bundle(rng, viewport_width, viewport_height, frame=0, params=None):
    """Create a bundle with randomized visual parameters and a full-width path.

    Args:
        rng: random source (random.Random or the random module)
        viewport_width, viewport_height: current viewport size in pixels
        frame: frame counter recorded as the bundle's spawn frame
        params: overrides for DEFAULT_BUNDLE_PARAMS
    """
    params = make_params(DEFAULT_BUNDLE_PARAMS, params)

    grid = rng.uniform(*params['grid_unit_pixels'])
    segment = rng.randint(*params['segment_grid_units'])
    thickness = grid / rng.uniform(*params['thickness_divisor'])
    transform = GridTransform(grid, segment, thickness)

    rows = viewport_height / grid
    height = rng.uniform(1, max(1, rows * params['height_fraction']))
    start_row = rng.uniform(0, rows * params['start_row_fraction'])
    speed = rng.uniform(*params['speed'])

    bundle = RailBundle(
        start_row, height, speed, transform, rng=rng,
        spawn_frame=frame,
        flip_vertical=rng.random() < params['flip_probability'],
        flip_horizontal=rng.random() < params['flip_probability'],
        jitter=params['jitter'],
        rail_count=rng.randint(*params['rails_per_bundle']),
    )
    bundle.extend(segments_to_span(viewport_width, transform), rng,
                  down_probability=params['down_probability'])
    logger.debug('New bundle: %d rails, grid=%.1fpx, segment=%d, speed=%.1f, frame=%d',
                 len(bundle.rails), grid, segment, speed, frame)
    return bundle


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """Fixed-interval timers driven by elapsed time.

    Callbacks run one at a time from advance(); a callback that clears the
    scheduler stops every remaining firing of that advance() call.
    """

    def __init__(self):
        self._timers = []
        self._generation = 0

    def __len__(self):
        return len(self._timers)

    def every(self, interval, callback):
        _require(interval > 0, 'timer interval must be positive, got {!r}'.format(interval))
        self._timers.append({'interval': interval, 'elapsed': 0.0, 'callback': callback})

    def clear(self):
        self._timers = []
        self._generation += 1

    def advance(self, elapsed):
        generation = self._generation
        for timer in list(self._timers):
            timer['elapsed'] += elapsed
            while timer['elapsed'] >= timer['interval']:
                timer['elapsed'] -= timer['interval']
                timer['callback']()
                if self._generation != generation:
                    return


# ============================================================================
# SCENE
# ============================================================================

class Scene:
    """Owns the live bundles; spawns, prunes and draws them."""

    def __init__(self, width, height, animating=True, rng=None,
                 bundle_params=None, scene_params=None):
        _require(width > 0 and height > 0,
                 'viewport must be positive, got {}x{}'.format(width, height))
        self.width = width
        self.height = height
        self.animating = animating
        self.rng = rng if rng is not None else random.Random()
        self.bundle_params = make_params(DEFAULT_BUNDLE_PARAMS, bundle_params)
        self.params = make_params(DEFAULT_SCENE_PARAMS, scene_params)
        self.scheduler = Scheduler()
        self.frame = 0
        self.bundles = []
        self.background = (0, 0, 0)
        self.reset()

    def _new_bundle(self):
        return make_bundle(self.rng, self.width, self.height,
                           frame=self.frame, params=self.bundle_params)

    def reset(self):
        self.scheduler.clear()
        self.bundles = []
        self.background = (self.rng.uniform(0, 255),
                           self.rng.uniform(0, 255),
                           self.rng.uniform(0, 255))
        if self.animating:
            self.bundles.append(self._new_bundle())
            self.scheduler.every(self.params['spawn_interval'], self._spawn_tick)
            self.scheduler.every(self.params['prune_interval'], self._prune_tick)
        else:
            for _ in range(self.params['static_bundle_count']):
                self.bundles.append(self._new_bundle())
        logger.info('Scene reset: %dx%d, animating=%s, %d bundle(s)',
                    self.width, self.height, self.animating, len(self.bundles))

    def _spawn_tick(self):
        if not self.animating:
            return
        if self.rng.random() < self.params['spawn_probability']:
            self.bundles.append(self._new_bundle())
            logger.debug('Spawned bundle at frame %d (%d live)', self.frame, len(self.bundles))

    def _prune_tick(self):
        before = len(self.bundles)
        self.bundles = [b for b in self.bundles if not b.done]
        removed = before - len(self.bundles)
        if removed:
            logger.info('Pruned %d finished bundle(s), %d live', removed, len(self.bundles))

    def advance(self, elapsed):
        """Feed elapsed time units to the spawn and prune timers."""
        self.scheduler.advance(elapsed)

    def render(self, surface):
        """Draw the current frame without advancing the frame counter."""
        surface.clear()
        surface.set_background(*self.background)
        for bundle in self.bundles:
            bundle.draw(surface, self.frame, self.width, self.height, self.animating)

    def draw_frame(self, surface):
        self.render(surface)
        self.frame += 1

    def step(self, surface, elapsed=None):
        """One display refresh: run due timers, then draw a frame."""
        if elapsed is None:
            elapsed = self.params['frame_interval']
        self.advance(elapsed)
        self.draw_frame(surface)

    def toggle_animate(self):
        self.animating = not self.animating
        self.reset()
        return self.animating

    def resize(self, width, height):
        """Change the viewport. Only bundles created afterwards use the new size."""
        _require(width > 0 and height > 0,
                 'viewport must be positive, got {}x{}'.format(width, height))
        self.width = width
        self.height = height
        logger.info('Viewport resized to %dx%d', width, height)

    def export_frame(self, directory='.', outline=False, now=None):
        return export_frame(self, directory=directory, outline=outline, now=now)


# ============================================================================
# SVG SURFACE / EXPORT
# ============================================================================

def hsb_to_hex(h, s, b):
    """Convert HSB channels in [0, 255] to an SVG hex colour."""
    channels = [min(max(c, 0), 255) / 255.0 for c in (h, s, b)]
    r, g, bl = colorsys.hsv_to_rgb(*channels)
    return '#{:02x}{:02x}{:02x}'.format(int(round(r * 255)), int(round(g * 255)),
                                        int(round(bl * 255)))


class SvgSurface:
    """Drawing surface that records draw calls into a drawsvg Drawing.

    Each translate/rotate/scale opens a nested group, so a transform only
    affects draw calls made after it. push_transform/pop_transform save and
    restore the current group.
    """

    def __init__(self, width, height):
        self.width = width
        self.height = height
        self.clear()

    def clear(self):
        self.drawing = draw.Drawing(self.width, self.height)
        self._target = self.drawing
        self._stack = []
        self._fill = '#ffffff'

    def set_background(self, h, s, b):
        self.drawing.append(draw.Rectangle(0, 0, self.width, self.height,
                                           fill=hsb_to_hex(h, s, b)))

    def fill_color(self, h, s, b):
        self._fill = hsb_to_hex(h, s, b)

    def draw_quad(self, points):
        coords = [c for p in points for c in p]
        self._target.append(draw.Lines(*coords, close=True, fill=self._fill, stroke='none'))

    def draw_rect(self, x, y, w, h):
        self._target.append(draw.Rectangle(x, y, w, h, fill=self._fill))

    def push_transform(self):
        self._stack.append(self._target)

    def pop_transform(self):
        _require(self._stack, 'pop_transform() without a matching push_transform()')
        self._target = self._stack.pop()

    def _nest(self, transform):
        group = draw.Group(transform=transform)
        self._target.append(group)
        self._target = group

    def translate(self, dx, dy):
        self._nest('translate({},{})'.format(dx, dy))

    def rotate(self, radians):
        self._nest('rotate({})'.format(math.degrees(radians)))

    def scale(self, sx, sy):
        self._nest('scale({},{})'.format(sx, sy))

    def as_svg(self):
        return self.drawing.as_svg()

    def save(self, path):
        self.drawing.save_svg(path)


def render_frame_svg(scene):
    """Render the scene's current frame to an SVG string."""
    surface = SvgSurface(scene.width, scene.height)
    scene.render(surface)
    return surface.as_svg()


def render_outline_svg(scene, stroke_width=1.0, frame=None):
    """Render a frame (default: the current one) as stroked ribbon outlines.

    Each rail's visible quads are merged into one outline, so the joins
    between segments do not show up as extra strokes.
    """
    if frame is None:
        frame = scene.frame
    d = draw.Drawing(scene.width, scene.height)
    for bundle in scene.bundles:
        for color, geom in bundle.ribbons(frame, scene.width, scene.height,
                                          scene.animating):
            if geom.geom_type == 'Polygon':
                polygons = [geom]
            elif geom.geom_type in ('MultiPolygon', 'GeometryCollection'):
                polygons = [g for g in geom.geoms if g.geom_type == 'Polygon']
            else:
                continue
            for poly in polygons:
                coords = [c for p in list(poly.exterior.coords)[:-1] for c in p]
                d.append(draw.Lines(*coords, close=True, fill='none',
                                    stroke=hsb_to_hex(*color), stroke_width=stroke_width))
    return d.as_svg()


def export_filename(now=None, prefix='rails'):
    if now is None:
        now = datetime.now()
    return '{}-{}.svg'.format(prefix, now.strftime('%Y%m%d-%H%M%S'))


def export_frame(scene, directory='.', outline=False, now=None):
    """Save the current frame as a timestamped SVG. Returns the file path."""
    path = os.path.join(directory, export_filename(now))
    svg = render_outline_svg(scene) if outline else render_frame_svg(scene)
    with open(path, 'w') as f:
        f.write(svg)
    logger.info('Saved frame %d to %s', scene.frame, path)
    return path
