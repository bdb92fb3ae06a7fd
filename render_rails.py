#!/usr/bin/env python3
"""render_rails.py

Headless renderer for scrolling rail bundles.

Runs a Scene against an SVG surface and writes frames to disk, either as a
numbered sequence of an animation or as a single timestamped still.

Run:
  python render_rails.py frames out/ --frames 600 --every 60
  python render_rails.py frames out/ --static --frames 1
  python render_rails.py still out/ --seed 7 --outline
  python render_rails.py --help
"""

import argparse
import logging
import os
import random
import sys

import rail_core

logger = logging.getLogger(__name__)


def _make_scene(args, animating):
    rng = random.Random(args.seed)
    scene_params = {}
    if args.spawn_probability is not None:
        scene_params['spawn_probability'] = args.spawn_probability
    bundle_params = {}
    if args.flip_probability is not None:
        bundle_params['flip_probability'] = args.flip_probability
    return rail_core.Scene(args.width, args.height, animating=animating, rng=rng,
                           bundle_params=bundle_params, scene_params=scene_params)


def render_frames(scene, out_dir, frames, every=1, outline=False):
    """Step the scene for `frames` refreshes, saving every `every`-th frame.

    Every refresh is drawn, so bundles get marked done and pruned on time
    even when most frames are not written. Returns the list of written paths.
    """
    if every < 1:
        raise rail_core.GeometryError('--every must be >= 1')
    os.makedirs(out_dir, exist_ok=True)
    surface = rail_core.SvgSurface(scene.width, scene.height)
    paths = []
    for n in range(frames):
        shown = scene.frame
        scene.step(surface)
        if n % every:
            continue
        path = os.path.join(out_dir, 'frame-{:05d}.svg'.format(shown))
        if outline:
            svg = rail_core.render_outline_svg(scene, frame=shown)
            with open(path, 'w') as f:
                f.write(svg)
        else:
            surface.save(path)
        paths.append(path)
    logger.info('Wrote %d frame(s) to %s (%d live bundle(s))',
                len(paths), out_dir, len(scene.bundles))
    return paths


def cmd_frames(args):
    scene = _make_scene(args, animating=not args.static)
    paths = render_frames(scene, args.out_dir, args.frames, every=args.every,
                          outline=args.outline)
    print('wrote {} frame(s) to {}'.format(len(paths), args.out_dir))


def cmd_still(args):
    scene = _make_scene(args, animating=False)
    os.makedirs(args.out_dir, exist_ok=True)
    path = scene.export_frame(args.out_dir, outline=args.outline)
    print('Saved: {}'.format(path))


def build_argparser():
    ap = argparse.ArgumentParser(description='Render scrolling rail bundles to SVG.')
    ap.add_argument('--log-level', default=None,
                    help='logging level (DEBUG, INFO, WARNING, ...); defaults to $RAILS_LOG_LEVEL or INFO')
    sub = ap.add_subparsers(dest='cmd', required=True)

    def common(p):
        p.add_argument('out_dir', help='directory for the SVG files')
        p.add_argument('--width', type=int, default=1200)
        p.add_argument('--height', type=int, default=800)
        p.add_argument('--seed', type=int, default=None)
        p.add_argument('--spawn-probability', type=float, default=None)
        p.add_argument('--flip-probability', type=float, default=None)
        p.add_argument('--outline', action='store_true',
                       help='plotter-friendly ribbon outlines instead of filled quads')

    p_frames = sub.add_parser('frames', help='render an animation as numbered frames')
    common(p_frames)
    p_frames.add_argument('--frames', type=int, default=300)
    p_frames.add_argument('--every', type=int, default=1,
                          help='save every Nth frame')
    p_frames.add_argument('--static', action='store_true',
                          help='draw the static full-width layout instead of scrolling')

    p_still = sub.add_parser('still', help='render one static frame')
    common(p_still)
    return ap


def main(argv=None):
    ap = build_argparser()
    args = ap.parse_args(argv)
    try:
        rail_core.setup_default_logging(args.log_level)
        if args.cmd == 'frames':
            cmd_frames(args)
        elif args.cmd == 'still':
            cmd_still(args)
        else:
            raise AssertionError('unreachable')
    except rail_core.GeometryError as e:
        print('Config error: {}'.format(e), file=sys.stderr)
        return 2
    except OSError as e:
        print('File error: {}'.format(e), file=sys.stderr)
        return 2
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
