import streamlit as st
import rail_core
import random
import re
import time

st.set_page_config(page_title="Rail Ribbons Preview", layout="wide")
st.title("Rail Ribbons Preview")
rail_core.setup_default_logging()

with st.sidebar:
    st.header("Viewport")
    view_width = st.slider("Width", 400, 2400, 1200, 50)
    view_height = st.slider("Height", 300, 1600, 800, 50)

    st.header("Bundles")
    grid_range = st.slider("Grid unit (px)", 5, 150, (15, 75))
    segment_range = st.slider("Segment length (grid units)", 1, 12, (1, 6))
    rails_range = st.slider("Rails per bundle", 1, 30, (5, 15))
    speed_range = st.slider("Scroll speed (px/frame)", 1, 40, (5, 15))
    down_probability = st.slider("Down probability", 0.0, 1.0, 0.5, 0.05,
                                 help="Chance that each segment slopes down instead of running over")
    flip_probability = st.slider("Flip probability", 0.0, 1.0, 0.0, 0.05,
                                 help="Chance of mirroring a bundle vertically / horizontally")

    with st.expander("Jitter"):
        jitter_kind = st.selectbox("Distribution", ['gaussian', 'uniform', 'none'], index=0)
        jitter_scale = st.slider("Scale (grid units)", 0.0, 3.0, 0.05, 0.01,
                                 help="Std. deviation for gaussian, half-width for uniform")

    st.header("Scene")
    spawn_probability = st.slider("Spawn probability per tick", 0.0, 1.0, 0.1, 0.01)
    seed = st.number_input("Seed", value=0, step=1, help="0 = random")
    play_frames = st.slider("Frames per play", 10, 600, 120, 10)

    bundle_params = {
        'grid_unit_pixels': grid_range,
        'segment_grid_units': segment_range,
        'rails_per_bundle': rails_range,
        'speed': speed_range,
        'down_probability': down_probability,
        'flip_probability': flip_probability,
        'jitter': {'kind': jitter_kind, 'scale': jitter_scale},
    }
    scene_params = {'spawn_probability': spawn_probability}
    settings = (repr(bundle_params), repr(scene_params), int(seed))

    if st.button("Regenerate", type="primary"):
        st.session_state.pop('scene', None)

# Build the scene if needed
if 'scene' not in st.session_state or st.session_state.get('scene_settings') != settings:
    rng = random.Random(int(seed)) if seed else random.Random()
    animating = st.session_state.get('animating', True)
    st.session_state.scene = rail_core.Scene(
        view_width, view_height, animating=animating, rng=rng,
        bundle_params=bundle_params, scene_params=scene_params)
    st.session_state.scene_settings = settings

scene = st.session_state.scene

if (scene.width, scene.height) != (view_width, view_height):
    scene.resize(view_width, view_height)

col_toggle, col_play, col_info = st.columns(3)
with col_toggle:
    label = "Stop animation" if scene.animating else "Start animation"
    if st.button(label):
        st.session_state.animating = scene.toggle_animate()
with col_play:
    play = st.button("Play", disabled=not scene.animating)
with col_info:
    info = st.empty()

frame_view = st.empty()


def show(svg_string):
    # Make SVG responsive for display
    display_svg = re.sub(r'width="\d+"', 'width="100%"', svg_string, count=1)
    display_svg = re.sub(r'height="\d+"', 'height="100%"', display_svg, count=1)
    frame_view.markdown(display_svg, unsafe_allow_html=True)


surface = rail_core.SvgSurface(scene.width, scene.height)
if play:
    for _ in range(play_frames):
        scene.step(surface)
        show(surface.as_svg())
        info.caption("Frame {} | {} live bundle(s)".format(scene.frame, len(scene.bundles)))
        time.sleep(scene.params['frame_interval'] / 1000.0)

svg_string = rail_core.render_frame_svg(scene)
if not play:
    show(svg_string)
info.caption("Frame {} | {} live bundle(s)".format(scene.frame, len(scene.bundles)))

col_fill, col_outline = st.columns(2)
with col_fill:
    st.download_button(
        "Download SVG",
        svg_string,
        file_name=rail_core.export_filename(),
        mime="image/svg+xml"
    )
with col_outline:
    st.download_button(
        "Download plotter outlines",
        rail_core.render_outline_svg(scene),
        file_name=rail_core.export_filename(prefix='rails-outline'),
        mime="image/svg+xml"
    )

with st.expander("Bundle details"):
    rows = []
    for n, bundle in enumerate(scene.bundles):
        t = bundle.transform
        rows.append({
            'bundle': n,
            'rails': len(bundle.rails),
            'segments': bundle.path_length,
            'grid px': round(t.grid_unit_pixels, 1),
            'segment units': t.segment_grid_units,
            'thickness px': round(t.rail_thickness_pixels, 1),
            'speed': round(bundle.speed, 1),
            'spawn frame': bundle.spawn_frame,
            'done': bundle.done,
        })
    st.table(rows)
