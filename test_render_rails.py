#!/usr/bin/env python3
import io
import os
import random
from contextlib import redirect_stderr, redirect_stdout

import rail_core
from render_rails import main, render_frames

_SMALL = ["--width", "300", "--height", "200", "--seed", "3"]


class TestRenderFrames:
    def test_every_frame(self, tmp_path) -> None:
        scene = rail_core.Scene(300, 200, rng=random.Random(1))
        paths = render_frames(scene, str(tmp_path), 4)
        assert [os.path.basename(p) for p in paths] == [
            "frame-00000.svg", "frame-00001.svg", "frame-00002.svg", "frame-00003.svg"
        ]
        assert scene.frame == 4

    def test_outline_frames(self, tmp_path) -> None:
        scene = rail_core.Scene(300, 200, rng=random.Random(1))
        paths = render_frames(scene, str(tmp_path), 3, every=2, outline=True)
        assert len(paths) == 2
        with open(paths[0]) as f:
            assert "<svg" in f.read()

    def test_unsaved_frames_still_drawn(self, tmp_path) -> None:
        scene = rail_core.Scene(300, 200, rng=random.Random(1),
                                scene_params={"spawn_probability": 0.0, "prune_interval": 100})
        bundle = scene.bundles[0]
        paths = render_frames(scene, str(tmp_path), 400, every=1000)
        assert [os.path.basename(p) for p in paths] == ["frame-00000.svg"]
        assert bundle.done
        assert scene.bundles == []
        assert scene.frame == 400

    def test_saved_frame_matches_scene_render(self, tmp_path) -> None:
        a = rail_core.Scene(300, 200, rng=random.Random(4))
        b = rail_core.Scene(300, 200, rng=random.Random(4))
        paths = render_frames(a, str(tmp_path), 31, every=30)
        assert os.path.basename(paths[-1]) == "frame-00030.svg"
        surface = rail_core.SvgSurface(300, 200)
        for _ in range(31):
            b.step(surface)
        reference = tmp_path / "reference.svg"
        surface.save(str(reference))
        with open(paths[-1]) as f:
            assert f.read() == reference.read_text()


class TestCLI:
    def test_frames_command(self, tmp_path) -> None:
        out = str(tmp_path / "frames")
        with redirect_stdout(io.StringIO()):
            assert main(["frames", out, "--frames", "5", "--every", "2"] + _SMALL) == 0
        assert sorted(os.listdir(out)) == [
            "frame-00000.svg", "frame-00002.svg", "frame-00004.svg"
        ]

    def test_static_frames_command(self, tmp_path) -> None:
        out = str(tmp_path / "static")
        with redirect_stdout(io.StringIO()):
            assert main(["frames", out, "--static", "--frames", "3"] + _SMALL) == 0
        files = sorted(os.listdir(out))
        assert files == ["frame-00000.svg", "frame-00001.svg", "frame-00002.svg"]
        contents = []
        for name in files:
            with open(os.path.join(out, name)) as f:
                contents.append(f.read())
        # the static layout does not scroll
        assert contents[0] == contents[1] == contents[2]

    def test_probability_options(self, tmp_path) -> None:
        out = str(tmp_path)
        argv = ["frames", out, "--frames", "2", "--spawn-probability", "1",
                "--flip-probability", "0.5"] + _SMALL
        with redirect_stdout(io.StringIO()):
            assert main(argv) == 0
        assert len(os.listdir(out)) == 2

    def test_bad_log_level_returns_error_code(self, tmp_path) -> None:
        with redirect_stderr(io.StringIO()) as err:
            assert main(["--log-level", "LOUD", "still", str(tmp_path)] + _SMALL) == 2
        assert "Config error" in err.getvalue()

    def test_still_command(self, tmp_path) -> None:
        out = str(tmp_path)
        with redirect_stdout(io.StringIO()):
            assert main(["still", out, "--outline"] + _SMALL) == 0
        files = os.listdir(out)
        assert len(files) == 1
        assert files[0].startswith("rails-") and files[0].endswith(".svg")

    def test_bad_viewport_returns_error_code(self, tmp_path) -> None:
        with redirect_stderr(io.StringIO()) as err:
            assert main(["still", str(tmp_path), "--width", "0"]) == 2
        assert "Config error" in err.getvalue()

    def test_bad_every_returns_error_code(self, tmp_path) -> None:
        with redirect_stderr(io.StringIO()):
            assert main(["frames", str(tmp_path), "--every", "0"] + _SMALL) == 2

    def test_unwritable_output_returns_error_code(self, tmp_path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with redirect_stderr(io.StringIO()) as err:
            assert main(["still", str(blocker / "sub")] + _SMALL) == 2
        assert "File error" in err.getvalue()
