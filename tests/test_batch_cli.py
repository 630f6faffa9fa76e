"""Tests for batch distillation and the command line entry points."""

import json
from unittest.mock import patch

import pytest
from py_topo.cli import distill_batch_main, distill_main
from py_topo.core.profile import default_profile
from py_topo.distill.batch import LocationJob, load_manifest, plan_jobs, run_batch
from py_topo.exceptions import TileFetchError

BBOX = [-124.2, 47.5, -123.9, 47.8]


def fake_distill(options, cancel=None, deadline=None, fetcher=None):
    return default_profile().model_copy(update={"id": options.id, "name": options.name or options.id})


class TestPlanning:
    """Test manifest reading and job planning."""

    def test_plan_jobs(self):
        """Test blank and duplicate ids are dropped and jobs sorted."""
        jobs = [
            LocationJob("zion", "Zion", BBOX),
            LocationJob("  ", "Blank", BBOX),
            LocationJob("acadia", "", BBOX),
            LocationJob("zion", "Zion Again", BBOX),
        ]
        planned = plan_jobs(jobs)
        assert [job.id for job in planned] == ["acadia", "zion"]
        assert planned[0].name == "acadia"
        assert planned[1].name == "Zion"
        assert [job.id for job in plan_jobs(jobs, only="zion")] == ["zion"]

    def test_load_manifest(self, tmp_path):
        """Test manifest entries become jobs."""
        path = tmp_path / "locations.json"
        path.write_text(json.dumps([{"id": "zion", "name": "Zion", "bbox": BBOX}]))
        assert load_manifest(path) == [LocationJob("zion", "Zion", BBOX)]

    @pytest.mark.parametrize("payload", [{"id": "zion"}, [{"name": "no id", "bbox": BBOX}], ["zion"]])
    def test_load_manifest_rejects(self, tmp_path, payload):
        """Test malformed manifests raise ValueError."""
        path = tmp_path / "locations.json"
        path.write_text(json.dumps(payload))
        with pytest.raises(ValueError):
            load_manifest(path)


class TestRunBatch:
    """Test batch execution."""

    @pytest.fixture
    def jobs(self):
        return [LocationJob("acadia", "Acadia", BBOX), LocationJob("zion", "Zion", BBOX)]

    def test_skips_existing(self, tmp_path, jobs):
        """Test existing profiles are kept unless forced."""
        (tmp_path / "acadia.json").write_text("{}")
        lines = []
        with patch("py_topo.distill.batch.distill", side_effect=fake_distill) as distill:
            result = run_batch(jobs, tmp_path, echo=lines.append)
        assert distill.call_count == 1
        assert result.skipped == ["acadia"]
        assert result.wrote == ["zion"]
        assert lines[0] == f"skip {tmp_path / 'acadia.json'} (exists)"
        assert lines[-1] == "done wrote=1 skipped=1 failed=0"
        assert (tmp_path / "acadia.json").read_text() == "{}"
        assert json.loads((tmp_path / "zion.json").read_text())["id"] == "zion"

    def test_force_rewrites(self, tmp_path, jobs):
        """Test force regenerates existing profiles."""
        (tmp_path / "acadia.json").write_text("{}")
        with patch("py_topo.distill.batch.distill", side_effect=fake_distill):
            result = run_batch(jobs, tmp_path, force=True, echo=lambda _: None)
        assert result.wrote == ["acadia", "zion"]
        assert json.loads((tmp_path / "acadia.json").read_text())["name"] == "Acadia"

    def test_failures_are_counted(self, tmp_path, jobs):
        """Test one failing location does not stop the batch."""
        def flaky(options, **kwargs):
            if options.id == "acadia":
                raise TileFetchError("terrarium tile 9/1/1 status 503")
            return fake_distill(options)

        lines = []
        with patch("py_topo.distill.batch.distill", side_effect=flaky):
            result = run_batch(jobs, tmp_path, echo=lines.append)
        assert not result.ok
        assert "acadia" in result.failed
        assert result.wrote == ["zion"]
        assert "fail acadia: terrarium tile 9/1/1 status 503" in lines
        assert lines[-1] == "done wrote=1 skipped=0 failed=1"

    def test_bad_bbox_fails_job(self, tmp_path):
        """Test an invalid manifest box fails only that job."""
        jobs = [LocationJob("tiny", "Tiny", [0, 0, 0, 0])]
        with patch("py_topo.distill.batch.distill", side_effect=fake_distill) as distill:
            result = run_batch(jobs, tmp_path, echo=lambda _: None)
        distill.assert_not_called()
        assert list(result.failed) == ["tiny"]

    def test_nothing_to_do(self, tmp_path, jobs):
        """Test an only filter matching nothing."""
        lines = []
        result = run_batch(jobs, tmp_path, only="yosemite", echo=lines.append)
        assert lines == ["no profiles to generate"]
        assert result.ok


class TestCommandLine:
    """Test the console entry points."""

    @pytest.fixture
    def manifest(self, tmp_path):
        path = tmp_path / "locations.json"
        path.write_text(json.dumps([{"id": "zion", "name": "Zion", "bbox": BBOX}]))
        return path

    def test_batch_success(self, tmp_path, manifest, capsys):
        """Test a clean batch exits 0."""
        out_dir = tmp_path / "profiles"
        with patch("py_topo.distill.batch.distill", side_effect=fake_distill):
            code = distill_batch_main(["--manifest", str(manifest), "--out-dir", str(out_dir)])
        assert code == 0
        assert (out_dir / "zion.json").exists()
        assert "done wrote=1 skipped=0 failed=0" in capsys.readouterr().out

    def test_batch_failure_exit_code(self, tmp_path, manifest):
        """Test any failed location makes the batch exit non-zero."""
        with patch("py_topo.distill.batch.distill", side_effect=TileFetchError("offline")):
            code = distill_batch_main(["--manifest", str(manifest), "--out-dir", str(tmp_path / "out")])
        assert code == 1

    def test_batch_missing_manifest(self, tmp_path):
        """Test an unreadable manifest exits non-zero."""
        assert distill_batch_main(["--manifest", str(tmp_path / "missing.json")]) == 1

    def test_distill_writes_profile(self, tmp_path, capsys):
        """Test the single-location command derives the id from --out."""
        out = tmp_path / "olympic_peninsula.json"
        with patch("py_topo.cli.distill", side_effect=fake_distill) as distill:
            code = distill_main(["--bbox", ",".join(str(v) for v in BBOX), "--out", str(out)])
        assert code == 0
        assert distill.call_args[0][0].id == "olympic_peninsula"
        assert json.loads(out.read_text())["id"] == "olympic_peninsula"
        output = capsys.readouterr().out
        assert f"wrote {out}" in output
        assert "profile=olympic_peninsula" in output

    def test_distill_bad_bbox(self, tmp_path, capsys):
        """Test an invalid box exits non-zero before distilling."""
        with patch("py_topo.cli.distill") as distill:
            code = distill_main(["--bbox", "1,2,3", "--out", str(tmp_path / "x.json")])
        assert code == 1
        distill.assert_not_called()
        assert "bbox" in capsys.readouterr().err

    def test_distill_fetch_failure(self, tmp_path, capsys):
        """Test tile failures surface as a non-zero exit."""
        with patch("py_topo.cli.distill", side_effect=TileFetchError("status 503")):
            code = distill_main(["--bbox", ",".join(str(v) for v in BBOX), "--out", str(tmp_path / "x.json")])
        assert code == 1
        assert "generate profile: status 503" in capsys.readouterr().err
        assert not (tmp_path / "x.json").exists()
