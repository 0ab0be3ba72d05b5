"""Tests for toolchain bootstrap and the command delegator."""

import hashlib
import os
import shutil
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

from homeshell.delegator.base import BootstrapError, EngineNotFoundError
from homeshell.delegator.bootstrap import ToolchainBootstrapper, render_shim
from homeshell.delegator.command_wrapper import CommandDelegator
from homeshell.delegator.config import DelegatorConfig
from homeshell.tools.command_runner import ToolNotFoundError

ARCHIVE_BYTES = b"pretend this is a gzipped tarball"
ARCHIVE_SHA256 = hashlib.sha256(ARCHIVE_BYTES).hexdigest()


class FakeEngine:
    """Stands in for the container engine, emulating each bootstrap step on disk."""

    def __init__(self, fail_step=None, fail_code=1, final_exit_code=0):
        self.calls = []
        self.fail_step = fail_step
        self.fail_code = fail_code
        self.final_exit_code = final_exit_code

    @staticmethod
    def step_of(args):
        if "--output" in args:
            return "download"
        if "gzip" in args:
            return "decompress"
        if "tar" in args:
            return "unpack"
        return "run"

    def __call__(self, args):
        args = list(args)
        self.calls.append(args)
        step = self.step_of(args)
        if step == self.fail_step:
            return self.fail_code
        if step == "run":
            return self.final_exit_code

        workdir = Path(args[args.index("--workdir") + 1])
        if step == "download":
            (workdir / "docker.tgz").write_bytes(ARCHIVE_BYTES)
        elif step == "decompress":
            (workdir / "docker.tgz").unlink()
            (workdir / "docker.tar").write_bytes(b"tar")
        elif step == "unpack":
            (workdir / "docker").mkdir()
            (workdir / "docker" / "docker").write_text("#!/bin/sh\necho docker\n")
        return 0

    def steps(self):
        return [self.step_of(call) for call in self.calls]


class BootstrapTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="homeshell_test_")
        self.addCleanup(shutil.rmtree, self.tmp, True)
        self.scratch = Path(self.tmp) / "cosh"

    def make_config(self, **overrides):
        values = dict(
            tmp_dir=self.tmp,
            home_dir=self.tmp,
            cwd=self.tmp,
            scratch_dir=self.scratch,
            delegator_path="/opt/bin/cosh",
            user="1000:1000",
            docker_sha256=ARCHIVE_SHA256,
        )
        values.update(overrides)
        return DelegatorConfig(**values)

    def staging_entries(self):
        staging = self.scratch / "staging"
        return list(staging.iterdir()) if staging.exists() else []


class TestToolchainBootstrapper(BootstrapTestCase):
    """Test cases for ToolchainBootstrapper."""

    def test_cold_cache_bootstraps_once(self):
        """Test that a cold cache bootstraps once and then stays warm."""
        engine = FakeEngine()
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=engine)

        self.assertTrue(bootstrapper.ensure())
        self.assertEqual(engine.steps(), ["download", "decompress", "unpack"])

        layout = bootstrapper.layout
        self.assertTrue(os.access(layout.binary_path, os.X_OK))
        self.assertEqual(len(layout.shim_paths), 2)
        for shim in layout.shim_paths:
            self.assertTrue(os.access(shim, os.X_OK))

        # Warm cache: nothing runs
        self.assertFalse(bootstrapper.ensure())
        self.assertEqual(len(engine.calls), 3)

    def test_persisted_layout(self):
        """Test the files left in the scratch directory."""
        ToolchainBootstrapper(self.make_config(), runner=FakeEngine()).ensure()

        self.assertEqual(
            sorted(p.name for p in (self.scratch / "bin").iterdir()),
            ["docker", "docker-credential-gcloud", "docker-credential-gcr"],
        )
        self.assertEqual(self.staging_entries(), [])

    def test_download_failure_aborts(self):
        """Test that a failed download aborts the bootstrap."""
        engine = FakeEngine(fail_step="download", fail_code=6)
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=engine)

        with self.assertRaises(BootstrapError) as ctx:
            bootstrapper.ensure()

        self.assertEqual(ctx.exception.step, "download")
        self.assertEqual(ctx.exception.exit_code, 6)
        self.assertFalse(bootstrapper.layout.binary_path.exists())
        self.assertEqual(self.staging_entries(), [])

    def test_unpack_failure_leaves_no_binary(self):
        """Test that a failed unpack leaves no binary behind."""
        engine = FakeEngine(fail_step="unpack", fail_code=2)
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=engine)

        with self.assertRaises(BootstrapError) as ctx:
            bootstrapper.ensure()

        self.assertEqual(ctx.exception.step, "unpack")
        self.assertFalse(bootstrapper.is_bootstrapped())
        self.assertEqual(self.staging_entries(), [])

        # The next attempt starts over
        retry = FakeEngine()
        self.assertTrue(ToolchainBootstrapper(self.make_config(), runner=retry).ensure())
        self.assertEqual(retry.steps(), ["download", "decompress", "unpack"])

    def test_checksum_mismatch_aborts_before_decompression(self):
        """Test that a digest mismatch stops before decompression."""
        engine = FakeEngine()
        config = self.make_config(docker_sha256="0" * 64)
        bootstrapper = ToolchainBootstrapper(config, runner=engine)

        with self.assertRaises(BootstrapError) as ctx:
            bootstrapper.ensure()

        self.assertEqual(ctx.exception.step, "verify")
        self.assertEqual(engine.steps(), ["download"])
        self.assertFalse(bootstrapper.layout.binary_path.exists())

    def test_checksum_match_installs(self):
        """Test that a matching pinned digest lets the install through."""
        bootstrapper = ToolchainBootstrapper(
            self.make_config(docker_sha256=ARCHIVE_SHA256), runner=FakeEngine()
        )

        self.assertTrue(bootstrapper.ensure())
        self.assertTrue(bootstrapper.is_bootstrapped())

    def test_unpinned_download_is_refused(self):
        """Test that an unpinned custom version fails verification."""
        engine = FakeEngine()
        config = self.make_config(docker_version="25.0.0", docker_sha256=None)
        bootstrapper = ToolchainBootstrapper(config, runner=engine)

        with self.assertRaises(BootstrapError) as ctx:
            bootstrapper.ensure()

        self.assertEqual(ctx.exception.step, "verify")
        self.assertIn(ARCHIVE_SHA256, str(ctx.exception))
        self.assertEqual(engine.steps(), ["download"])
        self.assertFalse(bootstrapper.is_bootstrapped())
        self.assertEqual(self.staging_entries(), [])

    def test_unpinned_download_allowed_when_verification_disabled(self):
        """Test that docker_verify off installs an unpinned download with a warning."""
        config = self.make_config(docker_sha256=None, verify_download=False)
        bootstrapper = ToolchainBootstrapper(config, runner=FakeEngine())

        with self.assertLogs("homeshell.delegator.bootstrap", level="WARNING") as logs:
            self.assertTrue(bootstrapper.ensure())

        self.assertTrue(bootstrapper.is_bootstrapped())
        self.assertIn(ARCHIVE_SHA256, "\n".join(logs.output))

    def test_non_executable_binary_triggers_bootstrap(self):
        """Test that a non-executable binary is replaced."""
        bin_dir = self.scratch / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "docker").write_text("partial")
        os.chmod(bin_dir / "docker", 0o644)

        engine = FakeEngine()
        self.assertTrue(ToolchainBootstrapper(self.make_config(), runner=engine).ensure())
        self.assertEqual(len(engine.calls), 3)

    def test_missing_shim_regenerated_without_engine(self):
        """Test that missing shims are regenerated without the engine."""
        engine = FakeEngine()
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=engine)
        bootstrapper.ensure()
        shim = bootstrapper.layout.shim_paths[0]
        shim.unlink()

        self.assertFalse(bootstrapper.ensure())
        self.assertTrue(os.access(shim, os.X_OK))
        self.assertEqual(len(engine.calls), 3)

    def test_failed_shim_write_leaves_bin_clean(self):
        """Test that an interrupted shim install leaves no temp files in bin/."""
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=FakeEngine())
        bootstrapper.ensure()
        bootstrapper.layout.shim_paths[0].unlink()

        with patch(
            "homeshell.delegator.bootstrap.os.replace", side_effect=OSError("disk full")
        ):
            with self.assertRaises(BootstrapError) as ctx:
                bootstrapper.ensure()

        self.assertEqual(ctx.exception.step, "shims")
        self.assertEqual(
            sorted(p.name for p in (self.scratch / "bin").iterdir()),
            ["docker", "docker-credential-gcr"],
        )
        self.assertEqual(self.staging_entries(), [])

    def test_download_uses_pinned_url(self):
        """Test that the download uses the pinned version and arch."""
        engine = FakeEngine()
        ToolchainBootstrapper(
            self.make_config(docker_version="20.10.9", docker_arch="aarch64"), runner=engine
        ).ensure()

        download = engine.calls[0]
        self.assertEqual(
            download[-1],
            "https://download.docker.com/linux/static/stable/aarch64/docker-20.10.9.tgz",
        )
        self.assertIn("--user", download)

    def test_shim_contents(self):
        """Test the generated shim script."""
        bootstrapper = ToolchainBootstrapper(self.make_config(), runner=FakeEngine())
        bootstrapper.ensure()

        content = bootstrapper.layout.shim_path("docker-credential-gcr").read_text()
        self.assertTrue(content.startswith("#!/bin/sh\n"))
        self.assertIn(f"exec /opt/bin/cosh --scratch-dir {self.scratch} docker-credential-gcr", content)
        self.assertIn('"$@"', content)

    def test_render_shim_quotes_paths(self):
        """Test that shim paths are shell quoted."""
        content = render_shim("/opt/my tools/cosh", "/tmp/a b", "helper")
        self.assertIn("exec '/opt/my tools/cosh' --scratch-dir '/tmp/a b' helper \"$@\"", content)


class TestCommandDelegator(BootstrapTestCase):
    """Test cases for CommandDelegator.run."""

    def test_cold_run_bootstraps_then_delegates(self):
        """Test that a cold run bootstraps and then delegates."""
        engine = FakeEngine()
        delegator = CommandDelegator(self.make_config(), runner=engine)

        self.assertEqual(delegator.run("echo", ["hello"]), 0)
        self.assertEqual(engine.steps(), ["download", "decompress", "unpack", "run"])
        self.assertEqual(
            engine.calls[-1][-4:],
            ["--entrypoint", "echo", delegator.config.image, "hello"],
        )

    def test_warm_run_only_delegates(self):
        """Test that a warm run only delegates."""
        engine = FakeEngine()
        CommandDelegator(self.make_config(), runner=engine).run("true")

        engine.calls.clear()
        CommandDelegator(self.make_config(), runner=engine).run("true")
        self.assertEqual(engine.steps(), ["run"])

    def test_exit_code_propagates(self):
        """Test that the delegated exit code becomes ours."""
        for code in (0, 1, 127):
            with self.subTest(code=code):
                engine = FakeEngine(final_exit_code=code)
                delegator = CommandDelegator(self.make_config(), runner=engine)
                self.assertEqual(delegator.run("sh", ["-c", f"exit {code}"]), code)

    def test_bootstrap_failure_skips_delegation(self):
        """Test that the command does not run after a failed bootstrap."""
        engine = FakeEngine(fail_step="decompress", fail_code=1)
        delegator = CommandDelegator(self.make_config(), runner=engine)

        with self.assertRaises(BootstrapError):
            delegator.run("true")
        self.assertNotIn("run", engine.steps())

    def test_missing_engine_reported(self):
        """Test that a missing engine client is reported."""
        def runner(args):
            raise ToolNotFoundError(args[0])

        delegator = CommandDelegator(self.make_config(docker_command="docker"), runner=runner)
        with self.assertRaises(EngineNotFoundError) as ctx:
            delegator.run("true")
        self.assertEqual(ctx.exception.exit_code, 127)

    def test_status(self):
        """Test the status dictionary."""
        delegator = CommandDelegator(self.make_config(), runner=FakeEngine())
        self.assertFalse(delegator.get_status()["bootstrapped"])

        delegator.run("true")
        status = delegator.get_status()
        self.assertTrue(status["bootstrapped"])
        self.assertEqual(status["missing_shims"], [])
        self.assertTrue(status["checksum_pinned"])


@unittest.skipUnless(
    shutil.which("docker") and os.environ.get("HOMESHELL_DOCKER_TESTS"),
    "set HOMESHELL_DOCKER_TESTS=1 with a reachable Docker daemon",
)
class TestDelegatorEndToEnd(unittest.TestCase):
    """Runs against a real engine; opt-in."""

    def test_echo_hello(self):
        """Test running echo through a real engine."""
        import subprocess

        config = DelegatorConfig.from_environment(interactive_tty=False)
        if config.docker_sha256 is None:
            config = replace(config, verify_download=False)
        delegator = CommandDelegator(config)
        delegator.bootstrapper.ensure()

        result = subprocess.run(
            delegator.build_args("echo", ["hello"]),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "hello")


if __name__ == "__main__":
    unittest.main()
