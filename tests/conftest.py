import os
import shutil
import stat
import textwrap

import pytest

from cpprunner.config import RunnerSettings, clear_settings_cache

requires_gpp = pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")

# Stands in for g++: "compiles" a shell script by copying it to the -o path.
FAKE_COMPILER = """\
#!/bin/sh
src="$1"
while [ "$#" -gt 0 ]; do
  if [ "$1" = "-o" ]; then out="$2"; fi
  shift
done
cp "$src" "$out" && chmod +x "$out"
"""

# Always fails with a g++-shaped diagnostic pointing into the source file.
FAILING_COMPILER = """\
#!/bin/sh
echo "$1: In function 'int main()':" >&2
echo "$1:1:20: error: expected ',' or ';' before 'int'" >&2
exit 1
"""


def write_executable(path, body):
    path.write_text(textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def settings(scratch_dir):
    return RunnerSettings(
        scratch_dir=str(scratch_dir),
        timeout_ms=1000,
        kill_grace_ms=200,
    )


@pytest.fixture
def fake_compiler(tmp_path):
    return write_executable(tmp_path / "fake-gxx", FAKE_COMPILER)


@pytest.fixture
def failing_compiler(tmp_path):
    return write_executable(tmp_path / "failing-gxx", FAILING_COMPILER)


@pytest.fixture
def script_settings(settings, fake_compiler):
    """Settings whose "compiler" turns shell-script sources into runnable binaries."""
    return settings.model_copy(update={"compiler": fake_compiler})


@pytest.fixture
def make_program(tmp_path):
    counter = {"n": 0}

    def _make(body):
        counter["n"] += 1
        return write_executable(tmp_path / f"program_{counter['n']}", "#!/bin/sh\n" + textwrap.dedent(body))

    return _make


def scratch_files(scratch_dir):
    return sorted(os.listdir(scratch_dir))
