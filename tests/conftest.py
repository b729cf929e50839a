import io

import pytest

from printer import Printer


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def printer(output):
    return Printer(stream=output, color=False)


def files_in(root):
    """Relative POSIX paths of every file below `root`"""
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


@pytest.fixture
def list_files():
    return files_in
