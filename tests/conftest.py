import sys
from pathlib import Path

import pytest


def pytest_configure():
    # Ensure `src/` is on sys.path so `import mcpbridge` works without an editable install.
    root = Path(__file__).resolve().parent.parent
    src = root / "src"
    if src.exists():
        p = str(src)
        if p not in sys.path:
            sys.path.insert(0, p)


FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fake_server_script() -> Path:
    return FIXTURES / "fake_mcp_server.py"


@pytest.fixture
def scripted_server_script() -> Path:
    return FIXTURES / "scripted_mcp_server.py"
