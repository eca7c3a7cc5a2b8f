import re
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def test_pyproject_only_names_files_that_ship():
    text = (ROOT / 'pyproject.toml').read_text()

    assert 'readme' not in text
    modules = re.findall(r'^\s+"(\w+)",$', text.split('py-modules')[1].split(']')[0], re.M)
    assert modules
    for module in modules:
        assert (ROOT / f'{module}.py').exists()
