"""Guardrails to keep the kernel free of side effects and OS-specific dependencies."""

import re
from pathlib import Path


FORBIDDEN_PATTERNS = {
    "argparse": re.compile(r"\bargparse\b"),
    "pathlib.Path": re.compile(r"\bpathlib\.Path\b"),
    "open(": re.compile(r"(?<![A-Za-z0-9_])open\s*\("),
    "print(": re.compile(r"(?<![A-Za-z0-9_])print\s*\("),
    "sys.": re.compile(r"\bsys\."),
    "os.path": re.compile(r"\bos\.path\b"),
    "random": re.compile(r"\bimport random\b"),
    "time.time": re.compile(r"\btime\.time\b"),
    "logging.basicConfig": re.compile(r"\blogging\.basicConfig\b"),
}

KERNEL_DIR = Path(__file__).resolve().parents[1] / "src" / "blobscope" / "kernel"


def test_kernel_has_no_forbidden_tokens():
    offenders = []

    for path in KERNEL_DIR.glob("*.py"):
        contents = path.read_text(encoding="utf-8")
        for token, pattern in FORBIDDEN_PATTERNS.items():
            if pattern.search(contents):
                offenders.append(f"{path.name}: {token}")

    assert not offenders, "Forbidden kernel tokens found: " + ", ".join(offenders)


def test_kernel_does_not_import_outer_layers():
    """The kernel may use codes; api, cell, cli and contracts sit above it."""
    outer = re.compile(r"^\s*(from|import)\s+blobscope\.(api|cell|cli|contracts|_internal)\b", re.MULTILINE)
    offenders = [
        path.name for path in KERNEL_DIR.glob("*.py")
        if outer.search(path.read_text(encoding="utf-8"))
    ]
    assert not offenders, "Kernel modules import outer layers: " + ", ".join(offenders)
