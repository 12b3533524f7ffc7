from pathlib import Path
import json
import os
import sys

import pytest


FAKE_READPST_BODY = '''
import json
import os
import sys
import time

args = sys.argv[1:]
out_dir = args[args.index("-o") + 1]
with open(args[-1], encoding="utf-8") as handle:
    archive = json.load(handle)

time.sleep(archive.get("sleep", 0))
if archive.get("fail"):
    sys.stderr.write(archive.get("stderr", "corrupt archive\\n"))
    sys.exit(archive.get("exit_code", 1))

folder = os.path.join(out_dir, "Inbox")
os.makedirs(folder, exist_ok=True)
for index, message in enumerate(archive.get("messages", []), 1):
    with open(os.path.join(folder, "%03d.eml" % index), "w", encoding="utf-8") as handle:
        handle.write(message)
'''


def build_eml(subject=None, body="Body", date_header="", cc="", html=False):
    subject_line = f"Subject: {subject}\n" if subject is not None else ""
    date_line = f"Date: {date_header}\n" if date_header else ""
    cc_line = f"Cc: {cc}\n" if cc else ""
    content_type = "text/html" if html else "text/plain"
    return (
        "From: sender@example.com\n"
        "To: receiver@example.com\n"
        f"{cc_line}"
        f"{subject_line}"
        f"{date_line}"
        f"Content-Type: {content_type}; charset=utf-8\n"
        "\n"
        f"{body}\n"
    )


@pytest.fixture
def make_eml(tmp_path: Path):
    def _make(filename: str, subject=None, body: str = "Body", date_header: str = "", **kwargs) -> Path:
        path = tmp_path / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(build_eml(subject, body, date_header, **kwargs), encoding="utf-8")
        return path

    return _make


@pytest.fixture
def fake_readpst(tmp_path: Path) -> Path:
    """A readpst stand-in that reads a JSON 'archive' and writes .eml files."""
    if os.name == "nt":
        pytest.skip("fake readpst relies on a POSIX shebang")
    path = tmp_path / "tools" / "readpst"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{FAKE_READPST_BODY}", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def make_pst(tmp_path: Path):
    def _make(filename: str, messages=(), directory: Path = None, **behaviour) -> Path:
        target_dir = directory or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / filename
        payload = {"messages": list(messages)}
        payload.update(behaviour)
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _make
