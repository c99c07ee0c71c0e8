from __future__ import annotations

import json
from pathlib import Path

from knowpack.cli import main

ARTICLE = """---
topic: {topic}
confidence: 8
sources_checked: 9
last_verified: 2026-02-16
---
{text}
"""


def _knowledge(root: Path) -> Path:
    pack = root / "solana"
    pack.mkdir(parents=True)
    (pack / "INDEX.md").write_text("# Index\n", encoding="utf-8")
    (pack / "bridges.md").write_text(ARTICLE.format(topic="bridge-integration", text="Use audited bridges."), encoding="utf-8")
    (pack / "fees.md").write_text(ARTICLE.format(topic="priority fees", text="Set compute unit prices."), encoding="utf-8")
    return root


def test_assemble_prints_json_envelope(tmp_path: Path, capsys):
    root = _knowledge(tmp_path)
    code = main(["--root", str(root), "assemble", "solana", "--topic", "bridge", "--now", "2026-03-01T00:00:00Z"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["body"] == "Use audited bridges."
    assert payload["metadata"]["documents"][0]["topic"] == "bridge-integration"


def test_assemble_body_to_file(tmp_path: Path):
    root = _knowledge(tmp_path / "kb")
    out = tmp_path / "context.txt"
    code = main(["--root", str(root), "assemble", "solana", "--format", "body", "--out", str(out)])
    assert code == 0
    text = out.read_text(encoding="utf-8")
    assert "Use audited bridges." in text
    assert "Set compute unit prices." in text


def test_unknown_pack_and_small_budget_exit_codes(tmp_path: Path, capsys):
    root = _knowledge(tmp_path)
    assert main(["--root", str(root), "assemble", "ethereum"]) == 2
    assert main(["--root", str(root), "assemble", "solana", "--budget", "2"]) == 3
    assert "Unknown pack" in capsys.readouterr().err


def test_packs_and_show(tmp_path: Path, capsys):
    root = _knowledge(tmp_path)
    assert main(["--root", str(root), "packs"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["packs"][0]["topics"] == ["bridge-integration", "priority fees"]
    assert main(["--root", str(root), "show", "solana"]) == 0
    assert capsys.readouterr().out.startswith("# Index")
    assert main(["--root", str(root), "show", "solana", "../../etc/passwd"]) == 1
