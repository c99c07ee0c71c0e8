from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from knowpack.api.app import create_app
from knowpack.config import DEFAULT_SEPARATOR, Settings

ARTICLE = """---
topic: {topic}
confidence: {confidence}
sources_checked: 9
last_verified: 2026-02-16
tags: [defi]
---
# {topic}

{text}
"""


def make_app(root: Path) -> TestClient:
    pack = root / "solana"
    pack.mkdir()
    combined = DEFAULT_SEPARATOR.join(
        [
            ARTICLE.format(topic="bridge-integration", confidence=8, text="Use audited bridges."),
            ARTICLE.format(topic="oracle pricing", confidence=7, text="Check confidence intervals."),
        ],
    )
    (pack / "defi.md").write_text(combined, encoding="utf-8")
    settings = Settings(environment="test", knowledge_dir=root, rate_limit_requests=1000)
    return TestClient(create_app(settings=settings))


def test_directory_backed_assembly(tmp_path: Path):
    client = make_app(tmp_path)
    r = client.get("/packs")
    assert r.status_code == 200
    assert r.json()["packs"][0]["document_count"] == 2

    r = client.post("/context", json={"pack": "solana", "tags": ["defi"], "budget_bytes": 4000, "now": "2026-03-01T00:00:00Z"})
    assert r.status_code == 200, r.text
    payload = r.json()
    parts = payload["body"].split(payload["separator"])
    assert len(parts) == 2
    assert all(part.startswith("# ") for part in parts)


def test_missing_knowledge_dir_serves_empty_store(tmp_path: Path):
    settings = Settings(environment="test", knowledge_dir=tmp_path / "absent")
    client = TestClient(create_app(settings=settings))
    assert client.get("/packs").json() == {"packs": []}
    assert client.post("/context", json={"pack": "solana", "budget_bytes": 4000}).status_code == 404
