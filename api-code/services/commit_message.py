from __future__ import annotations

from typing import Optional


DEFAULT_TARGET_RUNTIME = "nodejs20.x"
DEFAULT_BACKEND_TYPE = "Amplify"


def build_commit_message(
    target_runtime: Optional[str] = None,
    backend_type: Optional[str] = None,
    change_count: int = 0,
) -> str:
    """Commit message used when the operator did not supply one."""
    runtime = (target_runtime or "").strip() or DEFAULT_TARGET_RUNTIME
    backend = (backend_type or "").strip() or DEFAULT_BACKEND_TYPE
    count = max(0, int(change_count))
    lines = [
        f"chore: Update Lambda runtime to {runtime}",
        "",
        f"- Updated {backend} backend runtime configurations",
        "- Upgraded Amplify packages to latest versions",
        f"- Modified {count} file(s)",
        "",
        "This update ensures Lambda functions use supported Node.js runtimes.",
    ]
    return "\n".join(lines)
