"""Entry point for `python -m reflexagent`.

Usage:
    python -m reflexagent
    REFLEXAGENT_STORAGE_BACKEND=sqlite REFLEXAGENT_STORAGE_SQLITE_PATH=reflex.db python -m reflexagent
"""

from __future__ import annotations

from reflexagent.app import run

run()
