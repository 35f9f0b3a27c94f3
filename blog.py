# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "branchlog[asr]",
# ]
#
# [tool.uv.sources]
# branchlog = { path = "." }
# ///
"""Standalone launcher: `uv run blog.py [add|list|voice|devices]`."""

from branchlog.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
