"""
Services
Snapshot sources that feed the analysis engine.

Usage:
    from services import replay_file, replay_lines
"""

from .replay import ReplayReport, iter_snapshots, parse_line, replay_file, replay_lines

__all__ = ["ReplayReport", "iter_snapshots", "parse_line", "replay_file", "replay_lines"]
