"""
Tmux integration: driver, session enhancement and the session registry.
"""

from .driver import TmuxDriver, TmuxPane, TmuxSession, parse_panes, parse_sessions
from .enhancer import TmuxEnhancer
from .session_registry import SessionRegistry

__all__ = [
    'TmuxDriver',
    'TmuxPane',
    'TmuxSession',
    'parse_panes',
    'parse_sessions',
    'TmuxEnhancer',
    'SessionRegistry',
]
