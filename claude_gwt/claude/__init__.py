"""
Assistant process layer: launch command, context file, instances, routing
and the interactive meta-command session.
"""

from .command import build_assistant_command, has_existing_conversation
from .context_file import CONTEXT_FILE_NAME, render_context, write_context_file
from .instance import ClaudeInstance, EventKind, InstanceEvent, create_instance
from .meta_commands import InputAction, InputOutcome, InteractiveSession, parse_meta_command
from .protocol import LineBuffer, Message, MessageType, decode_line, encode_message
from .registry import InstanceRegistry
from .router import BroadcastResult, MessageRouter, RoutedEvent

__all__ = [
    'build_assistant_command',
    'has_existing_conversation',
    'CONTEXT_FILE_NAME',
    'render_context',
    'write_context_file',
    'ClaudeInstance',
    'EventKind',
    'InstanceEvent',
    'create_instance',
    'InputAction',
    'InputOutcome',
    'InteractiveSession',
    'parse_meta_command',
    'LineBuffer',
    'Message',
    'MessageType',
    'decode_line',
    'encode_message',
    'InstanceRegistry',
    'BroadcastResult',
    'MessageRouter',
    'RoutedEvent',
]
