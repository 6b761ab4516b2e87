"""
External service adapters (speech-to-text, reply generation, text-to-speech).
"""
from .base import ReplyGenerator, SpeechToText, TextToSpeech, provider_name
from .factory import AdapterSet, build_adapters
from .stub import EchoReplyGenerator, SilentTextToSpeech, StubSpeechToText

__all__ = [
    "AdapterSet",
    "EchoReplyGenerator",
    "ReplyGenerator",
    "SilentTextToSpeech",
    "SpeechToText",
    "StubSpeechToText",
    "TextToSpeech",
    "build_adapters",
    "provider_name",
]
