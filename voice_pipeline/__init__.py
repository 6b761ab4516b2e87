"""
Voice Pipeline for voice_relay.

Real-time audio processing: chunked call audio -> utterances -> STT -> reply -> TTS
-> reply pushed back over the caller's own connection.

- One session per call; at most one pipeline run in flight per session
- Sessions are isolated: a failure costs at most one turn or one session
- All behavior is observable via structured events
"""
