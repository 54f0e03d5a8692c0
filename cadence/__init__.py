"""
Cadence: the reply core of a conversational agent.

Cadence governs a single agent run: it drives a model completion, frames the
output into chat-sized blocks, drops text a messaging tool already sent, and
delivers every reply to a channel in order, at a human pace, with clean
cancellation.

Layers (bottom to top):
    1. Reply tokens and text normalisation (dedupe)
    2. Block chunker
    3. Reply dispatcher (ordered, paced delivery)
    4. Run controller (session registry, provider boundary, events)
    5. Reply pipeline (wiring runs to a dispatcher)
"""

__version__ = "0.1.0"
