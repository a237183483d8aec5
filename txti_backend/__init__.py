"""Document session engine for the txti editor.

The HTTP layer in server.py stays thin; the engine lives here:
- .txti archive read/write (content.json + assets/)
- per-tab scratch directories for pasted images
- settings and session persistence (atomic JSON writes)
- the tab registry and the multi-window close protocol
"""
