"""
Dotion - Calendar Chat Assistant
================================

Talk to a language model to view, create, update and delete Google
Calendar events, and control desktop apps by natural language.

Modules:
- core: config, logging, errors, model client, tool-call streaming
- auth: Google OAuth flow and cookie-backed sessions
- tools: calendar gateway, tool schemas, tool executor
- system: desktop app control
- api: FastAPI server
"""

__version__ = "0.1.0"
__author__ = "Dotion Project"
