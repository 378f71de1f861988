#!/usr/bin/env python3
"""
Dotion Runner Script

Entry point for running the Dotion calendar chat server.

Usage:
    python run.py                      # Start the API server
    python run.py --host 0.0.0.0 --port 8080
    python run.py --check-config       # Validate configuration
    python run.py --chat               # Terminal chat against a running server
    python run.py --chat --url http://127.0.0.1:3000
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

# Missing setting -> setup guide in dotion.core.errors
SETUP_GUIDES = {
    "OPENAI_API_KEY": "openai_key",
    "GOOGLE_CLIENT_ID": "google_oauth",
    "GOOGLE_CLIENT_SECRET": "google_oauth",
    "GOOGLE_REDIRECT_URI": "google_oauth",
    "GOOGLE_CALENDAR_ID": "calendar_id",
}


def check_configuration(config_path=None) -> bool:
    """Print configuration status; True if everything required is set."""
    from dotion.core.config import check_config, get_config, get_env_settings
    from dotion.tools.calendar import get_zone
    from dotion.core.errors import ValidationError, get_error_message

    print("\n" + "=" * 50)
    print("       Dotion Configuration Check")
    print("=" * 50)

    app_config = get_config(config_path)
    settings = get_env_settings()

    print(f"\nServer:    http://{app_config.server.host}:{app_config.server.port}")
    print(f"Model:     {app_config.llm.model}")
    print(f"Window:    {app_config.calendar.window_days} days, week starts {app_config.calendar.week_start}")
    print(f"Desktop:   {'enabled' if app_config.desktop.enabled else 'disabled'}")

    try:
        get_zone(settings.google_timezone)
        print(f"Timezone:  {settings.google_timezone}")
        timezone_ok = True
    except ValidationError as e:
        print(f"✗ {e.message}")
        timezone_ok = False

    missing = check_config(settings)
    print()
    for name in ("OPENAI_API_KEY", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET",
                 "GOOGLE_REDIRECT_URI", "GOOGLE_CALENDAR_ID"):
        mark = "✗" if name in missing else "✓"
        print(f"  {mark} {name}")

    print("\n" + "=" * 50)
    if missing or not timezone_ok:
        guidance = []
        for name in missing:
            key = SETUP_GUIDES.get(name)
            if key and key not in guidance:
                guidance.append(key)
        for key in guidance:
            print()
            print(get_error_message(key, detailed=True))
        return False
    print("✓ Configuration looks good!")
    return True


async def run_terminal_chat(url: str) -> None:
    """Minimal terminal chat client for a running server."""
    from dotion.core.consumer import ChatClient, Conversation

    client = ChatClient(base_url=url)
    conversation = Conversation()
    calendar_days = []

    async def refresh_calendar():
        nonlocal calendar_days
        try:
            window = await client.fetch_calendar()
            calendar_days = window.get("days", [])
        except Exception as e:
            print(f"(calendar refresh failed: {e})")

    print("Dotion chat. Type 'undo' to revert the last event change, 'quit' to exit.\n")
    await refresh_calendar()

    try:
        while True:
            text = await asyncio.to_thread(input, "You: ")
            text = text.strip()
            if not text:
                continue
            if text.lower() in ("quit", "exit"):
                break
            if text.lower() == "undo":
                cards = [m.tool_data for m in conversation.messages
                         if m.tool_data and m.tool_data.get("type") == "event"]
                if not cards:
                    print("Nothing to undo.\n")
                    continue
                try:
                    await client.undo(cards[-1])
                    await refresh_calendar()
                    print(f"Reverted {cards[-1].get('action')} of {cards[-1].get('summary')!r}\n")
                except Exception as e:
                    print(f"✗ {e}\n")
                continue

            seen = len(conversation.messages) + 1
            try:
                consumer = await client.send(conversation, text, calendar_days, on_refresh=refresh_calendar)
                await consumer.wait_for_refreshes()
            except Exception as e:
                print(f"✗ {e}")
                continue

            for message in conversation.messages[seen:]:
                if message.content:
                    print(f"Dotion: {message.content.strip()}")
                if message.tool_data:
                    print(f"  [{message.tool_data.get('type')}] {message.tool_data}")
            print()
    finally:
        await client.close()


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Dotion - Calendar Chat Assistant")
    parser.add_argument("--check-config", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--config", type=str, help="Path to configuration file")
    parser.add_argument("--host", type=str, help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument("--chat", action="store_true", help="Chat in the terminal with a running server")
    parser.add_argument("--url", type=str, default="http://127.0.0.1:3000", help="Server URL for --chat")

    args = parser.parse_args()

    if args.check_config:
        ok = check_configuration(args.config)
        sys.exit(0 if ok else 1)

    if args.chat:
        try:
            asyncio.run(run_terminal_chat(args.url))
        except KeyboardInterrupt:
            print("\nGoodbye!")
        return

    from dotion.api.app import run_api_server
    from dotion.core.config import get_config
    from dotion.core.logger import setup_logging

    app_config = get_config(args.config)
    setup_logging(app_config)

    try:
        asyncio.run(run_api_server(app_config, host=args.host, port=args.port))
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
