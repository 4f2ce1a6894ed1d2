#!/usr/bin/env python3

"""
Session Setup - Sign in to the shared spreadsheet and save the session
"""

import argparse
import sys

from config_loader import load_config
from page_query import BrowserLaunchError
from sheet_sync import SessionRejected, SheetSession, SpreadsheetUrlError


def setup_session(config_path: str = "config/settings.yaml") -> int:
    """Open Chrome for a manual Google sign-in, then verify the saved session"""
    config = load_config(config_path)
    url = config.get_spreadsheet_url()
    if not url:
        print("❌ spreadsheet.url is not set in the config")
        return 1

    print("\n" + "="*60)
    print("🔐 SPREADSHEET SESSION SETUP")
    print("="*60)
    print(f"\nUsing profile: {config.get_sheet_user_data_dir()}")
    print("\nThis will open a Chrome window.")
    print("1. Sign in with the Google account that can open the sheet")
    print("2. Wait for the sheet to load")
    print("3. Press Enter here when done")
    print("\n" + "="*60 + "\n")

    try:
        sheet = SheetSession(
            spreadsheet_url=url,
            session_file=config.get_session_file(),
            user_data_dir=config.get_sheet_user_data_dir(),
            debug_host=config.get_remote_debug_host(),
            debug_port=config.get_remote_debug_port(),
        )
        state = sheet.capture_interactive()
        sheet.download_with_session(state)
    except SpreadsheetUrlError as e:
        print(f"❌ {e}")
        return 1
    except BrowserLaunchError as e:
        print(f"❌ Chrome could not be started: {e}")
        return 1
    except SessionRejected as e:
        print(f"\n⚠️  Session saved but the sheet export was refused:\n{e}")
        print("   Make sure the signed-in account can open the sheet, then try again.")
        return 1

    print(f"\n✅ Session saved to {config.get_session_file()}")
    print("\n   You can now run main.py!")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Spreadsheet session setup")
    parser.add_argument("--config", default="config/settings.yaml", help="Path to config YAML")
    return setup_session(parser.parse_args().config)


if __name__ == "__main__":
    sys.exit(main())
