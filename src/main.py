#!/usr/bin/env python3

"""
Company Contact Collector - Main Entry Point
Crawls job-site search results and appends new companies to a CSV ledger
"""

import argparse
import logging
import sys

from config_loader import ConfigValidationError, load_config
from collector import CompanyCollector, PaginationDriver
from dedupe_store import DedupLedger
from extractor import EntityExtractor
from output_writer import LedgerWriter
from page_query import BrowserLaunchError
from relay import RelayClient
from run_control import ControlListener, RunControl, install_signal_handlers
from run_metrics import RunMetrics
from sheet_sync import SessionRejected, SheetSession, sync_ledger_from_sheet
from site_adapters import get_adapter


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, str(config.get_log_level()).upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config, adapter) -> None:
    """Display loaded configuration"""
    logger = logging.getLogger(__name__)

    print("\n" + "="*60)
    print(f"🤖 COMPANY CONTACT COLLECTOR ({adapter.label})")
    print("="*60)

    print("\n📋 SEARCH:")
    print(f"  URL: {config.get_search_url()}")
    print(f"  Start page: {config.get_start_page()}")
    max_companies = config.get_max_companies()
    print(f"  New companies limit: {max_companies or 'unlimited'}")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {config.is_headless()}")
    delay_ms = config.get_delay_ms()
    print(f"  Delay: {adapter.delay_ms if delay_ms is None else delay_ms}ms")
    print(f"  Page timeout: {config.get_page_timeout()/1000}s")
    print(f"  Profile: {config.get_user_data_dir(adapter.name)}")

    print(f"\n💾 OUTPUT:")
    print(f"  Ledger: {config.get_ledger_path(adapter.name)}")
    print(f"  Spreadsheet seed: {'✓ ' + config.get_spreadsheet_url() if config.is_sheet_sync_enabled() else '✗ Disabled'}")
    print(f"  Relay: {'✓ Enabled' if config.get_relay_url() else '✗ Disabled'}")

    print("\n" + "="*60 + "\n")

    logger.info("Config validated: %r", config)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Company Contact Collector")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument(
        "--no-control",
        action="store_true",
        help="Do not read p/q commands from stdin",
    )
    return parser.parse_args()


def seed_from_spreadsheet(config, ledger_path) -> None:
    sheet = SheetSession(
        spreadsheet_url=config.get_spreadsheet_url(),
        session_file=config.get_session_file(),
        user_data_dir=config.get_sheet_user_data_dir(),
        debug_host=config.get_remote_debug_host(),
        debug_port=config.get_remote_debug_port(),
    )
    sync_ledger_from_sheet(sheet, ledger_path)


def main():
    """Main execution function"""
    print("\n🚀 Starting Company Contact Collector...")
    args = parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)

    adapter = get_adapter(
        config.get_site(),
        phone_pattern=config.get_phone_pattern(),
        email_pattern=config.get_email_pattern(),
    )
    display_config(config, adapter)

    ledger_path = config.get_ledger_path(adapter.name)

    # Spreadsheet seed replaces the local ledger
    if config.is_sheet_sync_enabled():
        try:
            seed_from_spreadsheet(config, ledger_path)
        except (ConfigValidationError, SessionRejected, BrowserLaunchError) as e:
            logger.error("Spreadsheet download failed: %s", e)
            print(f"❌ Spreadsheet download failed: {e}")
            return 1

    writer = LedgerWriter(ledger_path, adapter.header)
    if writer.ensure_header():
        print(f"📝 Ledger header written: {ledger_path}")

    ledger = DedupLedger(identity_column=adapter.identity_column)
    seeded = ledger.seed_from_file(ledger_path)
    print(f"🧹 Known companies loaded: {len(seeded)}")

    control = RunControl()
    install_signal_handlers(control)

    relay = None
    if config.get_relay_url():
        relay = RelayClient(
            config.get_relay_url(),
            token=config.get_relay_token() or None,
            timeout=config.get_relay_timeout(),
        )

    metrics = RunMetrics(site=adapter.name)
    extractor = EntityExtractor(
        adapter, ledger, writer,
        relay=relay,
        metrics=metrics,
        delay_ms=config.get_delay_ms(),
    )
    driver = PaginationDriver(
        adapter, extractor, control,
        start_page=config.get_start_page(),
        max_companies=config.get_max_companies(),
        delay_ms=config.get_delay_ms(),
    )
    listener = None if args.no_control else ControlListener(control)

    collector = CompanyCollector(config, adapter)
    try:
        result = collector.collect(driver, config.get_search_url(), listener=listener)
        metrics.attach_result(result)
    except BrowserLaunchError as e:
        logger.error("Browser launch failed: %s", e)
        print(f"❌ {e}")
        return 1
    finally:
        metrics.finish()
        metrics_template = config.get_metrics_file()
        if metrics_template:
            metrics_path = metrics.write_json(metrics_template)
            logger.info("Run metrics written: %s", metrics_path)

    # Summary
    print("\n" + "="*60)
    print("⏹️  COLLECTION STOPPED" if result.stopped else "✅ COLLECTION COMPLETE")
    print("="*60)
    print(f"\n📊 Results: {result.inserted} new companies")
    print(f"   Skipped (already known): {result.skipped}")
    print(f"   Duplicates: {result.duplicates}")
    print(f"   Failed: {result.failed}")
    print(f"   Last search page: {result.last_page}")
    print(f"📁 Ledger: {ledger_path}")
    print("\n" + "="*60 + "\n")

    logger.info(f"Collection complete: {result.inserted} companies saved")
    return 0


if __name__ == "__main__":
    sys.exit(main())
