"""
Python script to open a tab, navigate it and dump what was loaded.

Example commands:

    # Print the page source of a URL
    python -m autotab.scripts.page_source --url https://example.com

    # Print the outer HTML of every link, with console messages relayed to the log
    python -m autotab.scripts.page_source \
        --url https://example.com \
        --selector "a" \
        --console
"""

import argparse
import asyncio
import logging

from autotab.cdp.tab import Tab
from autotab.config import Config
from autotab.data_models.page import ConsoleMessage
from autotab.utils.exceptions import AutotabError

logging.basicConfig(level=Config.LOG_LEVEL, format=Config.LOG_FORMAT, datefmt=Config.LOG_DATE_FORMAT)
logger = logging.getLogger(__name__)


async def log_console_message(message: ConsoleMessage) -> None:
    logger.info("[console.%s] %s", message.level, message.text)


async def dump_page(
    url: str,
    remote_debugging_address: str,
    selector: str | None = None,
    timeout: float | None = None,
    relay_console: bool = False,
) -> None:
    """
    Open a tab, navigate to url and print the page source or the selector matches.
    """
    async with Tab.open(remote_debugging_address=remote_debugging_address) as tab:
        if relay_console:
            await tab.get_console_messages(log_console_message)

        frame_id = await tab.navigate(url, timeout=timeout)
        logger.info("Loaded %s in frame %s", url, frame_id)

        if selector:
            elements = await tab.get_elements_by_selector(selector)
            logger.info("%d elements match %r", len(elements), selector)
            for element in elements:
                print(await element.get_source())
        else:
            print(await tab.get_page_source())

        for frame_id, frame_url in (await tab.get_frame_resources()).items():
            logger.info("Frame %s: %s", frame_id, frame_url)


def main() -> None:
    """
    Main function for dumping a page.
    """
    parser = argparse.ArgumentParser(description="Navigate a new tab and dump its source")
    parser.add_argument("--url", type=str, required=True, help="URL to navigate to")
    parser.add_argument(
        "--remote-debugging-address",
        type=str,
        default=Config.REMOTE_DEBUGGING_ADDRESS,
        help="Chrome debugging server address",
    )
    parser.add_argument("--selector", type=str, required=False, help="CSS selector whose matches are printed")
    parser.add_argument("--timeout", type=float, required=False, help="Seconds to wait for the page load event")
    parser.add_argument("--console", action="store_true", help="Relay console messages to the log")
    args = parser.parse_args()

    try:
        asyncio.run(
            dump_page(
                url=args.url,
                remote_debugging_address=args.remote_debugging_address,
                selector=args.selector,
                timeout=args.timeout,
                relay_console=args.console,
            )
        )
    except AutotabError as e:
        logger.error("Error dumping page: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
