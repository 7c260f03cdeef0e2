"""
Fill a form from the command line.

Connect to a running Chrome (start it with --remote-debugging-port=9222):
    python -m autofill https://jobs.example.com/apply --cdp-port 9222

Or let Playwright launch Chromium:
    python -m autofill https://jobs.example.com/apply --profile data/profile.json
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright

from autofill import config
from autofill.ai_client import build_ai_client
from autofill.form_logger import FormLogger
from autofill.orchestrator import FillOrchestrator, FillReport
from autofill.page import PlaywrightFormPage
from autofill.profile import get_profile_manager
from autofill.resolver import AnswerResolver
from storage import JsonFileStore, MemoryStore


async def run(url: str, profile_path: Optional[Path] = None, cdp_port: Optional[int] = None,
              headless: bool = False, use_ai: bool = True, feedback: bool = False) -> FillReport:
    profile = get_profile_manager(profile_path).as_profile_data()
    memory = MemoryStore(JsonFileStore(config.MEMORY_STORE_PATH))
    resolver = AnswerResolver(memory, build_ai_client() if use_ai else None)

    async with async_playwright() as playwright:
        if cdp_port:
            browser = await playwright.chromium.connect_over_cdp(f"http://localhost:{cdp_port}")
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
        else:
            browser = await playwright.chromium.launch(headless=headless)
            context = await browser.new_context()
        page = await context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded")
            orchestrator = FillOrchestrator(
                PlaywrightFormPage(page),
                resolver,
                memory=memory,
                sink=FormLogger(),
                enable_feedback=feedback,
            )
            return await orchestrator.fill(profile)
        finally:
            if not cdp_port:
                await browser.close()


def main():
    parser = argparse.ArgumentParser(description="Fill a web form from your profile, learned answers and AI")
    parser.add_argument("url", help="Form URL")
    parser.add_argument("--profile", type=Path, default=None, help="Profile JSON (default: data/profile.json)")
    parser.add_argument("--cdp-port", type=int, default=0, help="Connect to running Chrome on this port")
    parser.add_argument("--headless", action="store_true", help="Launch Chromium headless")
    parser.add_argument("--no-ai", action="store_true", help="Memory and profile only")
    parser.add_argument("--feedback", action="store_true", help="Report learned answer hashes for feedback")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 60)
    print(f"📝 Autofill: {args.url[:50]}")
    print("=" * 60)

    report = asyncio.run(run(
        args.url,
        profile_path=args.profile,
        cdp_port=args.cdp_port or None,
        headless=args.headless,
        use_ai=not args.no_ai,
        feedback=args.feedback,
    ))
    print(report.summary())


if __name__ == "__main__":
    main()
