"""
Per-request browser sessions: launch an isolated Chromium with container-safe
flags, hand out its page, and tear everything down exactly once.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import sync_playwright

from operator_config import OperatorConfig
from operator_errors import LaunchError

log = logging.getLogger(__name__)


@dataclass
class BrowserSession:
    """One Playwright driver, one browser, one context, one page."""

    page: Any
    context: Any = None
    browser: Any = None
    playwright: Any = None
    closed: bool = False

    def close(self) -> None:
        """Close page context, browser and driver. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.context is not None:
                self.context.close()
        except Exception as e:
            log.warning("Context close failed: %s", e)
        try:
            if self.browser is not None:
                self.browser.close()
        except Exception as e:
            log.warning("Browser close failed: %s", e)
        try:
            if self.playwright is not None:
                self.playwright.stop()
        except Exception as e:
            log.warning("Playwright stop failed: %s", e)


Launcher = Callable[[OperatorConfig], BrowserSession]


def launch_session(config: OperatorConfig) -> BrowserSession:
    """Start Chromium and open a fresh context and page. Raises LaunchError."""
    executable_path: Optional[str] = config.executable_path
    if executable_path and not Path(executable_path).exists():
        log.warning("Browser executable %s not found; using Playwright's bundled Chromium", executable_path)
        executable_path = None

    playwright = sync_playwright().start()
    browser = None
    try:
        browser = playwright.chromium.launch(
            headless=config.headless,
            executable_path=executable_path,
            args=config.browser_args,
        )
        context_kwargs = {
            "viewport": {"width": config.viewport_width, "height": config.viewport_height},
        }
        if config.storage_state_path:
            context_kwargs["storage_state"] = config.storage_state_path
        context = browser.new_context(**context_kwargs)
        page = context.new_page()
    except Exception as e:
        try:
            if browser is not None:
                browser.close()
        finally:
            playwright.stop()
        raise LaunchError(f"Could not launch browser: {e}") from e

    log.info("Browser launched (headless=%s, executable=%s)", config.headless, executable_path or "bundled")
    return BrowserSession(page=page, context=context, browser=browser, playwright=playwright)


def save_debug(page: Any, debug_dir: Optional[str], label: str = "debug") -> Optional[Path]:
    """Dump page HTML and a full-page screenshot into debug_dir. Never raises."""
    if not debug_dir:
        return None
    try:
        out = Path(debug_dir)
        out.mkdir(parents=True, exist_ok=True)
        base = out / f"{int(time.time() * 1000)}_{label}"
        base.with_suffix(".html").write_text(page.content(), encoding="utf-8")
        page.screenshot(path=str(base.with_suffix(".png")), full_page=True)
        log.info("Saved diagnostics to %s.{html,png}", base)
        return base
    except (OSError, PWError) as e:
        log.warning("Could not save diagnostics: %s", e)
        return None


@contextmanager
def open_session(config: OperatorConfig, launcher: Launcher = launch_session) -> Iterator[BrowserSession]:
    """Yield a fresh session; on any exit path dump diagnostics on failure and close it."""
    session = launcher(config)
    try:
        yield session
    except BaseException:
        save_debug(session.page, config.debug_dir, label="failure")
        raise
    finally:
        session.close()
        log.info("Browser session closed")
