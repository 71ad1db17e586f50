#!/usr/bin/env python3
"""
Grok web-edit operator: Playwright automation that uploads a source image to
the target web app, types an edit instruction, submits it and returns the URL
of the generated image. One isolated browser per run; nothing is reused.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

import httpx
from playwright.sync_api import Error as PWError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PWTimeoutError

from asset_stager import staged_asset
from browser_session import Launcher, launch_session, open_session
from operator_config import RESULT_STRATEGIES, OperatorConfig, load_config
from operator_errors import (
    STAGE_ASSET,
    STAGE_EXECUTION,
    STAGE_LAUNCH,
    STAGE_NAVIGATION,
    STAGE_RESULT,
    AutomationError,
    InterfaceNotFound,
    NavigationTimeout,
    NoResultFound,
    NoSubmitAffordance,
)
from page_heuristics import (
    BUTTON_SELECTOR,
    DROP_ZONE_MARK,
    FILE_INPUT_SELECTOR,
    TEXT_INPUT_SELECTOR,
    InterfaceSnapshot,
    ResultCandidate,
    collect_candidates,
    mark_first_drop_zone,
    matches_action,
    probe_interface,
    select_result,
)

log = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "imageUrl and prompt are required"


# ----------------------------
# Request / result
# ----------------------------

@dataclass(frozen=True)
class AutomationRequest:
    image_url: str
    prompt: str

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "AutomationRequest":
        """Build from the inbound {imageUrl, prompt}. Raises ValueError if either is missing or blank."""
        payload = payload or {}
        image_url = payload.get("imageUrl")
        prompt = payload.get("prompt")
        if not isinstance(image_url, str) or not image_url.strip():
            raise ValueError(REQUIRED_FIELDS_MESSAGE)
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError(REQUIRED_FIELDS_MESSAGE)
        return cls(image_url=image_url.strip(), prompt=prompt)


@dataclass
class EditResult:
    edited_image_url: str
    original_prompt: str
    processing_time_s: float
    snapshot: Optional[InterfaceSnapshot] = None
    candidate: Optional[ResultCandidate] = None
    telemetry: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "edited_image_url": self.edited_image_url,
            "original_prompt": self.original_prompt,
            "processing_time_s": self.processing_time_s,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "telemetry": self.telemetry,
        }


# ----------------------------
# Navigation
# ----------------------------

def navigate(
    page: Page,
    url: str,
    timeout_ms: int = 30_000,
    max_inflight: int = 2,
    quiet_ms: int = 500,
) -> Dict[str, Any]:
    """
    Load url, then wait until at most max_inflight requests have been pending
    for quiet_ms. Long-polling apps never reach zero, so this is "quiet", not idle.
    The whole wait is bounded by timeout_ms.
    """
    inflight: Set[Any] = set()

    def on_request(req) -> None:
        inflight.add(req)

    def on_done(req) -> None:
        inflight.discard(req)

    page.on("request", on_request)
    page.on("requestfinished", on_done)
    page.on("requestfailed", on_done)
    t0 = time.time()
    try:
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PWTimeoutError as e:
            raise NavigationTimeout(f"Navigation to {url} timed out after {timeout_ms} ms") from e
        except PWError as e:
            raise AutomationError(f"Navigation to {url} failed: {e}", stage=STAGE_NAVIGATION) from e

        quiet_since: Optional[float] = None
        while True:
            now = time.time()
            elapsed_ms = (now - t0) * 1000
            if len(inflight) <= max_inflight:
                if quiet_since is None:
                    quiet_since = now
                if (now - quiet_since) * 1000 >= quiet_ms:
                    return {"done": True, "reason": "network_quiet", "elapsed_s": round(elapsed_ms / 1000, 2)}
            else:
                quiet_since = None
            if elapsed_ms > timeout_ms:
                raise NavigationTimeout(
                    f"Network did not settle on {url} within {timeout_ms} ms ({len(inflight)} requests in flight)"
                )
            page.wait_for_timeout(100)
    finally:
        page.remove_listener("request", on_request)
        page.remove_listener("requestfinished", on_done)
        page.remove_listener("requestfailed", on_done)


# ----------------------------
# Interaction
# ----------------------------

def first_visible(locator, limit: int = 6):
    """First visible match among the first few, else the first match, else None."""
    n = locator.count()
    if n == 0:
        return None
    for i in range(min(n, limit)):
        el = locator.nth(i)
        try:
            if el.is_visible():
                return el
        except PWError:
            pass
    return locator.first


def upload_asset(page: Page, snapshot: InterfaceSnapshot, path: Path, settle_ms: int = 2000) -> str:
    """Hand the staged file to the first file input, or to the file chooser behind a drop zone."""
    files = page.locator(FILE_INPUT_SELECTOR)
    if files.count() > 0:
        # file inputs are often hidden; set_input_files works regardless
        files.first.set_input_files(str(path))
        method = "file_input"
    elif snapshot.drop_zones > 0:
        if not mark_first_drop_zone(page):
            raise InterfaceNotFound("Drop zone disappeared before upload.")
        with page.expect_file_chooser(timeout=5000) as chooser_info:
            page.locator(f"[{DROP_ZONE_MARK}]").first.click(timeout=3000)
        chooser_info.value.set_files(str(path))
        method = "file_chooser"
    else:
        raise InterfaceNotFound("No image upload interface found (no file inputs or drop zones).")
    page.wait_for_timeout(settle_ms)
    return method


def enter_prompt(page: Page, prompt: str, settle_ms: int = 1000) -> None:
    field_ = first_visible(page.locator(TEXT_INPUT_SELECTOR))
    if field_ is None:
        raise InterfaceNotFound("No text input found for the prompt (textarea/text input/contenteditable).")
    field_.fill(prompt)
    page.wait_for_timeout(settle_ms)


def click_submit(page: Page) -> str:
    """Click the first visible button whose text matches the action vocabulary; return its text."""
    buttons = page.locator(BUTTON_SELECTOR)
    for i in range(buttons.count()):
        btn = buttons.nth(i)
        try:
            if not btn.is_visible():
                continue
        except PWError:
            continue
        text = (btn.inner_text() or "").strip()
        if matches_action(text):
            btn.click(timeout=5000)
            return text
    raise NoSubmitAffordance("No submit button found (expected text like generate/edit/create/process/submit).")


def wait_for_result(
    page: Page,
    baseline: Set[str],
    timeout_s: float = 60.0,
    poll_s: float = 1.0,
) -> Dict[str, Any]:
    """Poll until an image source not in baseline appears. Return telemetry; timing out is not an error."""
    t0 = time.time()
    while True:
        elapsed = time.time() - t0
        fresh = [c.src for c in collect_candidates(page) if c.src not in baseline]
        if fresh:
            return {"done": True, "reason": "new_image", "elapsed_s": round(elapsed, 2), "new_count": len(fresh)}
        if elapsed >= timeout_s:
            return {"done": False, "reason": "timeout", "elapsed_s": round(elapsed, 2), "new_count": 0}
        page.wait_for_timeout(int(poll_s * 1000))


def extract_result(page: Page, strategy: str = "last", baseline: Optional[Set[str]] = None) -> ResultCandidate:
    candidates = collect_candidates(page)
    chosen = select_result(candidates, strategy=strategy, baseline=baseline)
    if chosen is None:
        raise NoResultFound("No result image found on the page (only inline data-URI images or none).")
    return chosen


# ----------------------------
# Core runner
# ----------------------------

def run_web_edit(
    request: AutomationRequest,
    config: OperatorConfig,
    launcher: Launcher = launch_session,
    client: Optional[httpx.Client] = None,
) -> EditResult:
    """
    Launch -> navigate -> probe -> stage asset -> upload/prompt/submit -> wait -> extract.
    Any failure aborts the run and raises an AutomationError subclass carrying its stage.
    The browser session and the staged file are always released.
    """
    t0 = time.time()
    telemetry: Dict[str, Any] = {}
    stage = STAGE_LAUNCH
    log.info("Starting web edit: image=%s target=%s", request.image_url, config.target_url)
    try:
        with open_session(config, launcher) as session:
            page = session.page

            stage = STAGE_NAVIGATION
            log.info("Navigating to %s", config.target_url)
            telemetry["navigation"] = navigate(
                page,
                config.target_url,
                timeout_ms=config.nav_timeout_ms,
                max_inflight=config.quiet_max_inflight,
                quiet_ms=config.quiet_window_ms,
            )

            stage = STAGE_EXECUTION
            snapshot = probe_interface(page)
            log.info("Page analysis: %s", snapshot.to_dict())
            if not snapshot.has_upload_area:
                hint = " Sign-in gate detected; provide a storage state for a logged-in account." if snapshot.auth_gate else ""
                raise InterfaceNotFound(
                    f"No image upload interface found on {snapshot.url or config.target_url} "
                    f"(no file inputs or drop zones).{hint}"
                )

            stage = STAGE_ASSET
            with staged_asset(
                request.image_url,
                client=client,
                timeout_s=config.asset_timeout_s,
                max_bytes=config.max_asset_bytes,
            ) as asset:
                stage = STAGE_EXECUTION
                telemetry["upload_method"] = upload_asset(page, snapshot, asset.path, settle_ms=config.upload_settle_ms)
                log.info("Uploaded %s via %s", asset.path.name, telemetry["upload_method"])
                enter_prompt(page, request.prompt, settle_ms=config.prompt_settle_ms)
                # After upload, so the widget's own preview of the source image is not a "new" result.
                baseline = {c.src for c in collect_candidates(page)}
                telemetry["submit_button"] = click_submit(page)
                log.info("Clicked %r; waiting for result", telemetry["submit_button"])

                telemetry["result_wait"] = wait_for_result(
                    page, baseline, timeout_s=config.result_timeout_s, poll_s=config.result_poll_s
                )

                stage = STAGE_RESULT
                candidate = extract_result(page, strategy=config.result_strategy, baseline=baseline)
    except AutomationError:
        raise
    except Exception as e:
        raise AutomationError(f"Unexpected failure during {stage}: {e}", stage=stage) from e

    elapsed = round(time.time() - t0, 2)
    log.info("Web edit finished in %.2fs: %s", elapsed, candidate.src)
    return EditResult(
        edited_image_url=candidate.src,
        original_prompt=request.prompt,
        processing_time_s=elapsed,
        snapshot=snapshot,
        candidate=candidate,
        telemetry=telemetry,
    )


# ----------------------------
# CLI
# ----------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="grok_operator", description="Grok web automation: image edit from a prompt.")
    sub = p.add_subparsers(dest="cmd", required=True)
    run = sub.add_parser("run", help="Run one image edit and print the result JSON.")
    run.add_argument("--image-url", required=True, help="URL of the source image.")
    run.add_argument("--prompt", required=True, help="Edit instruction.")
    run.add_argument("--target-url", default=None, help="Web app to drive (default from config).")
    run.add_argument("--headed", action="store_true", help="Run with visible browser.")
    run.add_argument("--debug-dir", default=None, help="Save page HTML/screenshot here on failure.")
    run.add_argument("--storage-state", default=None, help="Playwright storage state JSON for a logged-in account.")
    run.add_argument("--result-strategy", choices=RESULT_STRATEGIES, default=None, help="How to pick the result image.")
    run.add_argument("--result-timeout-s", type=float, default=None, help="Max wait for a new image after submit.")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)

    if ns.cmd == "run":
        config = load_config().with_overrides(
            target_url=ns.target_url,
            headless=False if ns.headed else None,
            debug_dir=ns.debug_dir,
            storage_state_path=ns.storage_state,
            result_strategy=ns.result_strategy,
            result_timeout_s=ns.result_timeout_s,
        )
        try:
            request = AutomationRequest.from_payload({"imageUrl": ns.image_url, "prompt": ns.prompt})
        except ValueError as e:
            parser.error(str(e))
        try:
            result = run_web_edit(request, config)
        except AutomationError as e:
            print(json.dumps({"ok": False, **e.to_dict()}, indent=2, ensure_ascii=False))
            return 1
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0

    parser.error(f"Unknown command: {ns.cmd}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
