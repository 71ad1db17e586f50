"""
Page heuristics for an unversioned UI: classify interaction affordances by
element kind and text, and pick a result image among rendered candidates.
Nothing here depends on element ids or fixed class names.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from playwright.sync_api import Page

# ----------------------------
# Vocabulary & selectors
# ----------------------------

ACTION_WORDS = ("generate", "edit", "create", "process", "submit")
ACTION_RE = re.compile("|".join(ACTION_WORDS), re.I)

AUTH_TEXTS = ("Sign in", "Log in", "Sign up")

FILE_INPUT_SELECTOR = "input[type='file']"
TEXT_INPUT_SELECTOR = (
    "textarea, "
    "input[type='text'], input[type='search'], input:not([type]), "
    "[contenteditable='true']"
)
BUTTON_SELECTOR = "button, [role='button']"
# Elements whose class/id/data-*/aria-label tokens suggest drag-and-drop upload.
DROP_ZONE_TOKEN_RE = r"drop|upload"
DROP_ZONE_MARK = "data-web-edit-drop-zone"

# Shared by the probe and the drop-zone marker so both classify the same elements.
_FIND_DROP_ZONES_JS = """
  const findDropZones = (fileSel, dropRe) => {
    const drop = new RegExp(dropRe, 'i');
    return Array.from(document.querySelectorAll('body *')).filter(el => {
      if (el.matches(fileSel)) return false;
      const tokens = [el.id || '', typeof el.className === 'string' ? el.className : '',
                      el.getAttribute('aria-label') || ''];
      for (const attr of Array.from(el.attributes)) {
        if (attr.name.startsWith('data-')) tokens.push(attr.name, attr.value);
      }
      return tokens.some(t => drop.test(t));
    });
  };
"""


# Runs in the page; returns plain counts and texts so the snapshot is a pure value.
PROBE_JS = """
({fileSel, textSel, buttonSel, dropRe, actionRe, authTexts}) => {
""" + _FIND_DROP_ZONES_JS + """
  const action = new RegExp(actionRe, 'i');
  const visibleText = (el) => (el.innerText || el.textContent || '').trim();

  const dropZones = findDropZones(fileSel, dropRe);
  const buttonTexts = Array.from(document.querySelectorAll(buttonSel)).map(visibleText);
  const auth = Array.from(document.querySelectorAll('a, ' + buttonSel)).some(el => {
    const t = visibleText(el).toLowerCase();
    return authTexts.some(a => t === a.toLowerCase());
  });

  return {
    title: document.title,
    url: window.location.href,
    fileInputs: document.querySelectorAll(fileSel).length,
    textInputs: document.querySelectorAll(textSel).length,
    dropZones: dropZones.length,
    actionButtons: buttonTexts.filter(t => action.test(t)),
    buttonCount: buttonTexts.length,
    authGate: auth,
  };
}
"""

# Marks the first drop zone so a locator can click it; returns False when none exists.
MARK_DROP_ZONE_JS = """
({mark, dropRe, fileSel}) => {
""" + _FIND_DROP_ZONES_JS + """
  document.querySelectorAll('[' + mark + ']').forEach(el => el.removeAttribute(mark));
  const zones = findDropZones(fileSel, dropRe);
  if (zones.length === 0) return false;
  zones[0].setAttribute(mark, '1');
  return true;
}
"""

COLLECT_IMAGES_JS = """
() => Array.from(document.images).map(img => ({
  src: img.currentSrc || img.src || '',
  width: img.naturalWidth || img.width || 0,
  height: img.naturalHeight || img.height || 0,
}))
"""


# ----------------------------
# Interface snapshot
# ----------------------------

@dataclass(frozen=True)
class InterfaceSnapshot:
    title: str = ""
    url: str = ""
    file_inputs: int = 0
    text_inputs: int = 0
    drop_zones: int = 0
    action_buttons: List[str] = field(default_factory=list)
    button_count: int = 0
    auth_gate: bool = False

    @property
    def has_upload_area(self) -> bool:
        return self.file_inputs > 0 or self.drop_zones > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "fileInputs": self.file_inputs,
            "textInputs": self.text_inputs,
            "dropZones": self.drop_zones,
            "actionButtons": list(self.action_buttons),
            "buttonCount": self.button_count,
            "authGate": self.auth_gate,
            "hasUploadArea": self.has_upload_area,
        }


def snapshot_from_probe(raw: Dict[str, Any]) -> InterfaceSnapshot:
    raw = raw or {}
    return InterfaceSnapshot(
        title=str(raw.get("title") or ""),
        url=str(raw.get("url") or ""),
        file_inputs=int(raw.get("fileInputs") or 0),
        text_inputs=int(raw.get("textInputs") or 0),
        drop_zones=int(raw.get("dropZones") or 0),
        action_buttons=[str(t) for t in raw.get("actionButtons") or []],
        button_count=int(raw.get("buttonCount") or 0),
        auth_gate=bool(raw.get("authGate")),
    )


def probe_interface(page: Page) -> InterfaceSnapshot:
    """Read the page's interactive surface into an InterfaceSnapshot."""
    raw = page.evaluate(
        PROBE_JS,
        {
            "fileSel": FILE_INPUT_SELECTOR,
            "textSel": TEXT_INPUT_SELECTOR,
            "buttonSel": BUTTON_SELECTOR,
            "dropRe": DROP_ZONE_TOKEN_RE,
            "actionRe": ACTION_RE.pattern,
            "authTexts": list(AUTH_TEXTS),
        },
    )
    return snapshot_from_probe(raw)


def mark_first_drop_zone(page: Page) -> bool:
    """Tag the first drop zone with DROP_ZONE_MARK; False when the page has none."""
    return bool(page.evaluate(
        MARK_DROP_ZONE_JS,
        {"mark": DROP_ZONE_MARK, "dropRe": DROP_ZONE_TOKEN_RE, "fileSel": FILE_INPUT_SELECTOR},
    ))


def matches_action(text: Optional[str]) -> bool:
    """True if the trimmed button text contains one of the action words."""
    t = (text or "").strip()
    return bool(t) and ACTION_RE.search(t) is not None


# ----------------------------
# Result candidates
# ----------------------------

@dataclass(frozen=True)
class ResultCandidate:
    src: str
    width: int = 0
    height: int = 0

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_dict(self) -> Dict[str, Any]:
        return {"src": self.src, "width": self.width, "height": self.height}


def is_data_uri(src: str) -> bool:
    return src.strip().lower().startswith("data:")


def candidates_from_images(images: Iterable[Dict[str, Any]]) -> List[ResultCandidate]:
    """Keep images with a real (non-empty, non-data URI) source, in document order."""
    out: List[ResultCandidate] = []
    for img in images or []:
        src = str((img or {}).get("src") or "").strip()
        if not src or is_data_uri(src):
            continue
        out.append(ResultCandidate(
            src=src,
            width=int(img.get("width") or 0),
            height=int(img.get("height") or 0),
        ))
    return out


def collect_candidates(page: Page) -> List[ResultCandidate]:
    return candidates_from_images(page.evaluate(COLLECT_IMAGES_JS))


# ----------------------------
# Selection strategies
# ----------------------------

Selector = Callable[[List[ResultCandidate], Set[str]], Optional[ResultCandidate]]


def select_last(candidates: List[ResultCandidate], baseline: Set[str]) -> Optional[ResultCandidate]:
    # Newly inserted results are assumed to render after existing content.
    return candidates[-1] if candidates else None


def select_newest(candidates: List[ResultCandidate], baseline: Set[str]) -> Optional[ResultCandidate]:
    fresh = [c for c in candidates if c.src not in baseline]
    return fresh[-1] if fresh else select_last(candidates, baseline)


def select_largest(candidates: List[ResultCandidate], baseline: Set[str]) -> Optional[ResultCandidate]:
    best: Optional[ResultCandidate] = None
    for c in candidates:
        if best is None or c.area >= best.area:
            best = c
    return best


RESULT_SELECTORS: Dict[str, Selector] = {
    "last": select_last,
    "newest": select_newest,
    "largest": select_largest,
}


def select_result(
    candidates: List[ResultCandidate],
    strategy: str = "last",
    baseline: Optional[Set[str]] = None,
) -> Optional[ResultCandidate]:
    """Pick one candidate with the named strategy; None when there are none."""
    try:
        selector = RESULT_SELECTORS[strategy]
    except KeyError:
        raise ValueError(f"Unknown result strategy: {strategy!r}") from None
    return selector(list(candidates), set(baseline or ()))
