"""SCORM 1.2 documents: imsmanifest.xml and the index.html slide viewer.

Rendering is pure: a title and an ordered list of slide file names in, two
strings out. Nothing here touches the filesystem.
"""
from __future__ import annotations

import html
import json
from dataclasses import dataclass
from string import Template
from typing import Sequence

from .config import SLIDES_SUBDIR, VIEWER_FILENAME

# Viewer walks at most this many parent frames looking for the LMS API.
MAX_API_HOPS = 10


@dataclass(frozen=True)
class PackageDocuments:
    manifest: str
    viewer: str
    slide_paths: tuple[str, ...]


def escape_markup(text: str) -> str:
    """Escape &, <, >, and both quote kinds; valid for HTML and XML text/attrs."""
    return html.escape(text, quote=True)


def slide_paths(slides: Sequence[str]) -> list[str]:
    return [f"{SLIDES_SUBDIR}/{name}" for name in slides]


def _script_json(value: object) -> str:
    # JSON inside <script>: keep "</script>" and entities from breaking out.
    return (
        json.dumps(value, ensure_ascii=False)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


_MANIFEST = Template(
    """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="MANIFEST-1" version="1.0"
  xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_rootv1p2"
  xmlns:imsmd="http://www.imsglobal.org/xsd/imsmd_rootv1p2p1"
  xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>1.2</schemaversion>
  </metadata>
  <organizations default="ORG-1">
    <organization identifier="ORG-1">
      <title>$title</title>
      <item identifier="ITEM-1" identifierref="RES-1" isvisible="true">
        <title>Slides</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="RES-1" type="webcontent" adlcp:scormtype="sco" href="$viewer">
$files
    </resource>
  </resources>
</manifest>
"""
)


def render_manifest(title: str, paths: Sequence[str]) -> str:
    hrefs = [VIEWER_FILENAME, *paths]
    files = "\n".join(f'      <file href="{escape_markup(h)}"/>' for h in hrefs)
    return _MANIFEST.substitute(
        title=escape_markup(title),
        viewer=escape_markup(VIEWER_FILENAME),
        files=files,
    )


_VIEWER = Template(
    """<!doctype html>
<html lang="en"><head>
<meta charset="utf-8"/><title>$title</title>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<style>
:root { --bg:#0b0c10; --fg:#e8e8e8; --muted:#9aa0a6; --accent:#3b82f6; }
*{box-sizing:border-box} html,body{height:100%;margin:0;background:var(--bg);color:var(--fg);font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif}
.wrap{height:100%;display:grid;grid-template-rows:1fr auto}
.stage{display:grid;place-items:center;padding:12px}
.stage img{max-width:100%;max-height:calc(100vh - 120px);border-radius:12px;background:#111}
.bar{display:flex;align-items:center;gap:12px;padding:12px 16px;border-top:1px solid #1f2937;background:#0f1115}
.group{display:flex;align-items:center;gap:8px}
button{all:unset;padding:10px 14px;border-radius:10px;background:#1f2937;cursor:pointer}
button:hover{background:#243042} button[disabled]{opacity:.4;cursor:not-allowed}
.pill{padding:8px 12px;border-radius:999px;background:#111827;color:var(--muted);font-size:13px}
.progress{position:relative;flex:1;height:8px;background:#1f2937;border-radius:999px;overflow:hidden}
.progress>span{position:absolute;left:0;top:0;bottom:0;width:0%;background:var(--accent)}
</style>
<script>
var SLIDES = $slides_json;
var MAX_API_HOPS = $max_hops;

function findAPI(win) {
  var hops = 0;
  while (win && hops++ < MAX_API_HOPS) {
    if (win.API) return win.API;
    try {
      if (win.parent && win.parent !== win) { win = win.parent; } else { break; }
    } catch (e) { break; }
  }
  return null;
}

function discoverAPI(candidates) {
  for (var i = 0; i < candidates.length; i++) {
    try {
      var api = findAPI(candidates[i]);
      if (api) return api;
    } catch (e) {}
  }
  return null;
}

var LocalAPI = {
  LMSInitialize: function () { return "true"; },
  LMSFinish: function () { return "true"; },
  LMSCommit: function () { return "true"; },
  LMSGetValue: function (k) {
    try { return localStorage.getItem("loc:" + k) || ""; } catch (e) { return ""; }
  },
  LMSSetValue: function (k, v) {
    try { localStorage.setItem("loc:" + k, String(v)); } catch (e) {}
    return "true";
  }
};

var api = null;
function scorm() {
  if (!api) api = discoverAPI([window, window.opener]) || LocalAPI;
  return api;
}

var idx = 0;
var finished = false;

function show(i) {
  idx = Math.max(0, Math.min(i, SLIDES.length - 1));
  document.getElementById("s").src = SLIDES[idx];
  document.getElementById("c").textContent = (idx + 1) + "/" + SLIDES.length;
  document.getElementById("p").disabled = (idx === 0);
  document.getElementById("n").disabled = (idx === SLIDES.length - 1);
  document.getElementById("prog").style.width = ((idx + 1) / SLIDES.length * 100).toFixed(0) + "%";
  scorm().LMSSetValue("cmi.core.lesson_location", String(idx));
  scorm().LMSSetValue("cmi.core.lesson_status", idx === SLIDES.length - 1 ? "completed" : "incomplete");
}

function next() { show(idx + 1); }
function previous() { show(idx - 1); }

function finish() {
  if (finished) return;
  finished = true;
  scorm().LMSCommit("");
  scorm().LMSFinish("");
}

window.addEventListener("load", function () {
  scorm().LMSInitialize("");
  show(0);
});
window.addEventListener("beforeunload", finish);
window.addEventListener("pagehide", finish);
</script>
</head>
<body>
<div class="wrap">
  <div class="stage"><img id="s" alt="Slide"/></div>
  <div class="bar">
    <div class="group">
      <button id="p" onclick="previous()">&#9664; Prev</button>
      <span id="c" class="pill"></span>
      <button id="n" onclick="next()">Next &#9654;</button>
    </div>
    <div class="progress" aria-hidden="true"><span id="prog"></span></div>
  </div>
</div>
</body></html>
"""
)


def render_viewer(title: str, paths: Sequence[str]) -> str:
    return _VIEWER.substitute(
        title=escape_markup(title),
        slides_json=_script_json(list(paths)),
        max_hops=MAX_API_HOPS,
    )


def render(title: str, slides: Sequence[str]) -> PackageDocuments:
    """Render both SCORM documents for an ordered list of slide file names."""
    paths = slide_paths(slides)
    return PackageDocuments(
        manifest=render_manifest(title, paths),
        viewer=render_viewer(title, paths),
        slide_paths=tuple(paths),
    )
