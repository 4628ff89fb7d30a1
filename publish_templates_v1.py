#!/usr/bin/env python3
# publish_templates_v1.py — runtime blocks upserted into the vault's publish.js / publish.css
#
# Everything between the BEGIN/END markers is owned by this tool; anything else
# in publish.js / publish.css is left exactly as the user wrote it.

from __future__ import annotations

import json
from textwrap import dedent

ZM_BEGIN_JS = "/* BEGIN ttrpg-publish-tools maps runtime */"
ZM_END_JS = "/* END ttrpg-publish-tools maps runtime */"
ZM_BEGIN_CSS = "/* BEGIN ttrpg-publish-tools maps styles */"
ZM_END_CSS = "/* END ttrpg-publish-tools maps styles */"


def build_publish_js_block(stamp: str, publish_root: str) -> str:
    body = dedent(
        """
        (function () {
          "use strict";
          var VERSION = %(stamp)s;
          if (window.__ttrpgMapsRuntime === VERSION) return;
          window.__ttrpgMapsRuntime = VERSION;

          function readJsonBlock(html) {
            var m = /<code[^>]*class="[^"]*language-json[^"]*"[^>]*>([\\s\\S]*?)<\\/code>/.exec(html);
            if (!m) return null;
            var el = document.createElement("textarea");
            el.innerHTML = m[1];
            try { return JSON.parse(el.value); } catch (e) { return null; }
          }

          function fetchDataNote(path) {
            var url = "/" + encodeURI(path.replace(/\\.md$/, ""));
            return fetch(url).then(function (r) { return r.ok ? r.text() : ""; }).then(readJsonBlock);
          }

          window.ttrpgMaps = {
            version: VERSION,
            loadMarkers: function (id) { return fetchDataNote("%(root)s/markers/m-" + id + ".md"); },
            loadTimeline: function (id) { return fetchDataNote("%(root)s/timelines/t-" + id + ".md"); },
            loadLibrary: function () { return fetchDataNote("%(root)s/library.md"); }
          };
        })();
        """
    ).strip()
    body = body.replace("%(stamp)s", json.dumps(stamp)).replace("%(root)s", publish_root)
    return "\n".join([ZM_BEGIN_JS, body, ZM_END_JS])


def build_publish_css_block() -> str:
    body = dedent(
        """
        .ttrpg-map { position: relative; overflow: hidden; max-width: 100%; }
        .ttrpg-map img { display: block; max-width: 100%; height: auto; }
        .ttrpg-map-marker { position: absolute; transform: translate(-50%, -100%); cursor: pointer; }
        .ttrpg-timeline { list-style: none; padding-left: 0; }
        .ttrpg-timeline-date { font-variant-numeric: tabular-nums; opacity: 0.75; }
        """
    ).strip()
    return "\n".join([ZM_BEGIN_CSS, body, ZM_END_CSS])

