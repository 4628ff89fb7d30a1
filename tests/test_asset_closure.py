import pytest

from asset_closure_v1 import (
    filter_and_sort_assets,
    marker_asset_refs,
    marker_note_links,
    parse_library,
    render_assets_manifest,
    resolve_asset_closure,
)
from publish_config_v1 import DEFAULT_CONFIG, config_from_mapping
from publish_errors_v1 import MalformedPayloadError
from scan_timelines_v1 import TimelineDate, TimelineEntry
from scan_zoommaps_v1 import scan_zoommaps

WORLD_NOTE = """---
publish: true
---
```zoommap
image: Maps/World.png
```

```zoommap
image: Maps/World.png
```
"""

MARKERS = {
    "bases": ["Maps/World.png", {"path": "Maps/Night.png"}, "Maps/extra.json"],
    "overlays": [{"path": "Maps/Roads.png"}, {"path": ".obsidian/icons/pin.png"}],
    "markers": [
        {"id": "s1", "type": "sticker", "stickerPath": "Art/sticker.png"},
        {"id": "s2", "type": "sticker", "stickerPath": "Art/sticker.png"},
        {"id": "p1", "type": "pin", "link": "[[Places/Korr]]"},
        {"id": "w1", "type": "swap", "swapPresetId": "doors", "swapLinks": {"open": "Places/Gate"}},
        {"id": "x1", "type": "pin", "link": "https://example.com/wiki"},
    ],
    "drawings": [{"bakedPath": "Art/drawing.png"}, {"bakedPath": "Art/drawing.png"}],
}

LIBRARY = {
    "icons": [
        {"key": "door", "pathOrDataUrl": "Icons/door.svg", "defaultLink": "Places/Door"},
        {"key": "inline", "pathOrDataUrl": "data:image/png;base64,AAAA"},
        {"key": "web", "pathOrDataUrl": "https://example.com/pin.svg"},
    ],
    "swapPresets": [
        {
            "id": "doors",
            "frames": [
                {"iconKey": "door", "link": "Places/Hall"},
                {"iconKey": "inline", "swapPresetId": "deeper"},
            ],
        },
        {"id": "deeper", "frames": [{"link": "Places/Deep"}]},
    ],
    "baseCollections": [{"include": {"stickers": [{"imagePath": "Icons/star.png"}]}}],
}


@pytest.fixture
def map_vault(vault):
    vault.write("World.md", WORLD_NOTE)
    for p in (
        "Maps/World.png",
        "Maps/Night.png",
        "Maps/Roads.png",
        ".obsidian/icons/pin.png",
        "Art/sticker.png",
        "Art/drawing.png",
        "Icons/door.svg",
        "Icons/star.png",
    ):
        vault.write_bytes(p)
    for note in ("Korr", "Gate", "Hall", "Door", "Deep"):
        vault.write(f"Places/{note}.md", f"# {note}\n")
    vault.write_json("Maps/World.png.markers.json", MARKERS)
    vault.write_json("ZoomMap/library.json", LIBRARY)
    return vault


def test_full_closure(map_vault, store):
    maps = scan_zoommaps(store, DEFAULT_CONFIG)
    warnings = []
    assets = resolve_asset_closure(store, DEFAULT_CONFIG, maps, [], [], warnings)

    assert assets == [
        "Art/drawing.png",
        "Art/sticker.png",
        "Icons/door.svg",
        "Icons/star.png",
        "Maps/Night.png",
        "Maps/Roads.png",
        "Maps/World.png",
        "Places/Door.md",
        "Places/Gate.md",
        "Places/Hall.md",
        "Places/Korr.md",
    ]
    # Maps/extra.json does not exist but is filtered out anyway
    assert warnings == ["missing: Maps/extra.json (referenced from Maps/World.png.markers.json)"]


def test_note_links_can_be_switched_off(map_vault, store):
    cfg = config_from_mapping({"include_note_links": False})
    assets = resolve_asset_closure(store, cfg, scan_zoommaps(store, cfg))
    assert not [a for a in assets if a.startswith("Places/")]


def test_generated_paths_and_timeline_entries(vault, store):
    vault.write_bytes("Events/siege.png")
    siege = TimelineEntry(
        note_path="Events/Siege.md",
        title="Siege",
        summary="",
        start=TimelineDate(1165, 3, 1),
        image_path="Events/siege.png",
    )
    remote = TimelineEntry(
        note_path="Events/Far.md",
        title="Far",
        summary="",
        start=TimelineDate(1165, 3, 2),
        image_path="https://example.com/far.png",
    )
    assets = resolve_asset_closure(
        store,
        DEFAULT_CONFIG,
        [],
        ["ZoomMap/publish/library.md", "ZoomMap/publish/assets.md"],
        [siege, remote],
    )
    assert assets == [
        "Events/Far.md",
        "Events/Siege.md",
        "Events/siege.png",
        "ZoomMap/publish/assets.md",
        "ZoomMap/publish/library.md",
    ]


def test_unresolved_embeds_are_listed_and_warned(vault, store):
    vault.write("World.md", "---\npublish: true\n---\n```zoommap\nimage: Maps/Ghost.png\n```\n")
    vault.write_json("Maps/Ghost.png.markers.json", {"markers": [{"type": "pin", "link": "Places/Nowhere"}]})
    warnings = []
    assets = resolve_asset_closure(store, DEFAULT_CONFIG, scan_zoommaps(store, DEFAULT_CONFIG), warnings=warnings)
    assert assets == ["Maps/Ghost.png"]
    assert "missing: Maps/Ghost.png (referenced from World.md)" in warnings
    assert "missing: Places/Nowhere (referenced from World.md)" in warnings


def test_missing_marker_file_is_a_warning(vault, store):
    vault.write("World.md", "---\npublish: true\n---\n```zoommap\nimage: Maps/World.png\n```\n")
    vault.write_bytes("Maps/World.png")
    warnings = []
    assets = resolve_asset_closure(store, DEFAULT_CONFIG, scan_zoommaps(store, DEFAULT_CONFIG), warnings=warnings)
    assert assets == ["Maps/World.png"]
    assert warnings == ["missing: Maps/World.png.markers.json (referenced from World.md)"]


def test_parse_library_shapes():
    lib = parse_library(LIBRARY)
    assert lib.asset_paths == ["Icons/door.svg", "Icons/star.png"]
    assert lib.icon_default_links == {"door": "Places/Door"}
    assert set(lib.presets) == {"doors", "deeper"}

    nested = parse_library(
        {"baseCollections": [{"include": {"swapPresets": {"lamps": {"frames": [{"link": "Places/Lamp"}]}}}}]}
    )
    assert nested.presets == {"lamps": [{"link": "Places/Lamp"}]}

    with pytest.raises(MalformedPayloadError):
        parse_library(["not", "an", "object"])


def test_marker_refs_and_links():
    assert marker_asset_refs(MARKERS) == [
        "Maps/World.png",
        "Maps/Night.png",
        "Maps/extra.json",
        "Maps/Roads.png",
        ".obsidian/icons/pin.png",
        "Art/sticker.png",
        "Art/sticker.png",
        "Art/drawing.png",
        "Art/drawing.png",
    ]
    links = marker_note_links(MARKERS, parse_library(LIBRARY))
    assert links == [
        "[[Places/Korr]]",
        "Places/Gate",
        "Places/Hall",
        "Places/Door",
        "https://example.com/wiki",
    ]
    # without a library, preset links are unknown
    assert "Places/Hall" not in marker_note_links(MARKERS, None)


def test_swap_state_links():
    data = {
        "markers": [
            {"type": "swap", "swapLinks": ["Places/A", {"link": "Places/B"}], "swapStates": [{"link": "Places/C"}]},
            {"type": "pin", "swapLinks": ["Places/Ignored"]},
        ]
    }
    assert marker_note_links(data, None) == ["Places/A", "Places/B", "Places/C"]


def test_filter_and_sort_assets():
    paths = ["img10.png", "img2.png", "IMG1.png", ".obsidian/a.png", "x.json", "X.JSON", ""]
    assert filter_and_sort_assets(paths, ".obsidian") == ["IMG1.png", "img2.png", "img10.png"]


def test_render_assets_manifest():
    text = render_assets_manifest(["Maps/World.png", "Places/Korr.md"])
    assert text.startswith("---\npublish: true\n---\n")
    assert "## Assets\n\n- [[Maps/World.png]]\n- [[Places/Korr]]\n" in text
