import shlex
import sys

import pytest

from publish_errors_v1 import IntegrationUnavailableError, MalformedPayloadError, MissingResourceError, WriteFailureError
from vault_store_v1 import (
    CommandLibraryExporter,
    build_library_exporter,
    list_candidate_documents,
    parse_frontmatter,
    read_frontmatter_lenient,
    split_frontmatter,
    strip_link_syntax,
)


def test_split_and_parse_frontmatter():
    text = "---\npublish: true\ntitle: Siege\n---\nBody text\n"
    fm, body = split_frontmatter(text)
    assert fm == "publish: true\ntitle: Siege"
    assert body == "Body text\n"
    assert parse_frontmatter(text) == {"publish": True, "title": "Siege"}
    assert parse_frontmatter("no frontmatter") == {}


def test_malformed_frontmatter():
    text = "---\n- a\n- b\n---\nbody"
    with pytest.raises(MalformedPayloadError):
        parse_frontmatter(text)
    assert read_frontmatter_lenient(text) == {}
    assert read_frontmatter_lenient("---\nkey: [unclosed\n---\n") == {}


def test_strip_link_syntax():
    assert strip_link_syntax("[[Folder/Note#Heading|Alias]]") == "Folder/Note"
    assert strip_link_syntax("![[Maps/World.png]]") == "Maps/World.png"
    assert strip_link_syntax("Plain/Path.md") == "Plain/Path.md"


def test_read_write_and_missing(vault, store):
    store.write("Notes/new.md", "hello")
    assert vault.read("Notes/new.md") == "hello"
    assert store.exists("Notes/new.md")
    with pytest.raises(MissingResourceError):
        store.read("Notes/absent.md")
    store.delete("Notes/absent.md")  # no-op
    store.delete("Notes/new.md")
    assert not store.exists("Notes/new.md")


def test_paths_outside_the_vault_are_refused(store):
    assert not store.exists("../outside.md")
    with pytest.raises(WriteFailureError):
        store.write("../outside.md", "x")


def test_listing_skips_hidden_paths(vault, store):
    vault.write("a.md", "")
    vault.write("Sub/b.md", "")
    vault.write(".obsidian/workspace.md", "")
    vault.write(".trash/old.md", "")
    vault.write_bytes("Sub/pic.png")
    assert store.list_markdown() == ["Sub/b.md", "a.md"]
    assert store.list_files("Sub") == ["Sub/b.md", "Sub/pic.png"]
    assert store.list_files("Nope") == []


def test_metadata_fingerprint_is_mtime_ms(vault, store):
    vault.write("n.md", "---\npublish: true\n---\n")
    vault.set_mtime_ms("n.md", 1_718_000_000_123)
    meta = store.metadata("n.md")
    assert meta.fingerprint == 1_718_000_000_123
    assert meta.frontmatter == {"publish": True}


def test_resolve_link(vault, store):
    vault.write("Places/Korr.md", "")
    vault.write("Deep/Nested/Korr.md", "")
    vault.write_bytes("Events/siege.png")
    vault.write_bytes("Art/siege.png")

    assert store.resolve_link("[[Places/Korr]]") == "Places/Korr.md"
    assert store.resolve_link("Korr") == "Places/Korr.md"
    assert store.resolve_link("siege.png", "Events/Siege.md") == "Events/siege.png"
    assert store.resolve_link("Nowhere") is None
    assert store.resolve_link("") is None


def test_list_candidate_documents(vault, store):
    vault.write("pub.md", "---\npublish: true\n---\n")
    vault.write("draft.md", "---\npublish: false\n---\n")
    vault.write("plain.md", "text")
    vault.write("ZoomMap/publish/markers/m-abc.md", "---\npublish: true\n---\n")

    only = [m.path for m in list_candidate_documents(store, "publishTrueOnly", "ZoomMap/publish")]
    everything = [m.path for m in list_candidate_documents(store, "allMarkdown", "ZoomMap/publish")]
    assert only == ["pub.md"]
    assert everything == ["draft.md", "plain.md", "pub.md"]


def test_command_exporter_success(vault):
    vault.path("ZoomMap").mkdir(parents=True)
    cmd = shlex.quote(sys.executable) + " -c 'import sys, pathlib; pathlib.Path(sys.argv[1]).write_text(\"{}\")' {path}"
    exporter = build_library_exporter(cmd, vault.root)
    exporter.export_library("ZoomMap/library.json")
    assert vault.read("ZoomMap/library.json") == "{}"


def test_command_exporter_failures(vault):
    failing = CommandLibraryExporter(shlex.quote(sys.executable) + " -c 'import sys; sys.exit(3)'", vault.root)
    with pytest.raises(IntegrationUnavailableError, match="exited with 3"):
        failing.export_library("ZoomMap/library.json")

    absent = CommandLibraryExporter("definitely-not-a-real-tool-xyz {path}", vault.root)
    with pytest.raises(IntegrationUnavailableError):
        absent.export_library("ZoomMap/library.json")


def test_no_command_means_no_exporter(vault):
    assert build_library_exporter("", vault.root) is None
    assert build_library_exporter("   ", vault.root) is None


def test_calendar_dates_stay_strings():
    fm = parse_frontmatter("---\nstart: 1165-02-30\nend: 1165-03-01\n---\n")
    assert fm == {"start": "1165-02-30", "end": "1165-03-01"}


def test_undecodable_note(vault, store):
    vault.write_bytes("Broken.md", b"---\npublish: true\n---\n\xff\xfe")
    with pytest.raises(MalformedPayloadError):
        store.read("Broken.md")
    with pytest.raises(MalformedPayloadError):
        store.metadata("Broken.md")


def test_candidate_listing_skips_undecodable_notes(vault, store):
    vault.write("pub.md", "---\npublish: true\n---\n")
    vault.write_bytes("Broken.md", b"---\npublish: true\n---\n\xff\xfe")
    warnings = []

    found = [m.path for m in list_candidate_documents(store, "allMarkdown", warnings=warnings)]

    assert found == ["pub.md"]
    assert len(warnings) == 1
    assert "Broken.md" in warnings[0]
