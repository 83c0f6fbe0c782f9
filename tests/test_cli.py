import json
from pathlib import Path

import md2book.cli as cli
import md2book.core as core
from md2book import runtime


BOOK = (
    "# Part One\n\n"
    "It began quietly[^1], as most things do[^10].\n\n"
    "## Arrival\n\n"
    "The ship landed.\n\n"
    "## Arrival\n\n"
    "Again, somehow[^2].\n\n"
    "# Part Two\n\n"
    "[1]: A *quiet* start. [/1]\n"
    "[2]: See the logs. [/2]\n"
    "[10]: Not all things. [/10]\n"
)


def _write_book(tmp_path: Path, text: str = BOOK) -> Path:
    source = tmp_path / "book.md"
    source.write_text(text, encoding="utf-8")
    return source


def test_version_flags_print_version(capsys):
    assert cli.main(["--version"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__

    assert cli.main(["--ver"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__


def test_help_and_no_args_show_usage(capsys):
    assert cli.main([]) == 0
    out = capsys.readouterr().out
    assert "md2book" in out
    assert cli.__version__ in out

    assert cli.main(["--help"]) == 0
    out = capsys.readouterr().out
    assert "--source" in out


def test_unknown_option_returns_2(capsys):
    assert cli.main(["--bogus"]) == 2
    assert "Usage" in capsys.readouterr().out


def test_missing_required_options_returns_6(tmp_path, capsys):
    assert cli.main(["--source", str(_write_book(tmp_path))]) == 6
    assert "--to-dir" in capsys.readouterr().err


def test_missing_source_file_returns_6(tmp_path, capsys):
    assert cli.main(["--source", str(tmp_path / "nope.md"), "--to-dir", str(tmp_path / "out")]) == 6
    assert "Source file not found" in capsys.readouterr().err


def test_output_path_not_directory_returns_7(tmp_path):
    target = tmp_path / "out"
    target.write_text("", encoding="utf-8")

    assert cli.main(["--source", str(_write_book(tmp_path)), "--to-dir", str(target)]) == 7


def test_invalid_link_mode_returns_6(tmp_path, capsys):
    rc = cli.main(["--source", str(_write_book(tmp_path)), "--to-dir", str(tmp_path / "out"), "--link-mode", "fuzzy"])

    assert rc == 6
    assert "--link-mode" in capsys.readouterr().err


def test_same_artifact_names_return_6(tmp_path):
    rc = cli.main(
        [
            "--source",
            str(_write_book(tmp_path)),
            "--to-dir",
            str(tmp_path / "out"),
            "--html-name",
            "book.out",
            "--metadata-name",
            "book.out",
        ]
    )

    assert rc == 6


def test_invalid_config_returns_6(tmp_path, capsys):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"link_mode": "fuzzy"}), encoding="utf-8")

    rc = cli.main(
        ["--source", str(_write_book(tmp_path)), "--to-dir", str(tmp_path / "out"), "--config", str(config_path)]
    )

    assert rc == 6
    assert "link_mode" in capsys.readouterr().err


def test_render_failure_returns_9(tmp_path, monkeypatch, capsys):
    def boom(source, config=None):
        raise RuntimeError("renderer exploded")

    monkeypatch.setattr(core, "render_document", boom)

    rc = cli.main(["--source", str(_write_book(tmp_path)), "--to-dir", str(tmp_path / "out")])

    assert rc == 9
    assert "renderer exploded" in capsys.readouterr().err


def test_offline_build_writes_artifacts(tmp_path):
    out_dir = tmp_path / "generated"

    assert cli.main(["--source", str(_write_book(tmp_path)), "--to-dir", str(out_dir)]) == 0

    html = (out_dir / "book.html").read_text(encoding="utf-8")
    metadata = json.loads((out_dir / "book-metadata.json").read_text(encoding="utf-8"))

    assert [node["id"] for node in metadata["contentTree"]] == ["part-one", "arrival", "arrival-2", "part-two"]
    assert sorted(metadata["footnotes"]) == ["fn1", "fn10", "fn2"]
    assert metadata["footnotes"]["fn1"]["content"] == "<p>A <em>quiet</em> start.</p>"
    assert 'data-footnote-id="fn10"' in html
    assert 'id="p3"' in html
    assert "[/1]" not in html


def test_offline_and_inline_modes_are_equivalent(tmp_path):
    source = _write_book(tmp_path)
    out_dir = tmp_path / "generated"

    assert cli.main(["--source", str(source), "--to-dir", str(out_dir)]) == 0

    offline = core.load_artifact(out_dir)
    inline = runtime.render_inline(source.read_text(encoding="utf-8"))

    assert offline is not None
    assert offline.content_tree == inline.content_tree
    assert offline.footnotes == inline.footnotes
    assert offline.html == inline.html


def test_config_file_and_flags_are_applied(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"link_mode": "boundary", "html_name": "content.html", "metadata_name": "meta.json"}),
        encoding="utf-8",
    )
    out_dir = tmp_path / "generated"

    rc = cli.main(
        [
            "--source",
            str(_write_book(tmp_path)),
            "--to-dir",
            str(out_dir),
            "--config",
            str(config_path),
            "--metadata-name",
            "book.json",
        ]
    )

    assert rc == 0
    assert (out_dir / "content.html").exists()
    assert (out_dir / "book.json").exists()
    assert not (out_dir / "meta.json").exists()


def test_outline_option_writes_nested_navigation(tmp_path):
    outline_path = tmp_path / "outline.json"

    rc = cli.main(
        [
            "--source",
            str(_write_book(tmp_path)),
            "--to-dir",
            str(tmp_path / "generated"),
            "--outline",
            str(outline_path),
        ]
    )

    assert rc == 0
    outline = json.loads(outline_path.read_text(encoding="utf-8"))
    assert [item["anchor"] for item in outline] == ["part-one", "part-two"]
    assert [item["anchor"] for item in outline[0]["children"]] == ["arrival", "arrival-2"]
