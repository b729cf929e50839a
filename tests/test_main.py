import base64
import errno
import json

import pytest

import main
from download import FetchError


MAP = json.dumps(
    {
        "version": 3,
        "sources": ["webpack:///./src/index.js", "webpack:///../../secret.js"],
        "sourcesContent": ["export default 1;\n", "leak();\n"],
        "mappings": "AAAA",
    }
)

CSS_MAP = json.dumps({"version": 3, "sources": ["src/site.scss"], "sourcesContent": ["$c: red;\n"]})

PAGE = """<html><head>
<link rel="stylesheet" href="/site.css">
<script src="/static/app.js"></script>
<script src="/static/plain.js"></script>
</head></html>"""


@pytest.fixture
def remote(monkeypatch):
    """Serve `remote[url]` instead of doing HTTP requests"""
    responses = {}
    requested = []

    def fetch(self, url, accept=None):
        requested.append((url, accept))
        if url not in responses:
            raise FetchError(url, "HTTP 404 Not Found")
        return responses[url]

    monkeypatch.setattr(main.Fetcher, "fetch", fetch)
    responses["requested"] = requested
    return responses


def run_main(*argv):
    return main.main([*argv, "--no-color"])


def test_parse_args_defaults_to_extract():
    args = main.parse_args(["--map-url", "https://example.com/a.js.map", "-o", "out"])
    assert args.command == "extract"
    assert args.map_urls == ["https://example.com/a.js.map"]


def test_parse_args_repeated_options():
    args = main.parse_args(
        [
            "extract",
            "-mu", "https://example.com/a.js.map",
            "--map-url", "https://example.com/b.css.map",
            "-o", "out",
            "--header", "X-A: 1",
            "--header", "X-B: 2",
            "--ignore-certificate-errors",
            "--create-top-directory",
        ]
    )
    assert args.map_urls == ["https://example.com/a.js.map", "https://example.com/b.css.map"]
    assert args.headers == ["X-A: 1", "X-B: 2"]
    assert args.insecure is True
    assert args.create_top_directory is True


def test_missing_required_option_exits():
    with pytest.raises(SystemExit) as info:
        main.main(["extract", "--map-url", "https://example.com/a.js.map"])
    assert info.value.code == 2


def test_extract_command(tmp_path, remote):
    remote["https://example.com/app.js.map"] = MAP

    code = run_main(
        "extract", "--map-url", "https://example.com/app.js.map",
        "-o", str(tmp_path), "--create-top-directory",
    )

    assert code == 0
    assert (tmp_path / "app.js" / "webpack:" / "src" / "index.js").read_text() == "export default 1;\n"
    assert (tmp_path / "app.js" / "webpack:" / "secret.js").read_text() == "leak();\n"
    assert remote["requested"] == [("https://example.com/app.js.map", "application/json")]


def test_extract_command_continues_after_failed_map(tmp_path, remote, capsys):
    remote["https://example.com/b.js.map"] = MAP

    code = run_main(
        "extract",
        "--map-url", "https://example.com/a.js.map",
        "--map-url", "https://example.com/b.js.map",
        "-o", str(tmp_path),
    )

    assert code == 1
    assert (tmp_path / "webpack:" / "src" / "index.js").is_file()
    assert "https://example.com/a.js.map" in capsys.readouterr().out


def test_extract_command_fails_on_invalid_map(tmp_path, remote):
    remote["https://example.com/a.js.map"] = "<html>not a map</html>"
    assert run_main("extract", "--map-url", "https://example.com/a.js.map", "-o", str(tmp_path)) == 1


def test_invalid_url_exits(tmp_path):
    with pytest.raises(SystemExit) as info:
        run_main("extract", "--map-url", "not a url", "-o", str(tmp_path))
    assert info.value.code == errno.EINVAL


def test_invalid_header_exits(tmp_path):
    with pytest.raises(SystemExit) as info:
        run_main(
            "extract", "--map-url", "https://example.com/a.js.map",
            "-o", str(tmp_path), "--header", "no colon",
        )
    assert info.value.code == errno.EINVAL


def test_invalid_proxy_exits(tmp_path):
    with pytest.raises(SystemExit) as info:
        run_main(
            "extract", "--map-url", "https://example.com/a.js.map",
            "-o", str(tmp_path), "--proxy", "nowhere",
        )
    assert info.value.code == errno.EINVAL


def test_output_file_exits(tmp_path):
    out = tmp_path / "file"
    out.write_text("x")
    with pytest.raises(SystemExit) as info:
        run_main("extract", "--map-url", "https://example.com/a.js.map", "-o", str(out))
    assert info.value.code == errno.ENOTDIR


def test_all_command_downloads_and_extracts(tmp_path, remote, list_files):
    css_map = base64.b64encode(CSS_MAP.encode()).decode()
    remote.update(
        {
            "https://example.com/": PAGE,
            "https://example.com/static/app.js": "run();\n//# sourceMappingURL=app.js.map\n",
            "https://example.com/static/app.js.map": MAP,
            "https://example.com/static/plain.js": "run();\n",
            "https://example.com/site.css": (
                f"body{{}}\n/*# sourceMappingURL=data:application/json;base64,{css_map} */"
            ),
        }
    )

    code = run_main("all", "--url", "https://example.com/", "-o", str(tmp_path), "--extract")

    assert code == 0
    assert list_files(tmp_path) == [
        "app.js",
        "app.js.map",
        "extract/src/site.scss",
        "extract/webpack:/secret.js",
        "extract/webpack:/src/index.js",
        "index.html",
        "plain.js",
        "site.css",
    ]
    assert ("https://example.com/site.css", "text/css") in remote["requested"]
    assert ("https://example.com/static/app.js.map", "application/javascript") in remote["requested"]


def test_all_command_without_extract_only_downloads(tmp_path, remote, list_files):
    remote.update(
        {
            "https://example.com/": '<script src="app.js"></script>',
            "https://example.com/app.js": "//# sourceMappingURL=app.js.map",
            "https://example.com/app.js.map": MAP,
        }
    )

    assert run_main("all", "-u", "https://example.com/", "-o", str(tmp_path)) == 0
    assert list_files(tmp_path) == ["app.js", "app.js.map", "index.html"]


def test_all_command_reports_missing_assets(tmp_path, remote):
    remote["https://example.com/"] = '<script src="/gone.js"></script>'
    assert run_main("all", "-u", "https://example.com/", "-o", str(tmp_path)) == 1


def test_all_command_fails_when_page_is_unreachable(tmp_path, remote):
    assert run_main("all", "-u", "https://example.com/", "-o", str(tmp_path)) == 1


def test_page_scanner_stops_when_canceled(tmp_path, remote, printer):
    remote.update({"https://example.com/": PAGE})
    cancel_event = main.threading.Event()
    cancel_event.set()
    scanner = main.PageScanner(main.Fetcher(), str(tmp_path), printer, cancel_event)

    assert list(scanner.source_maps("https://example.com/")) == []
    assert [url for url, _ in remote["requested"]] == ["https://example.com/"]


def test_quiet_mode_still_shows_errors(tmp_path, remote, capsys):
    run_main("extract", "--map-url", "https://example.com/a.js.map", "-o", str(tmp_path), "-q")
    out = capsys.readouterr().out
    assert "sourcemapper" not in out
    assert "[-] Failed to get content from https://example.com/a.js.map" in out
