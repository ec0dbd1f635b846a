"""
Tests for the raildata-check command line tool.
"""

import json
import os
import sys
import textwrap

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import raildata_check
from raildata.rail_model import DocumentType


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def make_dataset(root, broken=False):
    write(
        root / "points" / "berlin.yaml",
        """
        key: berlin-hbf
        ---
        # Potsdam
        key: potsdam
        """,
    )
    write(root / "organizations" / "bpme.yaml", "key: org.bpme\nsubtype: company\n")
    end = "munich-ost" if broken else "potsdam"
    write(
        root / "lines" / "de" / "6001.yaml",
        f"""
        key: line.de.6001
        points: [berlin-hbf, {end}]
        events:
          - date: 1838-10-29
            operator: org.bpme
        """,
    )
    return root


def age(root, seconds=100):
    """Move the modification time of every input file into the past."""
    for path in root.rglob("*.yaml"):
        stat = path.stat()
        os.utime(path, (stat.st_atime - seconds, stat.st_mtime - seconds))


def test_split_documents():
    text = "key: a\n---\n# only a comment\n---\nkey: b\nx: 1\n---\n"
    assert list(raildata_check.split_documents(text)) == [(1, "key: a"), (5, "key: b\nx: 1")]


def test_type_for(tmp_path):
    root = make_dataset(tmp_path / "data")
    assert raildata_check.type_for(root / "lines" / "de" / "6001.yaml", root) == DocumentType.LINE
    assert raildata_check.type_for(root / "misc.yaml", root) is None


def test_clean_dataset(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    assert raildata_check.main([str(root)]) == raildata_check.EXIT_CLEAN
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Checked 4 documents from 3 files: 0 finding(s)" in captured.err


def test_findings_exit_code(tmp_path, capsys):
    root = make_dataset(tmp_path / "data", broken=True)
    assert raildata_check.main([str(root)]) == raildata_check.EXIT_FINDINGS
    out = capsys.readouterr().out
    assert "[resolve] line.de.6001 points[1]: link to missing document 'munich-ost'" in out
    assert "6001.yaml:1: error:" in out


def test_load_failure_exit_code(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    write(root / "points" / "dup.yaml", "key: potsdam\n")
    assert raildata_check.main([str(root)]) == raildata_check.EXIT_LOAD_FAILED
    err = capsys.readouterr().err
    assert "duplicate document 'potsdam'" in err
    assert "Load failed with 1 error(s)" in err


def test_json_output(tmp_path, capsys):
    root = make_dataset(tmp_path / "data", broken=True)
    assert raildata_check.main([str(root), "--format", "json"]) == raildata_check.EXIT_FINDINGS
    data = json.loads(capsys.readouterr().out)
    assert data["ok"] is False
    assert [f["code"] for f in data["findings"]] == ["broken-reference"]


def test_skip_check(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    write(root / "lines" / "short.yaml", "key: line.short\npoints: [potsdam]\n")
    assert raildata_check.main([str(root)]) == raildata_check.EXIT_FINDINGS
    capsys.readouterr()
    assert raildata_check.main([str(root), "--skip", "line-endpoints"]) == raildata_check.EXIT_CLEAN


def test_cache_is_written_and_reused(tmp_path, capsys):
    root = make_dataset(tmp_path / "data", broken=True)
    cache = tmp_path / "raildata.cache"
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_FINDINGS
    assert cache.is_file()
    first = capsys.readouterr()
    assert "from 3 files" in first.err

    age(root)
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_FINDINGS
    second = capsys.readouterr()
    assert "from cache" in second.err
    assert second.out == first.out


def test_stale_cache_is_ignored(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    cache = tmp_path / "raildata.cache"
    cache.write_bytes(b"stale")
    stat = cache.stat()
    os.utime(cache, (stat.st_atime - 1000, stat.st_mtime - 1000))
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_CLEAN
    assert "from 3 files" in capsys.readouterr().err
    assert cache.read_bytes() != b"stale"


def test_corrupt_cache_is_rebuilt(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    cache = tmp_path / "raildata.cache"
    age(root)
    cache.write_bytes(b"garbage")
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_CLEAN
    assert "from 3 files" in capsys.readouterr().err


def test_overlay_option(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    write(root / "points" / "site.yaml", "key: werder\nevents:\n  - site: {w1: north}\n")
    write(root / "points" / "site2.yaml", "key: werder-2\nevents:\n  - site: {w1: north2}\n")
    overlay = write(
        tmp_path / "overlay.yaml",
        """
        w1:
          north: {lat: 52.52, lon: 13.37}
          north2: {lat: 52.52004, lon: 13.37}
        """,
    )
    code = raildata_check.main([str(root), "--overlay", str(overlay)])
    assert code == raildata_check.EXIT_FINDINGS
    assert "[duplicate-sites] werder events[0].site[0]" in capsys.readouterr().out


def test_list_checks(capsys):
    assert raildata_check.main(["--list-checks"]) == raildata_check.EXIT_CLEAN
    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith("referential-integrity: ")


def test_cache_without_overlay_is_not_reused_with_one(tmp_path, capsys):
    root = make_dataset(tmp_path / "data")
    write(root / "points" / "site.yaml", "key: werder\nevents:\n  - site: {w1: south}\n")
    cache = tmp_path / "raildata.cache"
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_CLEAN
    capsys.readouterr()

    overlay = write(tmp_path / "overlay.yaml", "w1:\n  north: {lat: 52.52, lon: 13.37}\n")
    args = [str(root), "--cache", str(cache), "--overlay", str(overlay)]
    assert raildata_check.main(args) == raildata_check.EXIT_FINDINGS
    captured = capsys.readouterr()
    assert "from 4 files" in captured.err
    assert "[resolve] werder events[0].site[0]" in captured.out

    # an old overlay file still does not match a cache resolved without it
    age(root, 1000)
    stat = overlay.stat()
    os.utime(overlay, (stat.st_atime - 1000, stat.st_mtime - 1000))
    assert raildata_check.main([str(root), "--cache", str(cache)]) == raildata_check.EXIT_CLEAN
    capsys.readouterr()
    assert raildata_check.main(args) == raildata_check.EXIT_FINDINGS
    assert "from 4 files" in capsys.readouterr().err
