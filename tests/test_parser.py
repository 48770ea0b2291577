"""Tests for du output parsing."""

from __future__ import annotations

import pytest

from dusk.core.parser import ScanParser, parse_denied_line, parse_du_line
from dusk.core.probe import STDERR, STDOUT, ProbeChunk
from dusk.models.usage import RESTRICTED_LABEL
from dusk.utils import bytes_to_kb, kb_to_bytes

ROOT = "/home/user"


def out(text: str) -> ProbeChunk:
    return ProbeChunk(stream=STDOUT, text=text)


def err(text: str) -> ProbeChunk:
    return ProbeChunk(stream=STDERR, text=text)


def parse(*chunks: ProbeChunk, **kwargs) -> dict:
    parser = ScanParser(ROOT, **kwargs)
    for chunk in chunks:
        parser.feed(chunk)
    return parser.finish()


class TestParseDuLine:
    def test_tab_separated(self):
        assert parse_du_line("5000\t/home/user/big.bin") == (5000, "/home/user/big.bin")

    def test_path_with_spaces(self):
        assert parse_du_line("12\t/home/user/My Documents") == (12, "/home/user/My Documents")

    def test_any_whitespace_run(self):
        assert parse_du_line("7   /home/user/x") == (7, "/home/user/x")

    @pytest.mark.parametrize("line", ["", "abc\t/x", "-5\t/x", "12", "1.5\t/x"])
    def test_rejects_garbage(self, line):
        assert parse_du_line(line) is None


class TestParseDeniedLine:
    def test_gnu_format(self):
        line = "du: cannot read directory '/home/user/Private': Permission denied"
        assert parse_denied_line(line) == "/home/user/Private"

    def test_gnu_cannot_access(self):
        line = "du: cannot access '/home/user/secret.txt': Permission denied"
        assert parse_denied_line(line) == "/home/user/secret.txt"

    def test_bsd_format(self):
        assert parse_denied_line("du: /home/user/Private: Permission denied") == "/home/user/Private"

    def test_operation_not_permitted(self):
        line = "du: /home/user/Library/Mail: Operation not permitted"
        assert parse_denied_line(line) == "/home/user/Library/Mail"

    def test_other_errors_ignored(self):
        assert parse_denied_line("du: /home/user/x: No such file or directory") is None


class TestKilobytes:
    @pytest.mark.parametrize("kb", [0, 1, 1023, 1024, 5000, 2**40])
    def test_round_trip(self, kb):
        assert kb_to_bytes(kb) == kb * 1024
        assert bytes_to_kb(kb_to_bytes(kb)) == kb


class TestScanParser:
    def test_single_file_scenario(self):
        index = parse(out("5000\t/home/user/big.bin\n"))
        assert list(index) == [ROOT]
        snapshot = index[ROOT]
        assert len(snapshot.accessible) == 1
        assert snapshot.accessible[0].path == "/home/user/big.bin"
        assert snapshot.accessible[0].size_bytes == 5_120_000
        assert snapshot.accessible[0].name == "big.bin"
        assert snapshot.restricted == ()

    def test_buckets_by_parent(self):
        index = parse(
            out(
                "3000\t/home/user/a/one.bin\n"
                "2000\t/home/user/a/two.bin\n"
                "5000\t/home/user/a\n"
                "4000\t/home/user/b.iso\n"
                "9000\t/home/user\n"
            )
        )
        assert set(index) == {ROOT, "/home/user/a"}
        assert [e.name for e in index["/home/user/a"].accessible] == ["one.bin", "two.bin"]
        assert [e.name for e in index[ROOT].accessible] == ["a", "b.iso"]

    def test_accessible_sorted_descending(self):
        index = parse(out("1500\t/home/user/s\n9000\t/home/user/l\n4000\t/home/user/m\n"))
        assert [e.name for e in index[ROOT].accessible] == ["l", "m", "s"]

    def test_root_line_not_indexed(self):
        index = parse(out("9000\t/home/user\n"))
        assert index == {}

    def test_minimum_size(self):
        index = parse(out("1023\t/home/user/small\n1024\t/home/user/edge\n"))
        assert [e.name for e in index[ROOT].accessible] == ["edge"]

    def test_custom_minimum_size(self):
        index = parse(out("10\t/home/user/tiny\n"), min_size_kb=0)
        assert index[ROOT].accessible[0].size_bytes == 10 * 1024

    def test_outside_root_dropped(self):
        index = parse(out("5000\t/etc/passwd\n5000\t/home/username/x\n"))
        assert index == {}

    def test_path_normalized(self):
        index = parse(out("5000\t/home/user//docs/./big.bin\n"))
        assert "/home/user/docs" in index
        assert index["/home/user/docs"].accessible[0].path == "/home/user/docs/big.bin"

    def test_leading_double_slash(self):
        index = parse(out("5000\t//home/user/big.bin\n"))
        assert index[ROOT].accessible[0].path == "/home/user/big.bin"

    def test_unparsable_lines_dropped(self):
        index = parse(out("garbage\n\n5000\t/home/user/ok\n"))
        assert [e.name for e in index[ROOT].accessible] == ["ok"]

    def test_excluded_directories(self):
        index = parse(
            out(
                "90000\t/home/user/app/node_modules/react/index.js\n"
                "90000\t/home/user/app/node_modules\n"
                "5000\t/home/user/repo/.git\n"
                "5000\t/home/user/app/main.bin\n"
            ),
            err("du: cannot read directory '/home/user/app/node_modules/secret': Permission denied\n"),
        )
        all_paths = {e.path for s in index.values() for e in (*s.accessible, *s.restricted)}
        assert all_paths == {"/home/user/app/main.bin"}

    def test_exclusion_case_insensitive(self):
        index = parse(out("5000\t/home/user/Node_Modules/x\n"))
        assert index == {}

    def test_exclusion_only_below_root(self):
        parser = ScanParser("/srv/dist/home")
        parser.feed(out("5000\t/srv/dist/home/file.bin\n"))
        assert "/srv/dist/home" in parser.finish()

    def test_partial_last_line_parsed_at_finish(self):
        parser = ScanParser(ROOT)
        parser.feed(out("5000\t/home/user/a\n6000\t/home/user/b"))
        assert parser.record_count == 1
        index = parser.finish()
        assert parser.record_count == 2
        assert {e.name for e in index[ROOT].accessible} == {"a", "b"}

    def test_line_split_across_chunks(self):
        index = parse(out("50"), out("00\t/home/us"), out("er/big.bin\n"))
        assert index[ROOT].accessible[0].size_bytes == 5000 * 1024

    def test_restricted_entry(self):
        index = parse(
            out("5000\t/home/user/big.bin\n"),
            err("du: cannot read directory '/home/user/Private': Permission denied\n"),
        )
        snapshot = index[ROOT]
        assert [e.path for e in snapshot.accessible] == ["/home/user/big.bin"]
        assert len(snapshot.restricted) == 1
        restricted = snapshot.restricted[0]
        assert restricted.path == "/home/user/Private"
        assert restricted.size_bytes == 0
        assert restricted.size_label == RESTRICTED_LABEL

    def test_restricted_without_accessible(self):
        index = parse(err("du: /home/user/Private: Permission denied\n"))
        assert index[ROOT].accessible == ()
        assert [e.name for e in index[ROOT].restricted] == ["Private"]

    def test_restricted_deduplicated(self):
        line = "du: cannot read directory '/home/user/Private': Permission denied\n"
        index = parse(err(line), err(line), err("du: /home/user/Private: Permission denied\n"))
        assert len(index[ROOT].restricted) == 1

    def test_restricted_outside_root_discarded(self):
        index = parse(
            err("du: cannot read directory '/root/.ssh': Permission denied\n"),
            err("du: cannot read directory '/home/user': Permission denied\n"),
        )
        assert index == {}

    def test_empty_folders_omitted(self):
        index = parse(out("10\t/home/user/a/tiny\n10\t/home/user/a\n"))
        assert index == {}

    def test_finish_is_repeatable(self):
        parser = ScanParser(ROOT)
        parser.feed(out("5000\t/home/user/a"))
        first = parser.finish()
        assert parser.finish() == first

    def test_progress_throttled(self):
        now = [0.0]
        seen: list[str] = []
        parser = ScanParser(ROOT, on_progress=seen.append, clock=lambda: now[0])

        parser.feed(out("1\t/home/user/a\n1\t/home/user/b\n"))
        now[0] = 0.05
        parser.feed(out("1\t/home/user/c\n"))
        now[0] = 0.2
        parser.feed(out("1\t/home/user/d\n"))

        assert seen == ["/home/user/a", "/home/user/d"]
