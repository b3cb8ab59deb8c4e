"""Tests for renamer.py -- template rendering, rename plans, safe moves."""

import pytest

from audiobook_curator.errors import ConfigError, FilePreconditionError
from audiobook_curator.models import AudioFile, BookGroup, BookMetadata, GroupType
from audiobook_curator.renamer import (
    TEMPLATES,
    move_file,
    plan_group,
    render_template,
    resolve_template,
    sanitize_filename,
    template_values,
    validate_template,
)

FULL = {
    "author": "J.R.R. Tolkien",
    "title": "The Fellowship of the Ring",
    "series": "The Lord of the Rings",
    "sequence": "1",
    "year": "1954",
    "narrator": "Andy Serkis",
}


def _group(tmp_path, n_files=1, **metadata):
    folder = tmp_path / "library" / "Fellowship"
    folder.mkdir(parents=True)
    files = []
    for i in range(n_files):
        path = folder / f"track{i:02d}.m4b"
        path.write_bytes(b"audio")
        files.append(AudioFile(id=f"f{i}", path=path, filename=path.name))
    return BookGroup(
        id="g1",
        name="Fellowship",
        group_type=GroupType.SINGLE if n_files == 1 else GroupType.CHAPTERS,
        metadata=BookMetadata(**metadata),
        files=files,
    )


class TestSanitizeFilename:
    def test_replaces_unsafe_chars(self):
        assert sanitize_filename("Book: Part 1") == "Book_ Part 1"
        assert sanitize_filename("Book/Part\\2") == "Book_Part_2"

    def test_removes_leading_dots(self):
        assert sanitize_filename("..hidden") == "hidden"

    def test_truncation_preserves_extension(self):
        result = sanitize_filename("a" * 300 + ".m4b")
        assert result.endswith(".m4b")
        assert len(result.encode("utf-8")) <= 255


class TestRenderTemplate:
    def test_default_with_series(self):
        file_template, _ = TEMPLATES["default"]
        assert render_template(file_template, FULL) == (
            "J.R.R. Tolkien - [The Lord of the Rings #1] The Fellowship of the Ring (1954)"
        )

    def test_optional_segments_dropped(self):
        file_template, _ = TEMPLATES["default"]
        values = dict(FULL, series="", sequence="", year="")
        assert render_template(file_template, values) == "J.R.R. Tolkien - The Fellowship of the Ring"

    def test_fallback_field(self):
        assert render_template("{series|title}", dict(FULL, series="")) == "The Fellowship of the Ring"
        assert render_template("{series|title}", FULL) == "The Lord of the Rings"

    def test_literal_words_kept(self):
        assert render_template("{title}{ - Part sequence}", FULL) == "The Fellowship of the Ring - Part 1"

    def test_missing_leading_field_leaves_no_dash(self):
        assert render_template("{author} - {title}", dict(FULL, author="")) == "The Fellowship of the Ring"


class TestValidateTemplate:
    @pytest.mark.parametrize("template", ["{author - {title}", "{author}} - {title}", "{nothing here}"])
    def test_rejected(self, template):
        with pytest.raises(ConfigError):
            validate_template(template)

    def test_builtin_names_resolve(self):
        assert resolve_template("plex") == TEMPLATES["plex"]

    def test_literal_resolves_without_folder(self):
        assert resolve_template("{title}") == ("{title}", None)

    def test_bad_literal_raises(self):
        with pytest.raises(ConfigError):
            resolve_template("{title")


class TestTemplateValues:
    def test_unknown_author_blank(self):
        assert template_values(BookMetadata(title="Dune", author="Unknown"))["author"] == ""

    def test_values_sanitized(self):
        assert template_values(BookMetadata(title="Dune: Messiah"))["title"] == "Dune_ Messiah"


class TestPlanGroup:
    def test_single_file(self, tmp_path):
        group = _group(tmp_path, title="Dune", author="Frank Herbert", year="1965")
        [plan] = plan_group(group, TEMPLATES["default"][0])
        assert plan.target == group.folder / "Frank Herbert - Dune (1965).m4b"
        assert plan.changed

    def test_multi_file_part_numbers(self, tmp_path):
        group = _group(tmp_path, n_files=12, title="Dune", author="Frank Herbert")
        plans = plan_group(group, "{title}")
        assert plans[0].target.name == "Dune - Part 01.m4b"
        assert plans[11].target.name == "Dune - Part 12.m4b"

    def test_folder_template(self, tmp_path):
        group = _group(tmp_path, title="Dune Messiah", author="Frank Herbert", series="Dune")
        [plan] = plan_group(group, "{title}", "{author}/{series|title}")
        assert plan.target == tmp_path / "library" / "Frank Herbert" / "Dune" / "Dune Messiah.m4b"

    def test_folder_template_with_root(self, tmp_path):
        group = _group(tmp_path, title="Dune", author="Frank Herbert")
        [plan] = plan_group(group, "{title}", "{author}", library_root=tmp_path / "out")
        assert plan.target == tmp_path / "out" / "Frank Herbert" / "Dune.m4b"

    def test_empty_render_falls_back_to_title(self, tmp_path):
        group = _group(tmp_path, title="Dune")
        [plan] = plan_group(group, "{series}")
        assert plan.target.name == "Dune.m4b"

    def test_already_named(self, tmp_path):
        group = _group(tmp_path, title="track00")
        [plan] = plan_group(group, "{title}")
        assert not plan.changed


class TestMoveFile:
    def test_renames(self, tmp_path):
        source = tmp_path / "a.m4b"
        source.write_bytes(b"audio")
        target = move_file(source, tmp_path / "b.m4b")
        assert target.read_bytes() == b"audio"
        assert not source.exists()

    def test_refuses_to_overwrite(self, tmp_path):
        source = tmp_path / "a.m4b"
        source.write_bytes(b"audio")
        (tmp_path / "b.m4b").write_bytes(b"other")
        with pytest.raises(FilePreconditionError, match="already exists"):
            move_file(source, tmp_path / "b.m4b")
        assert source.read_bytes() == b"audio"

    def test_missing_source(self, tmp_path):
        with pytest.raises(FilePreconditionError, match="does not exist"):
            move_file(tmp_path / "gone.m4b", tmp_path / "b.m4b")

    def test_prunes_empty_folders(self, tmp_path):
        old = tmp_path / "lib" / "Old Name"
        old.mkdir(parents=True)
        source = old / "a.m4b"
        source.write_bytes(b"audio")
        move_file(source, tmp_path / "lib" / "Frank Herbert" / "Dune" / "a.m4b", stop_at=tmp_path / "lib")
        assert not old.exists()
        assert (tmp_path / "lib").exists()
