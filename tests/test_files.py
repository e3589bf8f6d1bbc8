"""Path normalization, path matching and git status parsing."""

import pytest

from tasktracker.core.exceptions import ValidationError
from tasktracker.core.git import parse_porcelain
from tasktracker.tasks.files import normalize_path, normalize_paths, paths_match


class TestNormalizePath:

    @pytest.mark.parametrize("raw, expected", [
        ("src/app.py", "src/app.py"),
        ("./src/app.py", "src/app.py"),
        ("src//app.py", "src/app.py"),
        ("src\\app.py", "src/app.py"),
        ("  README.md  ", "README.md"),
    ])
    def test_normalized(self, raw, expected):
        assert normalize_path(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "/abs/path", "\\server\\share", "C:/x.py", "src/../x.py", "./"])
    def test_rejected(self, raw):
        with pytest.raises(ValidationError):
            normalize_path(raw)

    def test_error_names_field(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_path("../x", field="add-file")
        assert exc_info.value.field == "add-file"

    def test_normalize_paths_dedupes(self):
        assert normalize_paths(["a.py", "./a.py", "b.py"]) == ["a.py", "b.py"]


class TestPathsMatch:

    @pytest.mark.parametrize("changed, related, expected", [
        ("src/login.js", "src/login.js", True),
        ("web/src/login.js", "src/login.js", True),
        ("login.js", "src/login.js", True),
        ("gin.js", "src/login.js", False),
        ("src/login.jsx", "src/login.js", False),
    ])
    def test_paths_match(self, changed, related, expected):
        assert paths_match(changed, related) is expected


class TestPorcelain:

    def test_parse(self):
        output = " M src/app.py\n?? notes.txt\nR  old.py -> new.py\nA  \"with space.py\"\n M src/app.py\n"

        assert parse_porcelain(output) == [
            ("M", "src/app.py"),
            ("?", "notes.txt"),
            ("R", "new.py"),
            ("A", "with space.py"),
        ]

    def test_empty(self):
        assert parse_porcelain("") == []
